"""
HTTP surface for the chat assistant.

Routes are plain functions closed over an ``AppRuntime`` and registered on the
FastAPI app in ``create_app``.
"""
from __future__ import annotations

import asyncio
import contextlib
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from loguru import logger
from pydantic import BaseModel

from artisan_buddy.bootstrap import AppRuntime
from artisan_buddy.chat_service import ChatReply
from artisan_buddy.conversation_manager import ConversationManager
from artisan_buddy.errors import ArtisanBuddyError, InvalidInputError, SessionNotFoundError

API_PREFIX = "/api/artisan-buddy"


class ChatRequest(BaseModel):
    message: str = ""
    sessionId: str | None = None
    userId: str | None = None
    language: str | None = None
    context: dict[str, Any] | None = None


def reply_to_dict(reply: ChatReply) -> dict[str, Any]:
    return {
        "response": reply.response,
        "sessionId": reply.session_id,
        "messageId": reply.message_id,
        "language": reply.language,
        "suggestedActions": [asdict(a) for a in reply.suggested_actions],
        "followUpQuestions": reply.follow_up_questions,
        "degraded": reply.degraded,
        "metadata": reply.metadata,
    }


async def cleanup_sessions_periodically(conversations: ConversationManager, interval_seconds: float) -> None:
    """End expired sessions every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            conversations.cleanup_expired_sessions()
        except Exception as ex:
            logger.error(f"Session cleanup failed: {ex}")


def create_app(runtime: AppRuntime) -> FastAPI:
    interval = runtime.config.session_cleanup_interval_seconds

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Artisan Buddy API...")
        task = None
        if interval > 0:
            task = asyncio.create_task(cleanup_sessions_periodically(runtime.conversations, interval))
        yield
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Artisan Buddy API stopped")

    app = FastAPI(title="Artisan Buddy - Chat API", lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    conversations = runtime.conversations

    def require_session(session_id: str) -> None:
        if conversations.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)

    async def health():
        return {
            "service": "artisan-buddy",
            "status": "ok",
            "model": runtime.config.model,
            "activeSessions": conversations.get_active_session_count(),
            "trackedSessions": len(runtime.generator.get_all_metrics()),
        }

    async def chat_endpoint(body: ChatRequest):
        reply = await runtime.chat.handle_chat(
            body.message,
            session_id=body.sessionId,
            user_id=body.userId,
            language=body.language,
            context=body.context,
        )
        return reply_to_dict(reply)

    async def chat_stream_endpoint(body: ChatRequest):
        session_id, chunks = await runtime.chat.stream_chat(
            body.message,
            session_id=body.sessionId,
            user_id=body.userId,
            language=body.language,
            context=body.context,
        )
        return StreamingResponse(chunks, media_type="text/plain; charset=utf-8", headers={"X-Session-Id": session_id})

    async def get_session_endpoint(session_id: str):
        require_session(session_id)
        summary = runtime.session_manager.build_session_summary(session_id)
        summary["statistics"] = conversations.get_context_statistics(session_id)
        summary["recentTopics"] = conversations.extract_recent_topics(session_id)
        metrics = runtime.generator.get_response_metrics(session_id)
        summary["responseMetrics"] = asdict(metrics) if metrics else None
        return summary

    async def get_messages_endpoint(
        session_id: str,
        limit: int = Query(20, ge=1, le=200),
        offset: int = Query(0, ge=0),
    ):
        require_session(session_id)
        page = conversations.get_paginated_history(session_id, limit=limit, offset=offset)
        return {
            "sessionId": session_id,
            "messages": [m.to_dict() for m in page.messages],
            "total": page.total,
            "hasMore": page.has_more,
            "limit": limit,
            "offset": offset,
        }

    async def search_endpoint(
        session_id: str,
        q: str = Query(..., min_length=1),
        role: str | None = None,
        language: str | None = None,
        limit: int = Query(10, ge=1, le=100),
    ):
        require_session(session_id)
        matches = conversations.search_messages(session_id, q, role=role, language=language, limit=limit)
        return {"sessionId": session_id, "query": q, "results": [m.to_dict() for m in matches]}

    async def export_endpoint(session_id: str, format: str = "json"):
        require_session(session_id)
        exported = conversations.export_messages(session_id, format)
        if format == "text":
            return PlainTextResponse(exported)
        return Response(content=exported, media_type="application/json")

    async def context_endpoint(session_id: str):
        require_session(session_id)
        effective = conversations.get_effective_context(session_id)
        return {
            "sessionId": session_id,
            "statistics": conversations.get_context_statistics(session_id),
            "summary": effective["summary"],
            "recentMessages": [m.to_dict() for m in effective["recent_messages"]],
            "totalMessages": effective["total_messages"],
            "archivedMessages": len(conversations.context_windows.get_archived_messages(session_id)),
        }

    async def delete_session_endpoint(session_id: str):
        require_session(session_id)
        ended = conversations.end_session(session_id)
        return {"sessionId": session_id, "ended": ended}

    app.get("/health")(health)
    app.post(f"{API_PREFIX}/chat")(chat_endpoint)
    app.post(f"{API_PREFIX}/chat/stream")(chat_stream_endpoint)
    app.get(f"{API_PREFIX}/sessions/{{session_id}}")(get_session_endpoint)
    app.get(f"{API_PREFIX}/sessions/{{session_id}}/messages")(get_messages_endpoint)
    app.get(f"{API_PREFIX}/sessions/{{session_id}}/search")(search_endpoint)
    app.get(f"{API_PREFIX}/sessions/{{session_id}}/export")(export_endpoint)
    app.get(f"{API_PREFIX}/sessions/{{session_id}}/context")(context_endpoint)
    app.delete(f"{API_PREFIX}/sessions/{{session_id}}")(delete_session_endpoint)

    @app.exception_handler(ArtisanBuddyError)
    async def artisan_buddy_error_handler(request: Request, exc: ArtisanBuddyError):
        logger.warning(f"{request.method} {request.url.path} failed: {exc.error_type.value} - {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        error = InvalidInputError(errors[0] if errors else "Invalid request", details={"errors": errors})
        return JSONResponse(status_code=error.status_code, content=error.to_response())

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        error = ArtisanBuddyError("Internal server error")
        return JSONResponse(status_code=error.status_code, content=error.to_response())

    return app
