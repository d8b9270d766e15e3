from __future__ import annotations

import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from artisan_buddy.conversation_manager import MAX_CONVERSATION_HISTORY, ConversationManager
from artisan_buddy.errors import validate_required
from artisan_buddy.intents import classify_intent
from artisan_buddy.models import Action, ArtisanContext, Message, Session
from artisan_buddy.response_generator import ResponseGenerator, ResponseOptions, ResponseRequest, StreamOutcome

DEFAULT_USER_ID = "anonymous"

_FLOW_BY_INTENT = {
    "general_chat": "greeting",
    "help": "information_gathering",
    "navigation": "action_execution",
    "create_product": "action_execution",
    "connect_buyer": "action_execution",
}


@dataclass
class ChatReply:
    response: str
    session_id: str
    message_id: str
    language: str
    suggested_actions: list[Action] = field(default_factory=list)
    follow_up_questions: list[str] = field(default_factory=list)
    degraded: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class _Turn:
    session: Session
    request: ResponseRequest
    started: float


class ChatService:
    """Runs a single chat turn: session, intent, storage and response generation."""

    def __init__(
        self,
        conversations: ConversationManager,
        generator: ResponseGenerator,
        *,
        history_limit: int = MAX_CONVERSATION_HISTORY,
        response_options: ResponseOptions | None = None,
    ):
        self._conversations = conversations
        self._generator = generator
        self._history_limit = history_limit
        self._response_options = response_options

    async def handle_chat(
        self,
        message: str,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        language: str | None = None,
        context: ArtisanContext | dict[str, Any] | None = None,
    ) -> ChatReply:
        turn = await self._begin_turn(message, session_id, user_id, language, context)
        request = turn.request

        generated = await self._generator.generate_response(request, self._response_options)

        processing_time_ms = _elapsed_ms(turn.started)
        assistant_metadata: dict[str, Any] = {
            "intent": request.intent.type,
            "confidence": generated.confidence,
            "processing_time_ms": processing_time_ms,
            "suggestions": [a.label for a in generated.suggested_actions],
            "cached": generated.cached,
        }
        if generated.degraded:
            assistant_metadata["degraded"] = True

        assistant_message = await self._conversations.process_message(
            request.session_id,
            Message(
                role="assistant",
                content=generated.text,
                language=generated.language,
                metadata=assistant_metadata,
            ),
        )

        logger.info(
            f"Chat turn completed - session={request.session_id} intent={request.intent.type} "
            f"cached={generated.cached} degraded={generated.degraded} ({processing_time_ms:.0f}ms)"
        )
        return ChatReply(
            response=generated.text,
            session_id=request.session_id,
            message_id=assistant_message.id or "",
            language=generated.language,
            suggested_actions=generated.suggested_actions,
            follow_up_questions=generated.follow_up_questions,
            degraded=generated.degraded,
            metadata={
                "intent": request.intent.type,
                "confidence": generated.confidence,
                "processing_time_ms": processing_time_ms,
                "cached": generated.cached,
                "sources": len(generated.sources),
            },
        )

    async def stream_chat(
        self,
        message: str,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        language: str | None = None,
        context: ArtisanContext | dict[str, Any] | None = None,
    ) -> tuple[str, AsyncIterator[str]]:
        """Store the user turn and return ``(session_id, chunks)``.

        The assistant message is stored when the chunk iterator finishes or is
        closed early; an early close marks it ``interrupted``.
        """
        turn = await self._begin_turn(message, session_id, user_id, language, context)
        return turn.request.session_id, self._stream_and_store(turn)

    async def _stream_and_store(self, turn: _Turn) -> AsyncIterator[str]:
        outcome = StreamOutcome()
        parts: list[str] = []
        completed = False
        try:
            async for chunk in self._generator.stream_response(turn.request, outcome):
                parts.append(chunk)
                yield chunk
            completed = True
        finally:
            await self._store_streamed_reply(turn, parts, outcome, completed)

    async def _store_streamed_reply(
        self,
        turn: _Turn,
        parts: list[str],
        outcome: StreamOutcome,
        completed: bool,
    ) -> None:
        request = turn.request
        metadata: dict[str, Any] = {
            "intent": request.intent.type,
            "processing_time_ms": _elapsed_ms(turn.started),
            "streamed": True,
        }
        if outcome.degraded:
            content = outcome.fallback_text
            metadata["degraded"] = True
        else:
            content = "".join(parts)
            if not completed:
                metadata["interrupted"] = True

        if not content:
            logger.warning(f"Stream for session {request.session_id} ended before any text; nothing stored")
            return

        await self._conversations.process_message(
            request.session_id,
            Message(role="assistant", content=content, language=request.language, metadata=metadata),
        )
        logger.info(
            f"Streamed chat turn completed - session={request.session_id} intent={request.intent.type} "
            f"degraded={outcome.degraded} interrupted={not completed}"
        )

    async def _begin_turn(
        self,
        message: str,
        session_id: str | None,
        user_id: str | None,
        language: str | None,
        context: ArtisanContext | dict[str, Any] | None,
    ) -> _Turn:
        text = (message or "").strip()
        validate_required({"message": text}, ["message"])

        started = time.perf_counter()
        artisan_context = self._resolve_context(user_id, context)
        session = self._resolve_session(session_id, artisan_context, language)
        turn_language = language or session.language

        intent = classify_intent(text, self._conversations.extract_recent_topics(session.id))
        logger.debug(f"Intent for session {session.id}: {intent.type} ({intent.confidence:.2f})")

        user_message = await self._conversations.process_message(
            session.id,
            Message(
                role="user",
                content=text,
                language=turn_language,
                metadata={"intent": intent.type, "confidence": intent.confidence},
            ),
        )
        self._conversations.context_windows.update_flow_state(
            session.id, _FLOW_BY_INTENT.get(intent.type, "query_handling")
        )
        history = [
            m for m in self._conversations.get_history(session.id, self._history_limit) if m.id != user_message.id
        ]

        request = ResponseRequest(
            intent=intent,
            context=artisan_context,
            history=history,
            user_message=text,
            language=turn_language,
            session_id=session.id,
        )
        return _Turn(session=session, request=request, started=started)

    def _resolve_context(
        self,
        user_id: str | None,
        context: ArtisanContext | dict[str, Any] | None,
    ) -> ArtisanContext:
        if isinstance(context, ArtisanContext):
            return context
        return ArtisanContext.from_dict(user_id or DEFAULT_USER_ID, context)

    def _resolve_session(self, session_id: str | None, context: ArtisanContext, language: str | None) -> Session:
        if session_id:
            session = self._conversations.get_session(session_id)
            if session is not None:
                return session
            logger.info(f"Session {session_id} not found or expired; starting a new one")
        return self._conversations.initialize_session(context.profile.user_id, language, context=context)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 1)
