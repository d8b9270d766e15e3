from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from datetime import UTC, datetime

from loguru import logger

from artisan_buddy.context_window import ContextWindowManager, OverflowResult
from artisan_buddy.errors import InvalidInputError, SessionNotFoundError
from artisan_buddy.memory.response_cache import KeyValueCache
from artisan_buddy.memory.session_manager import SessionManager
from artisan_buddy.models import ArtisanContext, HistoryPage, Message, Session

MAX_CONVERSATION_HISTORY = 20
EXPORT_FORMATS = ("json", "text")


class ConversationManager:
    """Session lifecycle and message history for the chat assistant."""

    def __init__(
        self,
        sessions: SessionManager,
        context_windows: ContextWindowManager,
        cache: KeyValueCache | None = None,
        *,
        on_session_end: Callable[[str], None] | None = None,
    ):
        self._sessions = sessions
        self._context_windows = context_windows
        self._cache = cache
        self._on_session_end = on_session_end

    @property
    def context_windows(self) -> ContextWindowManager:
        return self._context_windows

    # -- sessions ------------------------------------------------------------

    def initialize_session(
        self,
        user_id: str,
        language: str | None = None,
        *,
        context: ArtisanContext | None = None,
    ) -> Session:
        if not user_id:
            raise InvalidInputError("Missing required field: user_id")
        resolved_language = language or (context.preferences.language if context else None) or "en"
        metadata = {"context_hash": _context_hash(context)} if context is not None else {}
        session_id = self._sessions.create_session(user_id, resolved_language, metadata=metadata)
        self._context_windows.initialize_state(session_id)
        logger.info(f"Session initialized - {session_id} (user={user_id}, language={resolved_language})")
        return self._require_session(session_id)

    def get_session(self, session_id: str) -> Session | None:
        row = self._sessions.get_session(session_id)
        if row is None:
            return None
        return Session.from_row(row)

    def end_session(self, session_id: str) -> bool:
        self._context_windows.clear_state(session_id)
        self._sessions.clear_messages(session_id)
        ended = self._sessions.delete_session(session_id)
        if ended:
            logger.info(f"Session ended - {session_id}")
        if self._on_session_end is not None:
            self._on_session_end(session_id)
        return ended

    def cleanup_expired_sessions(self) -> int:
        expired = self._sessions.list_expired_session_ids()
        for session_id in expired:
            self.end_session(session_id)
        if self._cache is not None:
            self._cache.purge_expired()
        logger.info(f"Cleaned up {len(expired)} expired sessions")
        return len(expired)

    def get_active_session_count(self) -> int:
        return self._sessions.count_sessions()

    # -- messages ------------------------------------------------------------

    async def process_message(self, session_id: str, message: Message) -> Message:
        if self.get_session(session_id) is None:
            raise SessionNotFoundError(session_id)

        started = datetime.now(UTC)
        self._sessions.touch_session(session_id)
        stored = self._store_message(session_id, message)
        await self._context_windows.update_context_window(session_id, stored)
        if stored.intent:
            self._context_windows.track_topic(session_id, stored.intent)

        elapsed_ms = (datetime.now(UTC) - started).total_seconds() * 1000
        logger.debug(f"Message {stored.id} processed in {elapsed_ms:.0f}ms")
        return stored

    def _store_message(self, session_id: str, message: Message) -> Message:
        self._sessions.append_message(
            session_id,
            message.role,
            message.content,
            language=message.language,
            metadata=message.metadata,
            message_id=message.id,
            created_at=message.timestamp,
        )
        # The newest row is the one just appended.
        return Message.from_dict(self._sessions.load_messages(session_id, limit=1)[0])

    def get_history(self, session_id: str, limit: int = MAX_CONVERSATION_HISTORY) -> list[Message]:
        rows = self._sessions.load_messages(session_id, limit=limit)
        return [Message.from_dict(row) for row in rows]

    def get_paginated_history(self, session_id: str, limit: int = 20, offset: int = 0) -> HistoryPage:
        if limit <= 0:
            raise InvalidInputError(f"limit must be positive, got {limit}")
        if offset < 0:
            raise InvalidInputError(f"offset must not be negative, got {offset}")
        total = self._sessions.count_messages(session_id)
        rows = self._sessions.load_message_page(session_id, limit=limit, offset=offset)
        return HistoryPage(
            messages=[Message.from_dict(row) for row in rows],
            total=total,
            has_more=offset + limit < total,
        )

    def search_messages(
        self,
        session_id: str,
        query: str,
        *,
        role: str | None = None,
        language: str | None = None,
        limit: int = 10,
    ) -> list[Message]:
        needle = query.lower()
        matches = [
            m
            for m in self._full_history(session_id)
            if needle in m.content.lower()
            and (role is None or m.role == role)
            and (language is None or m.language == language)
        ]
        return matches[: limit or 10]

    def export_messages(self, session_id: str, fmt: str = "json") -> str:
        if fmt not in EXPORT_FORMATS:
            raise InvalidInputError(f"Unsupported export format: {fmt!r}")
        messages = self._full_history(session_id)

        if fmt == "json":
            return json.dumps([m.to_dict() for m in messages], ensure_ascii=False, indent=2)

        lines = [
            f"Conversation Export - Session: {session_id}",
            f"Date: {datetime.now(UTC).isoformat()}",
            f"Total Messages: {len(messages)}",
            "",
            "=" * 80,
            "",
        ]
        for index, msg in enumerate(messages, start=1):
            lines.append(f"[{index}] {msg.role.upper()} ({msg.language})")
            lines.append(f"Time: {msg.timestamp.isoformat()}")
            lines.append(f"Content: {msg.content}")
            if msg.metadata:
                lines.append(f"Metadata: {json.dumps(msg.metadata, ensure_ascii=False)}")
            lines.append("")
            lines.append("-" * 80)
            lines.append("")
        return "\n".join(lines)

    def extract_recent_topics(self, session_id: str, limit: int = 10) -> list[str]:
        topics: list[str] = []
        for msg in self.get_history(session_id, limit):
            if msg.intent:
                if msg.intent in topics:
                    topics.remove(msg.intent)
                topics.append(msg.intent)
        return topics

    # -- context window --------------------------------------------------------

    def get_context_window(self, session_id: str, max_messages: int | None = None) -> list[Message]:
        messages = self.get_history(session_id, max_messages or self._context_windows.window_size)
        return self._context_windows.get_context_window(messages, max_messages=max_messages)

    def get_effective_context(self, session_id: str) -> dict:
        return self._context_windows.get_effective_context(session_id)

    async def summarize_conversation(self, session_id: str) -> str:
        messages = self._full_history(session_id)
        return await self._context_windows.summarize_conversation(session_id, messages)

    def get_context_statistics(self, session_id: str) -> dict:
        return self._context_windows.get_context_statistics(session_id)

    async def handle_context_overflow(self, session_id: str) -> OverflowResult:
        messages = self._full_history(session_id)
        result = await self._context_windows.handle_context_overflow(session_id, messages)
        logger.info(f"Context overflow for {session_id} handled with action: {result.action}")
        return result

    def _full_history(self, session_id: str) -> list[Message]:
        return [Message.from_dict(row) for row in self._sessions.load_messages(session_id)]

    def _require_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session


def _context_hash(context: ArtisanContext | None) -> str:
    if context is None:
        return ""
    data = f"{context.profile.user_id}-{context.profile.updated_at}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]
