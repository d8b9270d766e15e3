from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from loguru import logger

from artisan_buddy.memory.response_cache import KeyValueCache
from artisan_buddy.models import Message, parse_timestamp
from artisan_buddy.provider import LLMProvider
from artisan_buddy.tokens import estimate_tokens

CONTEXT_WINDOW_SIZE = 20
SUMMARIZATION_THRESHOLD = 50
STATE_TTL_SECONDS = 3_600
ARCHIVE_TTL_SECONDS = 7 * 24 * 60 * 60

FLOW_STATES = (
    "greeting",
    "information_gathering",
    "query_handling",
    "action_execution",
    "clarification",
    "closing",
)


@dataclass
class ConversationState:
    session_id: str
    flow: str = "greeting"
    current_topic: str | None = None
    context_window: list[Message] = field(default_factory=list)
    summary: str | None = None
    message_count: int = 0
    last_summarized_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "flow": self.flow,
            "current_topic": self.current_topic,
            "context_window": [m.to_dict() for m in self.context_window],
            "summary": self.summary,
            "message_count": self.message_count,
            "last_summarized_at": self.last_summarized_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ConversationState:
        return cls(
            session_id=data["session_id"],
            flow=data.get("flow", "greeting"),
            current_topic=data.get("current_topic"),
            context_window=[Message.from_dict(m) for m in data.get("context_window", [])],
            summary=data.get("summary"),
            message_count=int(data.get("message_count", 0)),
            last_summarized_at=data.get("last_summarized_at"),
        )


@dataclass
class OverflowResult:
    action: str
    messages: list[Message]
    summary: str | None = None


@dataclass
class ContextQuality:
    score: float
    recency: float
    coherence: float
    completeness: float


@runtime_checkable
class Summarizer(Protocol):
    async def summarize(self, messages: list[Message], *, max_length: int = 500) -> str: ...


class ExtractiveSummarizer:
    """Quotes the first user and assistant turn of each intent seen in the thread."""

    async def summarize(self, messages: list[Message], *, max_length: int = 500) -> str:
        return extractive_summary(messages, max_length=max_length)


class LLMSummarizer:
    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        *,
        max_tokens: int = 1024,
        fallback: Summarizer | None = None,
    ):
        self._provider = provider
        self._model = model
        self._max_tokens = max_tokens
        self._fallback = fallback or ExtractiveSummarizer()

    async def summarize(self, messages: list[Message], *, max_length: int = 500) -> str:
        formatted = _format_for_summarization(messages)
        if len(formatted) > 100_000:
            half = 50_000
            formatted = (
                formatted[:half]
                + "\n\n[...middle of conversation omitted for brevity...]\n\n"
                + formatted[-half:]
            )
        try:
            summary = await self._provider.create_message(
                self._model,
                self._max_tokens,
                0,
                [{"role": "user", "content": _SUMMARIZE_PROMPT.format(max_length=max_length) + formatted}],
            )
        except Exception as ex:
            logger.warning(f"Summarization failed: {ex}. Falling back to extractive summary.")
            return await self._fallback.summarize(messages, max_length=max_length)
        return _truncate(summary.strip(), max_length)


_SUMMARIZE_PROMPT = """\
Summarize the following conversation between an Indian artisan and the Artisan Buddy assistant
in at most {max_length} characters.
Preserve precisely:
- What the artisan asked for and any products, prices, quantities or dates they mentioned
- Advice or decisions the assistant gave
- Open questions and next steps

Format as a concise narrative summary.

---
CONVERSATION:

"""


def _format_for_summarization(messages: list[Message]) -> str:
    return "\n\n".join(f"[{m.role}]: {m.content}" for m in messages)


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def extractive_summary(messages: list[Message], *, max_length: int = 500) -> str:
    groups: dict[str, list[Message]] = {}
    for msg in messages:
        groups.setdefault(msg.intent or "general", []).append(msg)

    summary = "Conversation Summary:\n\n"
    for topic, msgs in groups.items():
        summary += f"{topic}:\n"
        user_msg = next((m for m in msgs if m.role == "user"), None)
        assistant_msg = next((m for m in msgs if m.role == "assistant"), None)
        if user_msg is not None:
            summary += f"- User asked: {_truncate(user_msg.content, 100)}\n"
        if assistant_msg is not None:
            summary += f"- Assistant: {_truncate(assistant_msg.content, 150)}\n"
        summary += "\n"

    return _truncate(summary, max_length)


class ContextWindowManager:
    def __init__(
        self,
        cache: KeyValueCache,
        *,
        summarizer: Summarizer | None = None,
        window_size: int = CONTEXT_WINDOW_SIZE,
        summarization_threshold: int = SUMMARIZATION_THRESHOLD,
        max_tokens: int | None = None,
    ):
        self._cache = cache
        self._summarizer = summarizer or ExtractiveSummarizer()
        self._window_size = max(1, window_size)
        self._summarization_threshold = summarization_threshold
        self._max_tokens = max_tokens

    @property
    def window_size(self) -> int:
        return self._window_size

    # -- state -----------------------------------------------------------

    def initialize_state(self, session_id: str) -> ConversationState:
        state = ConversationState(session_id=session_id)
        self.save_state(state)
        return state

    def get_state(self, session_id: str) -> ConversationState | None:
        data = self._cache.get_json(_state_key(session_id))
        if data is None:
            return None
        return ConversationState.from_dict(data)

    def save_state(self, state: ConversationState) -> None:
        self._cache.set_json(_state_key(state.session_id), state.to_dict(), STATE_TTL_SECONDS)

    def update_flow_state(self, session_id: str, flow: str) -> None:
        if flow not in FLOW_STATES:
            raise ValueError(f"Unknown conversation flow state: {flow!r}")
        state = self.get_state(session_id)
        if state is None:
            return
        state.flow = flow
        self.save_state(state)
        logger.debug(f"Flow state for {session_id} updated to {flow}")

    def track_topic(self, session_id: str, topic: str) -> None:
        state = self.get_state(session_id)
        if state is None:
            return
        state.current_topic = topic
        self.save_state(state)

    def clear_state(self, session_id: str) -> None:
        self._cache.delete(_state_key(session_id))
        self._cache.delete(_archive_key(session_id))
        logger.debug(f"Cleared conversation state for {session_id}")

    # -- window ----------------------------------------------------------

    def get_context_window(
        self,
        messages: list[Message],
        *,
        max_messages: int | None = None,
        include_system: bool = True,
        prioritize_recent: bool = True,
        max_tokens: int | None = None,
    ) -> list[Message]:
        limit = max_messages or self._window_size
        filtered = messages if include_system else [m for m in messages if m.role in ("user", "assistant")]
        window = filtered[-limit:] if prioritize_recent else filtered[:limit]

        budget = max_tokens if max_tokens is not None else self._max_tokens
        if budget is not None:
            while window and _estimate(window) > budget:
                if prioritize_recent:
                    window = window[1:]
                else:
                    window = window[:-1]
        return window

    async def update_context_window(self, session_id: str, message: Message) -> list[Message]:
        state = self.get_state(session_id) or ConversationState(session_id=session_id)
        state.context_window.append(message)
        state.message_count += 1

        if len(state.context_window) > self._window_size:
            if state.message_count >= self._summarization_threshold and not state.summary:
                await self._summarize_into(state, state.context_window)
            state.context_window = state.context_window[-self._window_size:]

        self.save_state(state)
        return state.context_window

    def get_effective_context(self, session_id: str) -> dict:
        state = self.get_state(session_id)
        if state is None:
            return {"summary": None, "recent_messages": [], "total_messages": 0}
        return {
            "summary": state.summary,
            "recent_messages": list(state.context_window),
            "total_messages": state.message_count,
        }

    # -- summarization / overflow -----------------------------------------

    async def summarize_conversation(
        self,
        session_id: str,
        messages: list[Message],
        *,
        max_length: int = 500,
    ) -> str:
        state = self.get_state(session_id)
        if state is None:
            return await self._summarizer.summarize(messages, max_length=max_length)
        summary = await self._summarize_into(state, messages, max_length=max_length)
        self.save_state(state)
        return summary

    async def handle_context_overflow(self, session_id: str, messages: list[Message]) -> OverflowResult:
        tail = messages[-self._window_size:]
        state = self.get_state(session_id)
        if state is None:
            return OverflowResult(action="truncate", messages=tail)

        if len(messages) > self._summarization_threshold and not state.summary:
            summary = await self._summarize_into(state, messages)
            self.save_state(state)
            return OverflowResult(action="summarize", messages=tail, summary=summary)

        if len(messages) > self._window_size * 2:
            self._archive(session_id, messages[: -self._window_size])
            return OverflowResult(action="archive", messages=tail, summary=state.summary)

        return OverflowResult(action="truncate", messages=tail, summary=state.summary)

    def get_archived_messages(self, session_id: str) -> list[Message]:
        data = self._cache.get_json(_archive_key(session_id)) or []
        return [Message.from_dict(m) for m in data]

    # -- quality ---------------------------------------------------------

    def calculate_context_quality(self, messages: list[Message], *, now: datetime | None = None) -> ContextQuality:
        if not messages:
            return ContextQuality(score=0.0, recency=0.0, coherence=0.0, completeness=0.0)

        now = now or datetime.now(UTC)
        day_seconds = 24 * 60 * 60
        avg_age = sum((now - parse_timestamp(m.timestamp)).total_seconds() for m in messages) / len(messages)
        recency = max(0.0, 1 - avg_age / day_seconds)

        topics = {m.intent or "general" for m in messages}
        coherence = max(0.0, 1 - len(topics) / len(messages))

        user_count = sum(1 for m in messages if m.role == "user")
        assistant_count = sum(1 for m in messages if m.role == "assistant")
        completeness = min(user_count, assistant_count) / max(user_count, assistant_count, 1)

        score = recency * 0.3 + coherence * 0.3 + completeness * 0.4
        return ContextQuality(score=score, recency=recency, coherence=coherence, completeness=completeness)

    def get_context_statistics(self, session_id: str) -> dict:
        state = self.get_state(session_id)
        if state is None:
            return {
                "total_messages": 0,
                "context_window_size": 0,
                "has_summary": False,
                "last_activity": None,
                "quality_score": 0.0,
                "flow": None,
                "current_topic": None,
            }
        quality = self.calculate_context_quality(state.context_window)
        return {
            "total_messages": state.message_count,
            "context_window_size": len(state.context_window),
            "has_summary": bool(state.summary),
            "last_activity": state.context_window[-1].timestamp.isoformat() if state.context_window else None,
            "quality_score": quality.score,
            "flow": state.flow,
            "current_topic": state.current_topic,
        }

    async def _summarize_into(
        self,
        state: ConversationState,
        messages: list[Message],
        *,
        max_length: int = 500,
    ) -> str:
        summary = await self._summarizer.summarize(messages, max_length=max_length)
        state.summary = summary
        state.last_summarized_at = datetime.now(UTC).isoformat()
        logger.info(f"Conversation {state.session_id} summarized ({len(summary)} chars from {len(messages)} messages)")
        return summary

    def _archive(self, session_id: str, messages: list[Message]) -> None:
        existing = self._cache.get_json(_archive_key(session_id)) or []
        known = {m.get("id") for m in existing}
        merged = existing + [m.to_dict() for m in messages if m.id is None or m.id not in known]
        self._cache.set_json(_archive_key(session_id), merged, ARCHIVE_TTL_SECONDS)
        logger.info(f"Archived {len(messages)} messages for session {session_id}")


def _state_key(session_id: str) -> str:
    return f"conversation_state:{session_id}"


def _archive_key(session_id: str) -> str:
    return f"archived_messages:{session_id}"


def _estimate(messages: list[Message]) -> int:
    return estimate_tokens([{"role": m.role, "content": m.content} for m in messages])
