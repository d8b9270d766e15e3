from __future__ import annotations

from loguru import logger
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

MAX_ATTEMPTS = 5


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying in {wait:.0f}s (attempt {attempt}/{MAX_ATTEMPTS})...")


def default_retry_kwargs(exception_types: tuple[type[Exception], ...]) -> dict:
    return {
        "retry": retry_if_exception_type(exception_types),
        "wait": wait_exponential(multiplier=2, min=2, max=60),
        "stop": stop_after_attempt(MAX_ATTEMPTS),
        "before_sleep": _on_retry,
        "reraise": True,
    }


def split_system_messages(messages: list[dict]) -> tuple[str, list[dict]]:
    """Pull ``system`` role messages out into a single system prompt."""
    system_parts: list[str] = []
    rest: list[dict] = []
    for msg in messages:
        if msg.get("role") == "system":
            content = msg.get("content", "")
            if isinstance(content, str) and content:
                system_parts.append(content)
        else:
            rest.append(msg)
    return "\n\n".join(system_parts), rest
