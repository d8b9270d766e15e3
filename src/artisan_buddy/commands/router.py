from __future__ import annotations

from collections.abc import Awaitable, Callable

Handler = Callable[[list[str]], Awaitable[None]]


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_session: Handler,
        on_history: Handler,
        on_search: Handler,
        on_export: Handler,
        on_context: Handler,
        on_end: Handler,
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._handlers: dict[str, Handler] = {
            "/session": on_session,
            "/history": on_history,
            "/search": on_search,
            "/export": on_export,
            "/context": on_context,
            "/end": on_end,
        }
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command, *args = trimmed.split()
        if command == "/help":
            await self._on_help()
            return True

        handler = self._handlers.get(command)
        if handler is None:
            self._on_unknown(trimmed)
            return True
        await handler(args)
        return True
