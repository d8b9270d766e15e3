from __future__ import annotations

import sys
import threading

from loguru import logger

from artisan_buddy.bootstrap import AppRuntime
from artisan_buddy.commands.router import CommandRouter
from artisan_buddy.errors import ArtisanBuddyError
from artisan_buddy.services.session_controller import SessionController

_SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
_LINE_PREFIX = "buddy> "

_HELP_LINES = [
    "/help                      Show this help",
    "/session                   Show the current session",
    "/session list [limit]      List your active sessions",
    "/history [limit] [offset]  List stored messages",
    "/search <query>            Search this session's messages",
    "/export [json|text]        Print the conversation export",
    "/context                   Show context window statistics and summary",
    "/end                       End the session and start a new one",
    "exit | quit                Leave",
]


class Spinner:
    """Thread-based spinner that renders on the current line using \\r."""

    def __init__(self, prefix: str = "", label: str = " Thinking..."):
        self._prefix = prefix
        self._label = label
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._frame_width = 1 + len(label)

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        if self._thread:
            self._thread.join()
        clear = self._prefix + " " * self._frame_width
        sys.stdout.write("\r" + clear + "\r")
        sys.stdout.flush()

    def _run(self) -> None:
        i = 0
        try:
            while not self._stop.is_set():
                frame = _SPINNER_FRAMES[i % len(_SPINNER_FRAMES)] + self._label
                sys.stdout.write("\r" + self._prefix + frame)
                sys.stdout.flush()
                self._stop.wait(0.08)
                i += 1
        except (UnicodeEncodeError, OSError):
            pass  # terminal can't draw the frames


class ChatConsole:
    def __init__(self, runtime: AppRuntime, *, user_id: str, language: str | None = None):
        self._runtime = runtime
        self._user_id = user_id
        self._language = language
        self._session_id: str | None = None
        self._controller = SessionController(line_prefix=_LINE_PREFIX)
        self._router = CommandRouter(
            on_help=self._on_help,
            on_session=self._on_session,
            on_history=self._on_history,
            on_search=self._on_search,
            on_export=self._on_export,
            on_context=self._on_context,
            on_end=self._on_end,
            on_unknown=self._on_unknown,
        )

    @property
    def session_id(self) -> str | None:
        return self._session_id

    async def handle_line(self, line: str) -> None:
        if await self._router.try_handle(line):
            return

        spinner = Spinner(prefix=_LINE_PREFIX)
        spinner.start()
        try:
            reply = await self._runtime.chat.handle_chat(
                line,
                session_id=self._session_id,
                user_id=self._user_id,
                language=self._language,
            )
        finally:
            spinner.stop()

        self._session_id = reply.session_id
        for out in self._controller.format_reply_lines(reply):
            print(out)

    async def run(self) -> None:
        print("Artisan Buddy (type 'exit' to quit, '/help' for commands)")
        if self._runtime.log_descriptions:
            print(f"Logging: {', '.join(self._runtime.log_descriptions)}")
        print()

        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                await self.handle_line(trimmed)
            except ArtisanBuddyError as ex:
                print(f"{_LINE_PREFIX}{ex.user_message}")
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
            print()

    # -- commands -----------------------------------------------------------

    def _require_session(self) -> str | None:
        if self._session_id is None:
            print(f"{_LINE_PREFIX}No active session yet. Say something first.")
        return self._session_id

    async def _on_help(self) -> None:
        for line in _HELP_LINES:
            print(f"{_LINE_PREFIX}{line}")

    async def _on_session(self, args: list[str]) -> None:
        if args and args[0] == "list":
            await self._list_sessions(args[1:])
            return
        session_id = self._require_session()
        if session_id is None:
            return
        summary = self._runtime.session_manager.build_session_summary(session_id)
        for line in self._controller.format_summary_lines(summary):
            print(line)

    async def _list_sessions(self, args: list[str]) -> None:
        try:
            limit = int(args[0]) if args else 10
        except ValueError:
            print(f"{_LINE_PREFIX}Usage: /session list [limit]")
            return
        sessions = self._runtime.session_manager.list_sessions(user_id=self._user_id, limit=limit)
        for line in self._controller.format_session_list_lines(sessions, self._session_id):
            print(line)

    async def _on_history(self, args: list[str]) -> None:
        session_id = self._require_session()
        if session_id is None:
            return
        try:
            limit = int(args[0]) if args else 20
            offset = int(args[1]) if len(args) > 1 else 0
        except ValueError:
            print(f"{_LINE_PREFIX}Usage: /history [limit] [offset]")
            return
        page = self._runtime.conversations.get_paginated_history(session_id, limit=limit, offset=offset)
        for message in page.messages:
            print(self._controller.format_message_line(message))
        more = " (more available)" if page.has_more else ""
        print(f"{_LINE_PREFIX}{len(page.messages)} of {page.total} messages{more}")

    async def _on_search(self, args: list[str]) -> None:
        session_id = self._require_session()
        if session_id is None:
            return
        if not args:
            print(f"{_LINE_PREFIX}Usage: /search <query>")
            return
        matches = self._runtime.conversations.search_messages(session_id, " ".join(args))
        if not matches:
            print(f"{_LINE_PREFIX}No matching messages.")
        for message in matches:
            print(self._controller.format_message_line(message))

    async def _on_export(self, args: list[str]) -> None:
        session_id = self._require_session()
        if session_id is None:
            return
        fmt = args[0] if args else "json"
        print(self._runtime.conversations.export_messages(session_id, fmt))

    async def _on_context(self, args: list[str]) -> None:
        session_id = self._require_session()
        if session_id is None:
            return
        conversations = self._runtime.conversations
        effective = conversations.get_effective_context(session_id)
        lines = self._controller.format_context_lines(
            conversations.get_context_statistics(session_id),
            effective["summary"],
        )
        for line in lines:
            print(line)

    async def _on_end(self, args: list[str]) -> None:
        session_id = self._require_session()
        if session_id is None:
            return
        self._runtime.conversations.end_session(session_id)
        self._session_id = None
        print(f"{_LINE_PREFIX}Session {self._controller.short_id(session_id)} ended.")

    def _on_unknown(self, command: str) -> None:
        print(f"{_LINE_PREFIX}Unknown command: {command}. Type /help for commands.")
