from __future__ import annotations

from artisan_buddy.chat_service import ChatReply
from artisan_buddy.models import Message


class SessionController:
    """Formats sessions, replies and history for the console."""

    def __init__(self, *, line_prefix: str, short_id_len: int = 8, preview_chars: int = 120):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len
        self._preview_chars = preview_chars

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_summary_lines(self, summary: dict) -> list[str]:
        lines = [f"{self._line_prefix}Session {self.short_id(summary['session_id'])} (id={summary['session_id']})"]
        lines.append(
            f"{self._line_prefix}- User: {summary['user_id']} | Language: {summary['language']}"
        )
        lines.append(
            f"{self._line_prefix}- Started: {summary['started_at']} | "
            f"Last activity: {summary['last_activity_at']}"
        )
        lines.append(
            f"{self._line_prefix}- Messages: {summary['message_count']} "
            f"(user={summary['user_message_count']}, assistant={summary['assistant_message_count']})"
        )
        last_user = summary.get("last_user_preview", "")
        if last_user:
            lines.append(f"{self._line_prefix}- Last user: {last_user}")
        last_assistant = summary.get("last_assistant_preview", "")
        if last_assistant:
            lines.append(f"{self._line_prefix}- Last assistant: {last_assistant}")
        return lines

    def format_message_line(self, message: Message) -> str:
        content = " ".join(message.content.split())
        if len(content) > self._preview_chars:
            content = content[: self._preview_chars - 3] + "..."
        stamp = message.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        return f"{self._line_prefix}#{message.seq} [{stamp}] {message.role}: {content}"

    def format_reply_lines(self, reply: ChatReply) -> list[str]:
        lines = [f"{self._line_prefix}{reply.response}"]
        if reply.suggested_actions:
            labels = ", ".join(
                f"{a.label} ({a.route})" if a.route else a.label for a in reply.suggested_actions
            )
            lines.append(f"{self._line_prefix}Actions: {labels}")
        for question in reply.follow_up_questions:
            lines.append(f"{self._line_prefix}? {question}")
        return lines

    def format_context_lines(self, statistics: dict, summary: str | None) -> list[str]:
        lines = [
            f"{self._line_prefix}Context: {statistics['context_window_size']} of "
            f"{statistics['total_messages']} messages in window "
            f"(quality={statistics['quality_score']:.2f}, flow={statistics['flow']}, "
            f"topic={statistics['current_topic'] or '-'})"
        ]
        if summary:
            lines.append(f"{self._line_prefix}Summary:")
            lines.extend(f"{self._line_prefix}  {line}" for line in summary.splitlines() if line.strip())
        return lines

    def format_session_list_lines(self, sessions: list[dict], active_session_id: str | None) -> list[str]:
        if not sessions:
            return [f"{self._line_prefix}No active sessions."]
        lines = []
        for session in sessions:
            marker = "*" if session["id"] == active_session_id else " "
            lines.append(
                f"{self._line_prefix}{marker} {self.short_id(session['id'])} "
                f"[{session['language']}] last activity {session['last_activity_at']}"
            )
        return lines
