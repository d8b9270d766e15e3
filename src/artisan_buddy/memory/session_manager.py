from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from loguru import logger

from artisan_buddy.memory.events import EventEmitter, to_iso, utc_now
from artisan_buddy.memory.store import MemoryStore
from artisan_buddy.tokens import estimate_text_tokens

DEFAULT_SESSION_TTL_SECONDS = 86_400


class SessionManager:
    def __init__(
        self,
        store: MemoryStore,
        events: EventEmitter,
        *,
        session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
    ):
        self._store = store
        self._events = events
        self._session_ttl_seconds = session_ttl_seconds

    @property
    def session_ttl_seconds(self) -> int:
        return self._session_ttl_seconds

    def get_session(self, session_id: str) -> dict | None:
        row = self._store.execute(
            "SELECT * FROM sessions WHERE id = ? AND status = 'active' LIMIT 1",
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        session = dict(row)
        if self._is_expired(session["last_activity_at"]):
            logger.debug(f"Session {session_id} is past its TTL")
            return None
        return session

    def list_sessions(self, *, user_id: str | None = None, limit: int = 50) -> list[dict]:
        where, params = self._live_filter()
        if user_id is not None:
            where += " AND user_id = ?"
            params += (user_id,)
        rows = self._store.execute(
            f"""
            SELECT * FROM sessions
            WHERE {where}
            ORDER BY last_activity_at DESC, started_at DESC
            LIMIT ?
            """,
            params + (max(1, limit),),
        ).fetchall()
        return [dict(row) for row in rows]

    def count_sessions(self) -> int:
        """Active sessions that are still inside the TTL."""
        where, params = self._live_filter()
        row = self._store.execute(f"SELECT COUNT(*) AS c FROM sessions WHERE {where}", params).fetchone()
        return int(row["c"])

    def list_expired_session_ids(self, ttl_seconds: int | None = None) -> list[str]:
        ttl = ttl_seconds if ttl_seconds is not None else self._session_ttl_seconds
        if ttl <= 0:
            return []
        cutoff = self._cutoff(ttl)
        rows = self._store.execute(
            "SELECT id FROM sessions WHERE last_activity_at < ? ORDER BY last_activity_at ASC",
            (cutoff,),
        ).fetchall()
        return [str(row["id"]) for row in rows]

    def create_session(
        self,
        user_id: str,
        language: str = "en",
        *,
        session_id: str | None = None,
        metadata: dict | None = None,
    ) -> str:
        sid = session_id or str(uuid4())
        now = utc_now()
        self._store.execute(
            """
            INSERT INTO sessions (id, user_id, language, started_at, last_activity_at, status, metadata_json)
            VALUES (?, ?, ?, ?, ?, 'active', ?)
            """,
            (sid, user_id, language, now, now, json.dumps(metadata or {}, ensure_ascii=False)),
        )
        self._store.commit()
        self._events.emit(sid, "session.started", {"session_id": sid, "user_id": user_id, "language": language})
        return sid

    def touch_session(self, session_id: str) -> None:
        cursor = self._store.execute(
            "UPDATE sessions SET last_activity_at = ? WHERE id = ?",
            (utc_now(), session_id),
        )
        self._store.commit()
        if cursor.rowcount == 0:
            raise ValueError(f"Session does not exist: {session_id}")

    def delete_session(self, session_id: str) -> bool:
        cursor = self._store.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        self._store.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            self._events.emit(session_id, "session.ended", {"session_id": session_id})
        return deleted

    def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        language: str = "en",
        metadata: dict | None = None,
        message_id: str | None = None,
        created_at: datetime | None = None,
    ) -> tuple[str, int]:
        row = self._store.execute(
            "SELECT COALESCE(MAX(seq), 0) AS max_seq, MAX(created_at) AS last_at FROM messages WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        next_seq = int(row["max_seq"]) + 1
        mid = message_id or str(uuid4())
        now = to_iso(created_at) if created_at is not None else utc_now()
        # seq order and timestamp order must agree within a session.
        if row["last_at"] is not None and now < row["last_at"]:
            now = row["last_at"]
        with self._store.transaction():
            self._store.execute(
                """
                INSERT INTO messages (id, session_id, seq, role, content, language, created_at, metadata_json, token_estimate)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    mid,
                    session_id,
                    next_seq,
                    role,
                    content,
                    language,
                    now,
                    json.dumps(metadata or {}, ensure_ascii=False),
                    estimate_text_tokens(content),
                ),
            )
            self._store.execute(
                "UPDATE sessions SET last_activity_at = ? WHERE id = ?",
                (utc_now(), session_id),
            )
        self._events.emit(
            session_id,
            "message.appended",
            {"session_id": session_id, "message_id": mid, "seq": next_seq, "role": role},
        )
        return mid, next_seq

    def load_messages(self, session_id: str, *, limit: int | None = None) -> list[dict]:
        """Return the most recent ``limit`` messages (all when None), oldest first."""
        if limit is None:
            rows = self._store.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY seq ASC",
                (session_id,),
            ).fetchall()
        else:
            rows = self._store.execute(
                """
                SELECT * FROM (
                    SELECT * FROM messages WHERE session_id = ? ORDER BY seq DESC LIMIT ?
                ) ORDER BY seq ASC
                """,
                (session_id, max(0, limit)),
            ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def load_message_page(self, session_id: str, *, limit: int, offset: int = 0) -> list[dict]:
        """Messages in conversation order starting at ``offset`` (0 is the first message)."""
        rows = self._store.execute(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY seq ASC LIMIT ? OFFSET ?",
            (session_id, max(0, limit), max(0, offset)),
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def count_messages(self, session_id: str) -> int:
        row = self._store.execute(
            "SELECT COUNT(*) AS c FROM messages WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        return int(row["c"])

    def clear_messages(self, session_id: str) -> int:
        cursor = self._store.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        self._store.commit()
        return cursor.rowcount

    def build_session_summary(self, session_id: str) -> dict:
        session = self.get_session(session_id)
        if session is None:
            raise ValueError(f"Session does not exist: {session_id}")

        rows = self._store.execute(
            "SELECT role, content FROM messages WHERE session_id = ? ORDER BY seq ASC",
            (session_id,),
        ).fetchall()

        user_count = 0
        assistant_count = 0
        last_user_preview = ""
        last_assistant_preview = ""
        for row in rows:
            role = str(row["role"])
            if role == "user":
                user_count += 1
                last_user_preview = self._preview_content(row["content"])
            elif role == "assistant":
                assistant_count += 1
                last_assistant_preview = self._preview_content(row["content"])

        return {
            "session_id": session_id,
            "user_id": session["user_id"],
            "language": session["language"],
            "started_at": session["started_at"],
            "last_activity_at": session["last_activity_at"],
            "message_count": len(rows),
            "user_message_count": user_count,
            "assistant_message_count": assistant_count,
            "last_user_preview": last_user_preview,
            "last_assistant_preview": last_assistant_preview,
        }

    def _live_filter(self) -> tuple[str, tuple]:
        if self._session_ttl_seconds <= 0:
            return "status = 'active'", ()
        return "status = 'active' AND last_activity_at >= ?", (self._cutoff(self._session_ttl_seconds),)

    def _is_expired(self, last_activity_at: str) -> bool:
        if self._session_ttl_seconds <= 0:
            return False
        return last_activity_at < self._cutoff(self._session_ttl_seconds)

    def _cutoff(self, ttl_seconds: int) -> str:
        return to_iso(datetime.now(UTC) - timedelta(seconds=max(0, ttl_seconds)))

    def _row_to_message(self, row) -> dict:
        return {
            "id": row["id"],
            "session_id": row["session_id"],
            "seq": int(row["seq"]),
            "role": row["role"],
            "content": row["content"],
            "language": row["language"],
            "created_at": row["created_at"],
            "metadata": self._parse_metadata(row["metadata_json"]),
        }

    def _parse_metadata(self, metadata_json: str) -> dict:
        try:
            parsed = json.loads(metadata_json)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
        return {}

    def _preview_content(self, content: str, max_chars: int = 140) -> str:
        text = " ".join(str(content).split())
        if len(text) <= max_chars:
            return text
        return text[: max_chars - 3] + "..."
