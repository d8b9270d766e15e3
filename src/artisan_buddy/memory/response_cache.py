from __future__ import annotations

import json
import time
from typing import Any

from loguru import logger

from artisan_buddy.memory.events import utc_now
from artisan_buddy.memory.store import MemoryStore


class KeyValueCache:
    """JSON values with a per-key TTL, stored beside sessions in the memory database."""

    def __init__(self, store: MemoryStore):
        self._store = store

    def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        expires_at = time.time() + max(0, ttl_seconds)
        self._store.execute(
            """
            INSERT INTO kv_cache (key, value_json, created_at, expires_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value_json = excluded.value_json,
                created_at = excluded.created_at,
                expires_at = excluded.expires_at
            """,
            (key, json.dumps(value, ensure_ascii=False), utc_now(), expires_at),
        )
        self._store.commit()

    def get_json(self, key: str) -> Any | None:
        row = self._store.execute(
            "SELECT value_json, expires_at FROM kv_cache WHERE key = ? LIMIT 1",
            (key,),
        ).fetchone()
        if row is None:
            return None
        if float(row["expires_at"]) <= time.time():
            self.delete(key)
            return None
        return json.loads(row["value_json"])

    def ttl_remaining(self, key: str) -> float | None:
        row = self._store.execute(
            "SELECT expires_at FROM kv_cache WHERE key = ? LIMIT 1",
            (key,),
        ).fetchone()
        if row is None:
            return None
        remaining = float(row["expires_at"]) - time.time()
        return remaining if remaining > 0 else None

    def delete(self, key: str) -> bool:
        cursor = self._store.execute("DELETE FROM kv_cache WHERE key = ?", (key,))
        self._store.commit()
        return cursor.rowcount > 0

    def purge_expired(self) -> int:
        cursor = self._store.execute("DELETE FROM kv_cache WHERE expires_at <= ?", (time.time(),))
        self._store.commit()
        if cursor.rowcount:
            logger.debug(f"Purged {cursor.rowcount} expired cache entries")
        return cursor.rowcount
