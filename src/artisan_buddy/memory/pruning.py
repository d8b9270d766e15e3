from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from loguru import logger

from artisan_buddy.memory.store import MemoryStore


@dataclass
class PruneResult:
    sessions: int = 0
    messages: int = 0
    events: int = 0
    cache_entries: int = 0


def prune_memory(
    store: MemoryStore,
    *,
    max_sessions: int,
    max_messages_per_session: int,
    retention_days: int,
) -> PruneResult:
    """Apply retention limits to the store. Any limit of 0 or less disables it.

    Ended sessions and expired cache rows are always removed. Messages of a
    removed session go with it (``ON DELETE CASCADE``), so
    ``PruneResult.messages`` only counts per-session trimming.
    """
    result = PruneResult()

    with store.transaction():
        result.sessions += store.execute("DELETE FROM sessions WHERE status = 'ended'").rowcount
        result.cache_entries = store.execute(
            "DELETE FROM kv_cache WHERE expires_at <= ?",
            (time.time(),),
        ).rowcount

        if retention_days > 0:
            cutoff = (datetime.now(UTC) - timedelta(days=retention_days)).isoformat(timespec="milliseconds")
            result.sessions += store.execute(
                "DELETE FROM sessions WHERE last_activity_at < ?",
                (cutoff,),
            ).rowcount
            result.events = store.execute("DELETE FROM events WHERE created_at < ?", (cutoff,)).rowcount

        if max_messages_per_session > 0:
            result.messages = store.execute(
                """
                DELETE FROM messages WHERE id IN (
                    SELECT id FROM (
                        SELECT id, ROW_NUMBER() OVER (PARTITION BY session_id ORDER BY seq DESC) AS rank
                        FROM messages
                    )
                    WHERE rank > ?
                )
                """,
                (max_messages_per_session,),
            ).rowcount

        if max_sessions > 0:
            result.sessions += store.execute(
                """
                DELETE FROM sessions WHERE id IN (
                    SELECT id FROM sessions
                    ORDER BY last_activity_at DESC
                    LIMIT -1 OFFSET ?
                )
                """,
                (max_sessions,),
            ).rowcount

    if result.sessions or result.messages:
        logger.info(
            f"Memory pruned: {result.sessions} sessions, {result.messages} messages, "
            f"{result.events} events, {result.cache_entries} cache entries"
        )
    else:
        logger.debug(f"Memory pruning found nothing to remove (retention={retention_days}d)")
    return result
