from tests.memory.base import MemoryStoreTestCase
from artisan_buddy.memory import PruneResult, prune_memory


class PruningTests(MemoryStoreTestCase):
    def test_retention_days_prunes_old_sessions(self) -> None:
        old_sid = self._sessions.create_session("artisan-1", session_id="old")
        self._sessions.append_message(old_sid, "user", "old message")
        self._store.execute("UPDATE sessions SET last_activity_at = '2000-01-01T00:00:00+00:00' WHERE id = 'old'")
        self._store.commit()

        prune_memory(
            self._store,
            max_sessions=200,
            max_messages_per_session=5000,
            retention_days=1,
        )

        row = self._store.execute("SELECT id FROM sessions WHERE id = 'old'").fetchone()
        self.assertIsNone(row)
        self.assertEqual(0, self._sessions.count_messages("old"))

    def test_max_messages_per_session_keeps_latest(self) -> None:
        sid = self._sessions.create_session("artisan-1", session_id="msg-cap")
        for i in range(5):
            self._sessions.append_message(sid, "user", f"m{i}")

        prune_memory(
            self._store,
            max_sessions=200,
            max_messages_per_session=2,
            retention_days=36500,
        )

        rows = self._store.execute(
            "SELECT seq, content FROM messages WHERE session_id = ? ORDER BY seq ASC",
            (sid,),
        ).fetchall()
        self.assertEqual(2, len(rows))
        self.assertEqual(4, int(rows[0]["seq"]))
        self.assertEqual("m4", rows[1]["content"])

    def test_max_sessions_keeps_most_recent(self) -> None:
        for sid in ("s1", "s2", "s3"):
            self._sessions.create_session("artisan-1", session_id=sid)
        self._store.execute("UPDATE sessions SET last_activity_at = '2020-01-01T00:00:00+00:00' WHERE id = 's1'")
        self._store.execute("UPDATE sessions SET last_activity_at = '2021-01-01T00:00:00+00:00' WHERE id = 's2'")
        self._store.execute("UPDATE sessions SET last_activity_at = '2022-01-01T00:00:00+00:00' WHERE id = 's3'")
        self._store.commit()

        prune_memory(
            self._store,
            max_sessions=2,
            max_messages_per_session=5000,
            retention_days=36500,
        )

        rows = self._store.execute("SELECT id FROM sessions ORDER BY id ASC").fetchall()
        self.assertEqual(["s2", "s3"], [str(r["id"]) for r in rows])

    def test_expired_cache_entries_are_removed(self) -> None:
        self._cache.set_json("stale", 1, 60)
        self._cache.set_json("fresh", 2, 60)
        self._expire_cache_entry("stale")

        prune_memory(
            self._store,
            max_sessions=200,
            max_messages_per_session=5000,
            retention_days=30,
        )

        keys = [r["key"] for r in self._store.execute("SELECT key FROM kv_cache").fetchall()]
        self.assertEqual(["fresh"], keys)

    def test_result_counts_removed_rows(self) -> None:
        sid = self._sessions.create_session("artisan-1", session_id="counted")
        for i in range(4):
            self._sessions.append_message(sid, "user", f"m{i}")
        self._store.execute("UPDATE sessions SET status = 'ended' WHERE id = 'counted'")
        keep = self._sessions.create_session("artisan-2", session_id="kept")
        for i in range(3):
            self._sessions.append_message(keep, "assistant", f"a{i}")
        self._store.commit()

        result = prune_memory(
            self._store,
            max_sessions=0,
            max_messages_per_session=1,
            retention_days=30,
        )

        self.assertEqual(1, result.sessions)
        self.assertEqual(2, result.messages)
        self.assertIsInstance(result, PruneResult)
        self.assertEqual(1, self._sessions.count_messages("kept"))

    def test_zero_retention_days_keeps_old_sessions(self) -> None:
        self._sessions.create_session("artisan-1", session_id="old")
        self._sessions.create_session("artisan-1", session_id="done")
        self._store.execute("UPDATE sessions SET last_activity_at = '2000-01-01T00:00:00+00:00' WHERE id = 'old'")
        self._store.execute("UPDATE sessions SET status = 'ended' WHERE id = 'done'")
        self._store.commit()
        self._cache.set_json("stale", 1, 60)
        self._expire_cache_entry("stale")

        result = prune_memory(
            self._store,
            max_sessions=0,
            max_messages_per_session=0,
            retention_days=0,
        )

        rows = self._store.execute("SELECT id FROM sessions").fetchall()
        self.assertEqual(["old"], [str(r["id"]) for r in rows])
        self.assertEqual(1, result.sessions)
        self.assertEqual(1, result.cache_entries)
