from datetime import UTC, datetime, timedelta

from tests.memory.base import MemoryStoreTestCase
from artisan_buddy.memory import SessionManager


class SessionManagerTests(MemoryStoreTestCase):
    def test_create_session_records_user_and_language(self) -> None:
        sid = self._sessions.create_session("artisan-1", "hi", metadata={"context_hash": "abc"})
        session = self._sessions.get_session(sid)
        self.assertIsNotNone(session)
        self.assertEqual("artisan-1", session["user_id"])
        self.assertEqual("hi", session["language"])
        self.assertEqual("active", session["status"])
        self.assertIn("abc", session["metadata_json"])

    def test_create_session_uses_given_id(self) -> None:
        sid = self._sessions.create_session("artisan-1", session_id="fixed-id")
        self.assertEqual("fixed-id", sid)
        self.assertIsNotNone(self._sessions.get_session("fixed-id"))

    def test_get_session_returns_none_when_missing(self) -> None:
        self.assertIsNone(self._sessions.get_session("nope"))

    def test_get_session_returns_none_after_ttl(self) -> None:
        sid = self._sessions.create_session("artisan-1")
        self._age_session(sid, 86_400 + 60)
        self.assertIsNone(self._sessions.get_session(sid))

    def test_list_expired_session_ids_uses_ttl(self) -> None:
        fresh = self._sessions.create_session("artisan-1")
        stale = self._sessions.create_session("artisan-2")
        self._age_session(stale, 2 * 86_400)

        expired = self._sessions.list_expired_session_ids()
        self.assertEqual([stale], expired)
        self.assertNotIn(fresh, expired)
        self.assertEqual([], self._sessions.list_expired_session_ids(ttl_seconds=0))

    def test_touch_session_raises_for_unknown_session(self) -> None:
        with self.assertRaises(ValueError):
            self._sessions.touch_session("missing")

    def test_append_and_load_messages(self) -> None:
        sid = self._sessions.create_session("artisan-1")
        self._sessions.append_message(sid, "user", "namaste", language="hi", metadata={"intent": "general_chat"})
        self._sessions.append_message(sid, "assistant", "Namaste! How can I help?")

        loaded = self._sessions.load_messages(sid)
        self.assertEqual(2, len(loaded))
        self.assertEqual(["user", "assistant"], [m["role"] for m in loaded])
        self.assertEqual([1, 2], [m["seq"] for m in loaded])
        self.assertEqual("hi", loaded[0]["language"])
        self.assertEqual({"intent": "general_chat"}, loaded[0]["metadata"])

    def test_load_messages_with_limit_returns_latest_oldest_first(self) -> None:
        sid = self._sessions.create_session("artisan-1")
        for i in range(5):
            self._sessions.append_message(sid, "user", f"m{i}")

        loaded = self._sessions.load_messages(sid, limit=2)
        self.assertEqual(["m3", "m4"], [m["content"] for m in loaded])

    def test_message_timestamps_never_go_backwards(self) -> None:
        sid = self._sessions.create_session("artisan-1")
        now = datetime.now(UTC)
        self._sessions.append_message(sid, "user", "later", created_at=now)
        self._sessions.append_message(sid, "assistant", "earlier", created_at=now - timedelta(minutes=5))

        first, second = self._sessions.load_messages(sid)
        self.assertLess(first["seq"], second["seq"])
        self.assertLessEqual(first["created_at"], second["created_at"])

    def test_append_message_emits_event(self) -> None:
        sid = self._sessions.create_session("artisan-1")
        mid, seq = self._sessions.append_message(sid, "user", "hello")

        events = {e["type"]: e for e in self._events.list_events(sid)}
        self.assertEqual({"session.started", "message.appended"}, set(events))
        self.assertEqual(mid, events["message.appended"]["payload"]["message_id"])
        self.assertEqual(seq, events["message.appended"]["payload"]["seq"])

    def test_delete_session_removes_messages(self) -> None:
        sid = self._sessions.create_session("artisan-1")
        self._sessions.append_message(sid, "user", "hello")

        self.assertTrue(self._sessions.delete_session(sid))
        self.assertFalse(self._sessions.delete_session(sid))
        self.assertEqual(0, self._sessions.count_messages(sid))
        self.assertIsNone(self._sessions.get_session(sid))

    def test_list_sessions_filters_by_user(self) -> None:
        self._sessions.create_session("artisan-1", session_id="a")
        self._sessions.create_session("artisan-2", session_id="b")
        self._age_session("a", 60)

        self.assertEqual(["b", "a"], [s["id"] for s in self._sessions.list_sessions()])
        self.assertEqual(["a"], [s["id"] for s in self._sessions.list_sessions(user_id="artisan-1")])
        self.assertEqual(2, self._sessions.count_sessions())

    def test_build_session_summary_includes_counts_and_previews(self) -> None:
        sid = self._sessions.create_session("artisan-1", session_id="summary")
        self._sessions.append_message(sid, "user", "First user message")
        self._sessions.append_message(sid, "assistant", "Assistant answer")
        self._sessions.append_message(sid, "user", "Second user message for preview")

        summary = self._sessions.build_session_summary(sid)
        self.assertEqual("summary", summary["session_id"])
        self.assertEqual("artisan-1", summary["user_id"])
        self.assertEqual(3, summary["message_count"])
        self.assertEqual(2, summary["user_message_count"])
        self.assertEqual(1, summary["assistant_message_count"])
        self.assertIn("Second user message", summary["last_user_preview"])
        self.assertIn("Assistant answer", summary["last_assistant_preview"])

    def test_build_session_summary_raises_for_unknown_session(self) -> None:
        with self.assertRaises(ValueError):
            self._sessions.build_session_summary("missing")

    def test_sessions_past_ttl_are_not_counted_or_listed(self) -> None:
        self._sessions.create_session("artisan-1", session_id="stale")
        self._sessions.create_session("artisan-1", session_id="fresh")
        self._age_session("stale", 2 * 86_400)

        self.assertIsNone(self._sessions.get_session("stale"))
        self.assertEqual(1, self._sessions.count_sessions())
        self.assertEqual(["fresh"], [s["id"] for s in self._sessions.list_sessions(user_id="artisan-1")])
        self.assertEqual(["stale"], self._sessions.list_expired_session_ids())

    def test_sessions_never_expire_without_ttl(self) -> None:
        sessions = SessionManager(self._store, self._events, session_ttl_seconds=0)
        sessions.create_session("artisan-1", session_id="old")
        self._age_session("old", 30 * 86_400)

        self.assertEqual(1, sessions.count_sessions())
        self.assertIsNotNone(sessions.get_session("old"))

    def test_load_message_page_starts_at_first_message(self) -> None:
        sid = self._sessions.create_session("artisan-1")
        for i in range(5):
            self._sessions.append_message(sid, "user", f"m{i}")

        page = self._sessions.load_message_page(sid, limit=2, offset=1)
        self.assertEqual(["m1", "m2"], [m["content"] for m in page])
        self.assertEqual([], self._sessions.load_message_page(sid, limit=2, offset=5))
