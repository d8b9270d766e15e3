import asyncio
import json
from datetime import UTC, datetime

from tests.memory.base import MemoryStoreTestCase
from artisan_buddy.context_window import ContextWindowManager
from artisan_buddy.conversation_manager import ConversationManager
from artisan_buddy.errors import InvalidInputError, SessionNotFoundError
from artisan_buddy.models import ArtisanContext, Message


class ConversationManagerTests(MemoryStoreTestCase):
    def setUp(self) -> None:
        super().setUp()
        self._context_windows = ContextWindowManager(self._cache, window_size=20, summarization_threshold=50)
        self._manager = ConversationManager(self._sessions, self._context_windows, self._cache)

    def _session_with_messages(self, *contents: tuple[str, str]) -> str:
        session = self._manager.initialize_session("artisan-1", "en")
        for role, content in contents:
            asyncio.run(self._manager.process_message(session.id, Message(role=role, content=content)))
        return session.id

    def test_initialize_session_uses_context_language_and_hash(self) -> None:
        context = ArtisanContext.from_dict(
            "artisan-1",
            {"profile": {"name": "Ravi", "updatedAt": "2024-01-01"}, "preferences": {"language": "ta"}},
        )
        session = self._manager.initialize_session("artisan-1", context=context)

        self.assertEqual("ta", session.language)
        self.assertEqual("artisan-1", session.user_id)
        self.assertEqual(16, len(session.metadata["context_hash"]))
        self.assertIsNotNone(self._context_windows.get_state(session.id))

    def test_initialize_session_defaults_to_english(self) -> None:
        session = self._manager.initialize_session("artisan-1")
        self.assertEqual("en", session.language)

    def test_initialize_session_requires_user_id(self) -> None:
        with self.assertRaises(InvalidInputError):
            self._manager.initialize_session("")

    def test_process_message_for_unknown_session_raises(self) -> None:
        with self.assertRaises(SessionNotFoundError) as ctx:
            asyncio.run(self._manager.process_message("missing", Message(role="user", content="hi")))
        self.assertEqual(404, ctx.exception.status_code)

    def test_process_message_stores_and_tracks_topic(self) -> None:
        session = self._manager.initialize_session("artisan-1")
        stored = asyncio.run(
            self._manager.process_message(
                session.id,
                Message(role="user", content="Show my sales", metadata={"intent": "query_sales"}),
            )
        )

        self.assertIsNotNone(stored.id)
        self.assertEqual(1, stored.seq)
        self.assertEqual(session.id, stored.session_id)
        self.assertEqual("query_sales", stored.intent)

        state = self._context_windows.get_state(session.id)
        self.assertEqual("query_sales", state.current_topic)
        self.assertEqual(1, state.message_count)

    def test_history_is_ordered_oldest_first(self) -> None:
        sid = self._session_with_messages(("user", "one"), ("assistant", "two"), ("user", "three"))
        history = self._manager.get_history(sid)
        self.assertEqual(["one", "two", "three"], [m.content for m in history])
        self.assertEqual([1, 2, 3], [m.seq for m in history])
        self.assertEqual(["two", "three"], [m.content for m in self._manager.get_history(sid, limit=2)])

    def test_paginated_history(self) -> None:
        sid = self._session_with_messages(*[("user", f"m{i}") for i in range(5)])

        page = self._manager.get_paginated_history(sid, limit=2, offset=1)
        self.assertEqual(["m1", "m2"], [m.content for m in page.messages])
        self.assertEqual(5, page.total)
        self.assertTrue(page.has_more)

        last = self._manager.get_paginated_history(sid, limit=2, offset=4)
        self.assertEqual(["m4"], [m.content for m in last.messages])
        self.assertFalse(last.has_more)

        beyond = self._manager.get_paginated_history(sid, limit=2, offset=10)
        self.assertEqual([], beyond.messages)
        self.assertFalse(beyond.has_more)

    def test_paginated_history_rejects_bad_arguments(self) -> None:
        sid = self._session_with_messages(("user", "hi"))
        with self.assertRaises(InvalidInputError):
            self._manager.get_paginated_history(sid, limit=0)
        with self.assertRaises(InvalidInputError):
            self._manager.get_paginated_history(sid, offset=-1)

    def test_search_messages_filters(self) -> None:
        session = self._manager.initialize_session("artisan-1")
        for role, content, language in (
            ("user", "Price of my Saree?", "en"),
            ("assistant", "Your saree sells for 2000", "en"),
            ("user", "साड़ी saree की कीमत", "hi"),
        ):
            asyncio.run(
                self._manager.process_message(session.id, Message(role=role, content=content, language=language))
            )

        self.assertEqual(3, len(self._manager.search_messages(session.id, "SAREE")))
        users = self._manager.search_messages(session.id, "saree", role="user")
        self.assertEqual(2, len(users))
        hindi = self._manager.search_messages(session.id, "saree", language="hi")
        self.assertEqual(["साड़ी saree की कीमत"], [m.content for m in hindi])
        self.assertEqual(1, len(self._manager.search_messages(session.id, "saree", limit=1)))

    def test_export_json(self) -> None:
        sid = self._session_with_messages(("user", "hello"), ("assistant", "namaste"))
        exported = json.loads(self._manager.export_messages(sid, "json"))
        self.assertEqual(["hello", "namaste"], [m["content"] for m in exported])
        self.assertEqual("user", exported[0]["role"])

    def test_export_text(self) -> None:
        sid = self._session_with_messages(("user", "hello"), ("assistant", "namaste"))
        exported = self._manager.export_messages(sid, "text")
        self.assertIn(f"Conversation Export - Session: {sid}", exported)
        self.assertIn("Total Messages: 2", exported)
        self.assertIn("=" * 80, exported)
        self.assertIn("[1] USER (en)", exported)
        self.assertIn("Content: namaste", exported)

    def test_export_rejects_unknown_format(self) -> None:
        sid = self._session_with_messages(("user", "hello"))
        with self.assertRaises(InvalidInputError):
            self._manager.export_messages(sid, "pdf")

    def test_end_session_removes_everything(self) -> None:
        sid = self._session_with_messages(("user", "hello"))

        self.assertTrue(self._manager.end_session(sid))
        self.assertIsNone(self._manager.get_session(sid))
        self.assertIsNone(self._context_windows.get_state(sid))
        self.assertEqual([], self._manager.get_history(sid))
        self.assertFalse(self._manager.end_session(sid))

    def test_cleanup_expired_sessions(self) -> None:
        fresh = self._manager.initialize_session("artisan-1")
        stale = self._manager.initialize_session("artisan-2")
        self._age_session(stale.id, 2 * 86_400)

        self.assertEqual(1, self._manager.cleanup_expired_sessions())
        self.assertIsNotNone(self._manager.get_session(fresh.id))
        self.assertEqual(1, self._manager.get_active_session_count())

    def test_extract_recent_topics(self) -> None:
        session = self._manager.initialize_session("artisan-1")
        for intent in ("query_sales", "query_sales", "query_schemes"):
            asyncio.run(
                self._manager.process_message(
                    session.id, Message(role="user", content="q", metadata={"intent": intent})
                )
            )
        self.assertEqual(["query_sales", "query_schemes"], self._manager.extract_recent_topics(session.id))

    def test_context_operations_delegate_to_window_manager(self) -> None:
        sid = self._session_with_messages(("user", "hello"), ("assistant", "namaste"))

        window = self._manager.get_context_window(sid, max_messages=1)
        self.assertEqual(["namaste"], [m.content for m in window])

        stats = self._manager.get_context_statistics(sid)
        self.assertEqual(2, stats["total_messages"])

        summary = asyncio.run(self._manager.summarize_conversation(sid))
        self.assertTrue(summary.startswith("Conversation Summary:"))
        self.assertEqual(summary, self._manager.get_effective_context(sid)["summary"])

        overflow = asyncio.run(self._manager.handle_context_overflow(sid))
        self.assertEqual("truncate", overflow.action)

    def _bulk_messages(self, session_id: str, count: int) -> None:
        now = datetime.now(UTC).isoformat(timespec="milliseconds")
        self._store.executemany(
            "INSERT INTO messages (id, session_id, seq, role, content, created_at) VALUES (?, ?, ?, 'user', ?, ?)",
            [(f"{session_id}-{seq}", session_id, seq, f"m{seq:04d}", now) for seq in range(1, count + 1)],
        )
        self._store.commit()

    def test_long_history_is_fully_reachable(self) -> None:
        session = self._manager.initialize_session("artisan-1")
        self._bulk_messages(session.id, 1005)

        page = self._manager.get_paginated_history(session.id, limit=3, offset=0)
        self.assertEqual(1005, page.total)
        self.assertEqual(["m0001", "m0002", "m0003"], [m.content for m in page.messages])
        self.assertTrue(page.has_more)

        tail = self._manager.get_paginated_history(session.id, limit=10, offset=1000)
        self.assertEqual(["m1001", "m1002", "m1003", "m1004", "m1005"], [m.content for m in tail.messages])
        self.assertFalse(tail.has_more)

        self.assertEqual(["m0001"], [m.content for m in self._manager.search_messages(session.id, "m0001")])
        self.assertEqual(1005, len(json.loads(self._manager.export_messages(session.id, "json"))))

    def test_expired_sessions_drop_out_of_active_count_before_cleanup(self) -> None:
        self._manager.initialize_session("artisan-1")
        stale = self._manager.initialize_session("artisan-2")
        self._age_session(stale.id, 2 * 86_400)

        self.assertIsNone(self._manager.get_session(stale.id))
        self.assertEqual(1, self._manager.get_active_session_count())

    def test_session_end_callback_runs_for_expired_and_ended_sessions(self) -> None:
        ended: list[str] = []
        manager = ConversationManager(self._sessions, self._context_windows, self._cache, on_session_end=ended.append)
        stale = manager.initialize_session("artisan-1")
        closed = manager.initialize_session("artisan-2")
        self._age_session(stale.id, 2 * 86_400)

        manager.end_session(closed.id)
        manager.cleanup_expired_sessions()

        self.assertEqual([closed.id, stale.id], ended)

    def test_recent_topics_end_with_the_newest_intent(self) -> None:
        session = self._manager.initialize_session("artisan-1")
        for intent in ("query_sales", "query_schemes", "query_sales"):
            asyncio.run(
                self._manager.process_message(
                    session.id, Message(role="user", content="q", metadata={"intent": intent})
                )
            )
        self.assertEqual(["query_schemes", "query_sales"], self._manager.extract_recent_topics(session.id))
