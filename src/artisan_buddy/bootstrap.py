from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from artisan_buddy.app_config import AppConfig, RuntimeEnv
from artisan_buddy.chat_service import ChatService
from artisan_buddy.context_window import ContextWindowManager, ExtractiveSummarizer, LLMSummarizer, Summarizer
from artisan_buddy.conversation_manager import ConversationManager
from artisan_buddy.logging_config import setup_logging
from artisan_buddy.memory import EventEmitter, KeyValueCache, MemoryStore, SessionManager, prune_memory
from artisan_buddy.provider import LLMProvider, create_provider
from artisan_buddy.response_generator import ResponseGenerator, ResponseOptions
from artisan_buddy.retrieval import KnowledgeRetriever, NoneRetriever, StaticRetriever, load_documents


@dataclass
class AppRuntime:
    config: AppConfig
    memory_store: MemoryStore
    session_manager: SessionManager
    cache: KeyValueCache
    conversations: ConversationManager
    generator: ResponseGenerator
    chat: ChatService
    log_descriptions: list[str]

    def close(self) -> None:
        self.memory_store.close()


def bootstrap_runtime(
    app: AppConfig,
    env: RuntimeEnv,
    *,
    provider: LLMProvider | None = None,
    retriever: KnowledgeRetriever | None = None,
    configure_logging: bool = True,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers) if configure_logging else []

    db_path = app.memory_db_path
    if db_path != ":memory:" and not Path(db_path).is_absolute():
        db_path = str(Path.cwd() / db_path)
    memory_store = MemoryStore(db_path)
    prune_memory(
        memory_store,
        max_sessions=app.memory_max_sessions,
        max_messages_per_session=app.memory_max_messages_per_session,
        retention_days=app.memory_retention_days,
    )

    events = EventEmitter(memory_store)
    session_manager = SessionManager(memory_store, events, session_ttl_seconds=app.session_ttl_seconds)
    cache = KeyValueCache(memory_store)

    llm = provider or create_provider(app.provider_name, env.provider_api_key)

    summarizer: Summarizer
    if app.summarization_strategy == "llm":
        summarizer = LLMSummarizer(llm, app.model, max_tokens=app.max_tokens)
    else:
        summarizer = ExtractiveSummarizer()

    context_windows = ContextWindowManager(
        cache,
        summarizer=summarizer,
        window_size=app.context_window_size,
        summarization_threshold=app.summarization_threshold,
        max_tokens=app.max_context_tokens,
    )

    if retriever is None:
        if app.knowledge_base_path:
            retriever = StaticRetriever(load_documents(app.knowledge_base_path))
        else:
            retriever = NoneRetriever()

    options = ResponseOptions(
        use_cache=app.response_cache_enabled,
        max_length=app.max_response_length,
        include_follow_ups=app.include_follow_ups,
    )
    generator = ResponseGenerator(
        llm,
        app.model,
        cache=cache,
        retriever=retriever,
        max_tokens=app.max_tokens,
        temperature=app.temperature,
        default_options=options,
    )
    conversations = ConversationManager(
        session_manager,
        context_windows,
        cache,
        on_session_end=generator.clear_metrics,
    )
    conversations.cleanup_expired_sessions()

    return AppRuntime(
        config=app,
        memory_store=memory_store,
        session_manager=session_manager,
        cache=cache,
        conversations=conversations,
        generator=generator,
        chat=ChatService(conversations, generator, response_options=options),
        log_descriptions=log_descriptions,
    )
