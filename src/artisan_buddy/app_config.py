from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

SUMMARIZATION_STRATEGIES = ("extractive", "llm")


@dataclass
class RuntimeEnv:
    provider_api_key: str
    provider_env_var: str


@dataclass
class AppConfig:
    provider_name: str
    model: str
    max_tokens: int
    temperature: float
    memory_db_path: str
    session_ttl_seconds: int
    session_cleanup_interval_seconds: int
    context_window_size: int
    summarization_threshold: int
    summarization_strategy: str
    max_context_tokens: int | None
    response_cache_enabled: bool
    include_follow_ups: bool
    max_response_length: int
    memory_max_sessions: int
    memory_max_messages_per_session: int
    memory_retention_days: int
    knowledge_base_path: str | None
    host: str
    port: int
    log_level: str
    log_consumers: list | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _optional_int(value: object) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def parse_app_config(config: dict) -> AppConfig:
    strategy = str(config.get("SummarizationStrategy", "extractive")).strip().lower()
    if strategy not in SUMMARIZATION_STRATEGIES:
        raise ValueError(
            f"Unknown SummarizationStrategy: {strategy!r}. Supported: {', '.join(SUMMARIZATION_STRATEGIES)}"
        )

    return AppConfig(
        provider_name=config.get("Provider", "anthropic").strip().lower(),
        model=config.get("Model", "claude-sonnet-4-5-20250929"),
        max_tokens=int(config.get("MaxTokens", 1024)),
        temperature=float(config.get("Temperature", 0.7)),
        memory_db_path=str(config.get("MemoryDbPath", ".artisan_buddy/memory.db")),
        session_ttl_seconds=int(config.get("SessionTtlSeconds", 86_400)),
        session_cleanup_interval_seconds=int(config.get("SessionCleanupIntervalSeconds", 300)),
        context_window_size=int(config.get("ContextWindowSize", 20)),
        summarization_threshold=int(config.get("SummarizationThreshold", 50)),
        summarization_strategy=strategy,
        max_context_tokens=_optional_int(config.get("MaxContextTokens")),
        response_cache_enabled=_to_bool(config.get("ResponseCacheEnabled", True), default=True),
        include_follow_ups=_to_bool(config.get("IncludeFollowUps", True), default=True),
        max_response_length=int(config.get("MaxResponseLength", 500)),
        memory_max_sessions=int(config.get("MemoryMaxSessions", 1000)),
        memory_max_messages_per_session=int(config.get("MemoryMaxMessagesPerSession", 5000)),
        memory_retention_days=int(config.get("MemoryRetentionDays", 30)),
        knowledge_base_path=str(config.get("KnowledgeBasePath", "")).strip() or None,
        host=str(config.get("Host", "127.0.0.1")),
        port=int(config.get("Port", 8000)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env(provider_name: str) -> RuntimeEnv:
    if provider_name == "openai":
        provider_env_var = "OPENAI_API_KEY"
    else:
        provider_env_var = "ANTHROPIC_API_KEY"

    return RuntimeEnv(
        provider_api_key=os.environ.get(provider_env_var, ""),
        provider_env_var=provider_env_var,
    )
