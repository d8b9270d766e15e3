from __future__ import annotations

import hashlib
import json
import re
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field, replace

from loguru import logger

from artisan_buddy.errors import ResponseGenerationError, fallback_response_text
from artisan_buddy.memory.response_cache import KeyValueCache
from artisan_buddy.models import (
    Action,
    ArtisanContext,
    GeneratedResponse,
    Intent,
    Message,
    Source,
    UserPreferences,
)
from artisan_buddy.provider import LLMProvider
from artisan_buddy.retrieval import KnowledgeRetriever, NoneRetriever, RetrievedDocument
from artisan_buddy.system_prompt import build_system_prompt

RESPONSE_CACHE_TTL = 3_600
COMMON_RESPONSE_CACHE_TTL = 86_400
HISTORY_IN_PROMPT = 5
MAX_ACTIONS = 3
MAX_FOLLOW_UPS = 3
MAX_SOURCES = 5
MAX_DOCUMENTS = 5
SHORT_RESPONSE_CHARS = 200

_COMMON_PATTERNS = [
    re.compile(r"^(hi|hello|hey|namaste)", re.IGNORECASE),
    re.compile(r"^(how are you|what can you do|help)", re.IGNORECASE),
    re.compile(r"^(thank you|thanks)", re.IGNORECASE),
    re.compile(r"^(bye|goodbye)", re.IGNORECASE),
]

_FORMAL_REPLACEMENTS = {
    "hey": "hello",
    "yeah": "yes",
    "nope": "no",
    "gonna": "going to",
    "wanna": "want to",
}

_LENGTH_GUIDE = {
    "short": "Keep responses concise (2-3 sentences)",
    "medium": "Provide moderate detail (4-6 sentences)",
    "long": "Give comprehensive explanations (7+ sentences)",
}

_STYLE_GUIDE = {
    "formal": "Use professional, respectful language",
    "casual": "Use friendly, conversational tone",
}

_INTENT_FOCUS = {
    "query_products": "Focus on the artisan's {product_count} products.",
    "query_sales": "Provide insights from sales data and metrics.",
    "query_schemes": "Discuss relevant government schemes and opportunities.",
    "query_craft_knowledge": "Share craft techniques and traditional knowledge.",
}

_INTENT_ACTIONS: dict[str, list[Action]] = {
    "query_products": [
        Action(type="navigate", label="View All Products", route="/inventory"),
        Action(type="create", label="Add New Product", route="/product-creator"),
    ],
    "query_sales": [
        Action(type="navigate", label="View Sales Dashboard", route="/finance/dashboard"),
        Action(type="navigate", label="Digital Khata", route="/digital-khata"),
    ],
    "query_schemes": [
        Action(type="navigate", label="Explore Schemes", route="/scheme-sahayak"),
    ],
    "connect_buyer": [
        Action(type="navigate", label="View Buyer Connections", route="/buyer-connect"),
    ],
    "navigation": [],
}

_DEFAULT_ACTIONS = [Action(type="view", label="View Profile", route="/profile")]

_STREAM_APOLOGY = "I apologize, but I encountered an error generating the response."


@dataclass
class ResponseRequest:
    intent: Intent
    context: ArtisanContext
    history: list[Message]
    user_message: str
    language: str
    session_id: str


@dataclass
class StreamOutcome:
    """Filled in by ``stream_response``; ``degraded`` is set when the provider failed."""

    degraded: bool = False
    fallback_text: str = ""


@dataclass
class ResponseOptions:
    use_cache: bool = True
    max_length: int = 500
    include_actions: bool = True
    include_follow_ups: bool = True


@dataclass
class ResponseMetrics:
    total_responses: int = 0
    average_processing_time_ms: float = 0.0
    average_confidence: float = 0.0
    cache_hit_rate: float = 0.0
    average_sources_used: float = 0.0


@dataclass
class _Observation:
    processing_time_ms: float
    confidence: float
    cached: bool
    sources_used: int = 0


class ResponseGenerator:
    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        *,
        cache: KeyValueCache | None = None,
        retriever: KnowledgeRetriever | None = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        default_options: ResponseOptions | None = None,
    ):
        self._provider = provider
        self._model = model
        self._cache = cache
        self._retriever = retriever or NoneRetriever()
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._default_options = default_options or ResponseOptions()
        self._metrics: dict[str, ResponseMetrics] = {}

    async def generate_response(
        self,
        request: ResponseRequest,
        options: ResponseOptions | None = None,
    ) -> GeneratedResponse:
        opts = options or self._default_options
        started = time.perf_counter()

        try:
            if opts.use_cache:
                cached = self._get_cached_response(request)
                if cached is not None:
                    logger.debug(f"Response cache hit for session {request.session_id}")
                    self._track_metrics(
                        request.session_id,
                        _Observation(_elapsed_ms(started), cached.confidence, True, len(cached.sources)),
                    )
                    return cached

            documents = await self._retriever.retrieve(request.user_message, request.context, limit=MAX_DOCUMENTS)
            prompt = build_contextual_prompt(request, documents)
            raw = await self._provider.create_message(
                self._model,
                self._max_tokens,
                self._temperature,
                [{"role": "user", "content": prompt}],
                system_prompt=build_system_prompt(request.context.preferences),
            )
            if not raw or not raw.strip():
                raise ResponseGenerationError("Provider returned an empty response")

            response = GeneratedResponse(
                text=format_response(raw, request.context.preferences, opts.max_length),
                language=request.language,
                confidence=_estimate_confidence(documents),
                sources=build_sources(documents, request.context),
                suggested_actions=suggested_actions(request.intent) if opts.include_actions else [],
                follow_up_questions=await self._generate_follow_up_questions(request) if opts.include_follow_ups else [],
            )

            if opts.use_cache:
                self._cache_response(request, response)

            elapsed = _elapsed_ms(started)
            self._track_metrics(
                request.session_id,
                _Observation(elapsed, response.confidence, False, len(response.sources)),
            )
            logger.info(f"Generated response for session {request.session_id} in {elapsed:.0f}ms")
            return response
        except Exception as ex:
            logger.error(f"Response generation failed for session {request.session_id}: {ex}")
            return self._fallback_response(request)

    async def stream_response(
        self, request: ResponseRequest, outcome: StreamOutcome | None = None
    ) -> AsyncIterator[str]:
        try:
            documents = await self._retriever.retrieve(request.user_message, request.context, limit=MAX_DOCUMENTS)
            prompt = build_contextual_prompt(request, documents)
            async for chunk in self._provider.stream_message(
                self._model,
                self._max_tokens,
                self._temperature,
                [{"role": "user", "content": prompt}],
                system_prompt=build_system_prompt(request.context.preferences),
            ):
                yield chunk
        except Exception as ex:
            logger.error(f"Streaming response failed for session {request.session_id}: {ex}")
            if outcome is not None:
                outcome.degraded = True
                outcome.fallback_text = _STREAM_APOLOGY
            yield _STREAM_APOLOGY

    # -- caching ---------------------------------------------------------

    def cache_key(self, request: ResponseRequest) -> str:
        key_data = {
            "message": request.user_message.lower().strip(),
            "intent": request.intent.type,
            "language": request.language,
            "user_id": request.context.profile.user_id,
        }
        digest = hashlib.sha256(json.dumps(key_data, sort_keys=True, ensure_ascii=False).encode("utf-8"))
        return f"response:{digest.hexdigest()}"

    def cache_ttl(self, request: ResponseRequest) -> int:
        return COMMON_RESPONSE_CACHE_TTL if is_common_query(request.user_message) else RESPONSE_CACHE_TTL

    def _get_cached_response(self, request: ResponseRequest) -> GeneratedResponse | None:
        if self._cache is None:
            return None
        try:
            data = self._cache.get_json(self.cache_key(request))
        except Exception as ex:
            logger.warning(f"Failed to read cached response: {ex}")
            return None
        if data is None:
            return None
        return replace(GeneratedResponse.from_dict(data), cached=True)

    def _cache_response(self, request: ResponseRequest, response: GeneratedResponse) -> None:
        if self._cache is None:
            return
        ttl = self.cache_ttl(request)
        try:
            self._cache.set_json(self.cache_key(request), response.to_dict(), ttl)
        except Exception as ex:
            logger.warning(f"Failed to cache response: {ex}")
            return
        logger.debug(f"Response cached with TTL {ttl}s")

    # -- follow-ups / fallback -------------------------------------------

    async def _generate_follow_up_questions(self, request: ResponseRequest) -> list[str]:
        prompt = (
            "Based on this conversation with an artisan:\n\n"
            f"User Question: {request.user_message}\n"
            f"Intent: {request.intent.type}\n"
            f"Artisan Profession: {request.context.profile.profession}\n\n"
            "Generate 3 relevant follow-up questions that the artisan might want to ask next.\n"
            "Make them specific, actionable, and related to their craft or business.\n\n"
            "Format: Return only the questions, one per line, without numbering."
        )
        try:
            text = await self._provider.create_message(
                self._model,
                256,
                self._temperature,
                [{"role": "user", "content": prompt}],
            )
        except Exception as ex:
            logger.warning(f"Failed to generate follow-up questions: {ex}")
            return []
        return parse_follow_up_questions(text)

    def _fallback_response(self, request: ResponseRequest) -> GeneratedResponse:
        return GeneratedResponse(
            text=fallback_response_text(request.language),
            language=request.language,
            confidence=0.5,
            sources=[],
            suggested_actions=[Action(type="view", label="Try Again")],
            follow_up_questions=[],
            degraded=True,
        )

    # -- metrics ---------------------------------------------------------

    def _track_metrics(self, session_id: str, observation: _Observation) -> None:
        existing = self._metrics.get(session_id) or ResponseMetrics()
        n = existing.total_responses
        self._metrics[session_id] = ResponseMetrics(
            total_responses=n + 1,
            average_processing_time_ms=_running_average(
                existing.average_processing_time_ms, observation.processing_time_ms, n
            ),
            average_confidence=_running_average(existing.average_confidence, observation.confidence, n),
            cache_hit_rate=_running_average(existing.cache_hit_rate, 1.0 if observation.cached else 0.0, n),
            average_sources_used=_running_average(existing.average_sources_used, observation.sources_used, n),
        )

    def get_response_metrics(self, session_id: str) -> ResponseMetrics | None:
        return self._metrics.get(session_id)

    def get_all_metrics(self) -> dict[str, ResponseMetrics]:
        return dict(self._metrics)

    def clear_metrics(self, session_id: str) -> None:
        self._metrics.pop(session_id, None)


def is_common_query(message: str) -> bool:
    stripped = message.strip()
    return any(p.match(stripped) for p in _COMMON_PATTERNS)


def build_contextual_prompt(request: ResponseRequest, documents: list[RetrievedDocument] | None = None) -> str:
    prompt = _artisan_context_section(request.context)
    prompt += _history_section(request.history)
    prompt += _personalization_section(request.context.preferences)
    prompt += _intent_section(request.intent, request.context)
    prompt += _documents_section(documents or [])
    prompt += f"\n\nUser Message: {request.user_message}\n\n"
    prompt += (
        "Please provide a helpful, personalized response based on the artisan's context "
        "and conversation history.\n\n"
    )
    prompt += "Response:"
    return prompt


def _artisan_context_section(context: ArtisanContext) -> str:
    profile = context.profile
    lines = [
        "",
        "## Artisan Context",
        "",
        "**Profile:**",
        f"- Name: {profile.name}",
        f"- Profession: {profile.profession}",
        f"- Specializations: {', '.join(profile.specializations) or 'not specified'}",
    ]
    location = ", ".join(p for p in (profile.city, profile.state) if p)
    if location:
        lines.append(f"- Location: {location}")
    lines.append(f"- Experience: {profile.experience_years} years")

    if context.products:
        categories = sorted({str(p.get("category")) for p in context.products if p.get("category")})
        active = sum(1 for p in context.products if p.get("status") == "active")
        lines += [
            "",
            "**Products:**",
            f"- Total Products: {len(context.products)}",
            f"- Active Products: {active}",
            f"- Categories: {', '.join(categories)}",
        ]

    sales = context.sales_metrics
    if sales:
        lines += [
            "",
            "**Business Performance:**",
            f"- Total Sales ({sales.get('period', 'all time')}): {sales.get('totalSales', 0)}",
            f"- Total Revenue: {format_inr(_as_float(sales.get('totalRevenue')))}",
            f"- Average Order Value: {format_inr(_as_float(sales.get('averageOrderValue')), decimals=2)}",
        ]

    inventory = context.inventory
    if inventory:
        lines += [
            "",
            "**Inventory Status:**",
            f"- Total Products: {inventory.get('totalProducts', 0)}",
            f"- Low Stock Items: {len(inventory.get('lowStockProducts', []))}",
            f"- Out of Stock Items: {len(inventory.get('outOfStockProducts', []))}",
        ]
    return "\n".join(lines) + "\n\n"


def _history_section(history: list[Message]) -> str:
    if not history:
        return ""
    section = "\n## Recent Conversation\n\n"
    for msg in history[-HISTORY_IN_PROMPT:]:
        speaker = "Artisan" if msg.role == "user" else "Assistant"
        section += f"**{speaker}:** {msg.content}\n\n"
    return section


def _personalization_section(preferences: UserPreferences) -> str:
    return (
        "\n## Response Guidelines\n\n"
        f"- Length: {_LENGTH_GUIDE.get(preferences.response_length, _LENGTH_GUIDE['medium'])}\n"
        f"- Style: {_STYLE_GUIDE.get(preferences.communication_style, _STYLE_GUIDE['casual'])}\n"
        f"- Language: {preferences.language}\n\n"
    )


def _intent_section(intent: Intent, context: ArtisanContext) -> str:
    section = "\n## Current Intent\n\n"
    section += f"- Type: {intent.type}\n"
    section += f"- Confidence: {intent.confidence * 100:.1f}%\n"
    if intent.entities:
        section += "- Entities: " + ", ".join(f"{e.get('type')}:{e.get('value')}" for e in intent.entities) + "\n"
    focus = _INTENT_FOCUS.get(intent.type)
    if focus:
        section += "\n" + focus.format(product_count=len(context.products)) + "\n"
    return section + "\n"


def _documents_section(documents: list[RetrievedDocument]) -> str:
    if not documents:
        return ""
    section = "\n## Relevant Knowledge\n\n"
    for doc in documents:
        title = doc.title or doc.id
        section += f"- {title}: {doc.content}\n"
    return section


def format_response(text: str, preferences: UserPreferences, max_length: int) -> str:
    formatted = clean_formatting(text)
    if preferences.response_length == "short" and len(formatted) > SHORT_RESPONSE_CHARS:
        formatted = truncate_response(formatted, SHORT_RESPONSE_CHARS)
    elif preferences.response_length == "medium" and len(formatted) > max_length:
        formatted = truncate_response(formatted, max_length)
    if preferences.communication_style == "formal":
        formatted = apply_formal_style(formatted)
    return formatted


def truncate_response(text: str, max_length: int) -> str:
    """Cut at the last sentence end if it falls in the final 30%, else hard-cut with an ellipsis."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_sentence = max(truncated.rfind("."), truncated.rfind("?"), truncated.rfind("!"), truncated.rfind("।"))
    if last_sentence > max_length * 0.7:
        return truncated[: last_sentence + 1]
    return truncated + "..."


def clean_formatting(text: str) -> str:
    cleaned = text.strip()
    cleaned = re.sub(r"^(Response:|Answer:)\s*", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    return cleaned.strip()


def apply_formal_style(text: str) -> str:
    formal = text
    for casual, formal_word in _FORMAL_REPLACEMENTS.items():
        formal = re.sub(rf"\b{casual}\b", formal_word, formal, flags=re.IGNORECASE)
    return formal


def suggested_actions(intent: Intent) -> list[Action]:
    actions = _INTENT_ACTIONS.get(intent.type, _DEFAULT_ACTIONS)
    return [replace(a) for a in actions[:MAX_ACTIONS]]


def build_sources(documents: list[RetrievedDocument], context: ArtisanContext) -> list[Source]:
    sources = [
        Source(type="knowledge_base", reference=doc.title or doc.id, relevance=doc.relevance)
        for doc in documents
    ]
    sources.append(Source(type="profile", reference=context.profile.name, relevance=1.0))
    return sources[:MAX_SOURCES]


def parse_follow_up_questions(text: str) -> list[str]:
    questions = []
    for line in text.splitlines():
        cleaned = re.sub(r"^[\d.\-*)\s]+", "", line).strip()
        if cleaned:
            questions.append(cleaned)
    return questions[:MAX_FOLLOW_UPS]


def _as_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def format_inr(amount: float, *, decimals: int = 0) -> str:
    """Rupee amount with Indian digit grouping (12,34,567)."""
    sign = "-" if amount < 0 else ""
    whole, _, fraction = f"{abs(amount):.{decimals}f}".partition(".")
    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])
    return f"{sign}₹{whole}" + (f".{fraction}" if fraction else "")


def _estimate_confidence(documents: list[RetrievedDocument]) -> float:
    if not documents:
        return 0.6
    best = max(doc.relevance for doc in documents)
    return round(min(1.0, 0.5 + 0.5 * max(0.0, best)), 4)


def _running_average(current: float, new_value: float, count: int) -> float:
    return (current * count + new_value) / (count + 1)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
