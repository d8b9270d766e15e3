from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger

from artisan_buddy.models import ArtisanContext


@dataclass(frozen=True)
class RetrievedDocument:
    id: str
    content: str
    title: str = ""
    relevance: float = 0.0


@runtime_checkable
class KnowledgeRetriever(Protocol):
    async def retrieve(self, query: str, context: ArtisanContext, *, limit: int = 5) -> list[RetrievedDocument]: ...


class NoneRetriever:
    async def retrieve(self, query: str, context: ArtisanContext, *, limit: int = 5) -> list[RetrievedDocument]:
        return []


_WORD = re.compile(r"[\w\u0900-\u0963\u0966-\u0dff]+")


def _tokens(text: str) -> set[str]:
    # Indic vowel signs are not \w; the dandas (U+0964, U+0965) end a word.
    return set(_WORD.findall(text.lower()))


class StaticRetriever:
    """Keyword-overlap retrieval over an in-process list of documents."""

    def __init__(self, documents: list[RetrievedDocument]):
        self._documents = list(documents)

    async def retrieve(self, query: str, context: ArtisanContext, *, limit: int = 5) -> list[RetrievedDocument]:
        terms = {t for t in _tokens(query) if len(t) > 2}
        if not terms:
            return []
        scored: list[RetrievedDocument] = []
        for doc in self._documents:
            words = _tokens(doc.title + " " + doc.content)
            overlap = len(terms & words)
            if overlap:
                scored.append(
                    RetrievedDocument(
                        id=doc.id,
                        content=doc.content,
                        title=doc.title,
                        relevance=round(overlap / len(terms), 4),
                    )
                )
        scored.sort(key=lambda d: d.relevance, reverse=True)
        return scored[: max(0, limit)]


def load_documents(path: str | Path) -> list[RetrievedDocument]:
    """Read a JSON list of ``{id, title, content}`` objects."""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError(f"Knowledge base must be a JSON list: {path}")
    documents = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict) or not item.get("content"):
            logger.warning(f"Skipping knowledge base entry {index}: missing content")
            continue
        documents.append(
            RetrievedDocument(
                id=str(item.get("id") or f"doc-{index}"),
                content=str(item["content"]),
                title=str(item.get("title", "")),
            )
        )
    logger.info(f"Loaded {len(documents)} knowledge base documents from {path}")
    return documents
