from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from artisan_buddy.errors import InvalidInputError


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass
class Message:
    role: str
    content: str
    language: str = "en"
    id: str | None = None
    session_id: str | None = None
    seq: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] | None = None

    @property
    def intent(self) -> str | None:
        if not self.metadata:
            return None
        intent = self.metadata.get("intent")
        return str(intent) if intent else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "seq": self.seq,
            "role": self.role,
            "content": self.content,
            "language": self.language,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        metadata = data.get("metadata")
        if isinstance(metadata, str):
            metadata = _parse_metadata_json(metadata)
        return cls(
            id=data.get("id"),
            session_id=data.get("session_id"),
            seq=int(data.get("seq", 0)),
            role=data["role"],
            content=data["content"],
            language=data.get("language", "en"),
            timestamp=parse_timestamp(data.get("timestamp") or data.get("created_at")),
            metadata=metadata or None,
        )


def _parse_metadata_json(metadata_json: str) -> dict[str, Any]:
    try:
        parsed = json.loads(metadata_json)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


@dataclass
class Session:
    id: str
    user_id: str
    language: str
    started_at: datetime
    last_activity_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Session:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            language=row["language"],
            started_at=parse_timestamp(row["started_at"]),
            last_activity_at=parse_timestamp(row["last_activity_at"]),
            metadata=_parse_metadata_json(row.get("metadata_json", "{}")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "language": self.language,
            "started_at": self.started_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "metadata": self.metadata,
        }


@dataclass
class Intent:
    type: str = "general_chat"
    confidence: float = 0.5
    entities: list[dict[str, str]] = field(default_factory=list)


@dataclass
class UserPreferences:
    language: str = "en"
    response_length: str = "medium"
    communication_style: str = "casual"


@dataclass
class ArtisanProfile:
    user_id: str
    name: str = "Artisan"
    profession: str = "artisan"
    specializations: list[str] = field(default_factory=list)
    city: str = ""
    state: str = ""
    experience_years: int = 0
    updated_at: str = ""


@dataclass
class ArtisanContext:
    profile: ArtisanProfile
    preferences: UserPreferences = field(default_factory=UserPreferences)
    products: list[dict[str, Any]] = field(default_factory=list)
    sales_metrics: dict[str, Any] | None = None
    inventory: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, user_id: str, data: dict[str, Any] | None) -> ArtisanContext:
        """Build a context from the loose JSON shape sent by chat clients.

        Sections of the wrong shape raise ``InvalidInputError``; a malformed
        experience value counts as 0 years.
        """
        data = _section(data, "context")
        profile_data = _section(data.get("profile"), "context.profile")
        location = profile_data.get("location") or {}
        if not isinstance(location, dict):
            location = {}
        specializations = profile_data.get("specializations") or []
        if isinstance(specializations, str):
            specializations = [specializations]
        profile = ArtisanProfile(
            user_id=str(profile_data.get("id") or user_id),
            name=str(profile_data.get("name") or "Artisan"),
            profession=str(profile_data.get("profession") or "artisan"),
            specializations=[str(s) for s in specializations],
            city=str(location.get("city", "")),
            state=str(location.get("state", "")),
            experience_years=_leading_int(profile_data.get("experience")),
            updated_at=str(profile_data.get("updatedAt") or profile_data.get("updated_at") or ""),
        )
        prefs_data = _section(data.get("preferences"), "context.preferences")
        preferences = UserPreferences(
            language=str(prefs_data.get("language") or "en"),
            response_length=str(prefs_data.get("responseLength") or prefs_data.get("response_length") or "medium"),
            communication_style=str(
                prefs_data.get("communicationStyle") or prefs_data.get("communication_style") or "casual"
            ),
        )
        products = data.get("products") or []
        if not isinstance(products, list):
            raise InvalidInputError("context.products must be a list")
        sales = data.get("salesMetrics") or data.get("sales_metrics")
        inventory = data.get("inventory")
        return cls(
            profile=profile,
            preferences=preferences,
            products=[p for p in products if isinstance(p, dict)],
            sales_metrics=_section(sales, "context.salesMetrics") if sales else None,
            inventory=_section(inventory, "context.inventory") if inventory else None,
        )


def _section(value: Any, name: str) -> dict[str, Any]:
    if not value:
        return {}
    if not isinstance(value, dict):
        raise InvalidInputError(f"{name} must be an object")
    return dict(value)


def _leading_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))
    match = re.match(r"\s*(\d+)", str(value or ""))
    return int(match.group(1)) if match else 0


@dataclass
class Action:
    type: str
    label: str
    route: str | None = None


@dataclass
class Source:
    type: str
    reference: str
    relevance: float


@dataclass
class GeneratedResponse:
    text: str
    language: str
    confidence: float
    sources: list[Source] = field(default_factory=list)
    suggested_actions: list[Action] = field(default_factory=list)
    follow_up_questions: list[str] = field(default_factory=list)
    cached: bool = False
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GeneratedResponse:
        return cls(
            text=data["text"],
            language=data.get("language", "en"),
            confidence=float(data.get("confidence", 0.0)),
            sources=[Source(**s) for s in data.get("sources", [])],
            suggested_actions=[Action(**a) for a in data.get("suggested_actions", [])],
            follow_up_questions=list(data.get("follow_up_questions", [])),
            cached=bool(data.get("cached", False)),
            degraded=bool(data.get("degraded", False)),
        )


@dataclass
class HistoryPage:
    messages: list[Message]
    total: int
    has_more: bool
