from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    DATABASE_ERROR = "DATABASE_ERROR"
    CACHE_ERROR = "CACHE_ERROR"
    RESPONSE_GENERATION_ERROR = "RESPONSE_GENERATION_ERROR"
    CONTEXT_LOAD_ERROR = "CONTEXT_LOAD_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


_USER_MESSAGES: dict[ErrorType, str] = {
    ErrorType.VALIDATION_ERROR: "Please check your input and try again.",
    ErrorType.INVALID_INPUT: "The information provided is invalid. Please check and try again.",
    ErrorType.SESSION_NOT_FOUND: "Your session has expired. Please start a new conversation.",
    ErrorType.SERVICE_UNAVAILABLE: "Service is temporarily unavailable. Please try again later.",
    ErrorType.DATABASE_ERROR: "Unable to access data. Please try again.",
    ErrorType.CACHE_ERROR: "Temporary storage issue. Your request is being processed.",
    ErrorType.RESPONSE_GENERATION_ERROR: "Unable to generate response. Please try again.",
    ErrorType.CONTEXT_LOAD_ERROR: "Unable to load your profile. Please try again.",
    ErrorType.UNKNOWN_ERROR: "Something went wrong. Please try again.",
}

_FALLBACK_RESPONSES: dict[str, str] = {
    "en": "I apologize, but I'm having trouble processing your request right now. Please try again in a moment.",
    "hi": "मुझे खेद है, लेकिन मुझे अभी आपके अनुरोध को संसाधित करने में परेशानी हो रही है। कृपया एक क्षण में पुनः प्रयास करें।",
    "ta": "மன்னிக்கவும், உங்கள் கோரிக்கையை இப்போது செயலாக்குவதில் எனக்கு சிக்கல் உள்ளது. தயவுசெய்து சிறிது நேரத்தில் மீண்டும் முயற்சிக்கவும்.",
}


def get_user_friendly_message(error_type: ErrorType) -> str:
    return _USER_MESSAGES.get(error_type, "An unexpected error occurred.")


def fallback_response_text(language: str) -> str:
    """Canned apology shown when response generation fails; English if the language is unknown."""
    return _FALLBACK_RESPONSES.get(language, _FALLBACK_RESPONSES["en"])


class ArtisanBuddyError(Exception):
    error_type: ErrorType = ErrorType.UNKNOWN_ERROR
    default_severity: ErrorSeverity = ErrorSeverity.MEDIUM
    default_status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        severity: ErrorSeverity | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity or self.default_severity
        self.status_code = status_code or self.default_status_code
        self.details = details
        self.timestamp = datetime.now(UTC)

    @property
    def user_message(self) -> str:
        return get_user_friendly_message(self.error_type)

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": self.error_type.value,
            "message": self.message,
            "userMessage": self.user_message,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}


class InvalidInputError(ArtisanBuddyError):
    error_type = ErrorType.VALIDATION_ERROR
    default_severity = ErrorSeverity.LOW
    default_status_code = 400


class SessionNotFoundError(ArtisanBuddyError):
    error_type = ErrorType.SESSION_NOT_FOUND
    default_severity = ErrorSeverity.LOW
    default_status_code = 404

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", details={"session_id": session_id})
        self.session_id = session_id


class ResponseGenerationError(ArtisanBuddyError):
    error_type = ErrorType.RESPONSE_GENERATION_ERROR
    default_severity = ErrorSeverity.HIGH


def validate_required(data: dict[str, Any], required_fields: list[str]) -> None:
    missing = [name for name in required_fields if not data.get(name)]
    if missing:
        raise InvalidInputError(
            ", ".join(f"Missing required field: {name}" for name in missing),
            details={"errors": [f"Missing required field: {name}" for name in missing]},
        )
