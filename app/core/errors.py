"""
Exception hierarchy for the room chat service.

Every error carries:
- code: short machine-readable category
- message: human-readable text, safe to send back to the originating session
- details: optional extra context for logs
- context: additional key-value pairs for debugging
"""

from typing import Any, Optional


class ChatError(Exception):
    """Base exception for all room chat errors."""

    code: str = "INTERNAL_UNEXPECTED"

    def __init__(self, message: str, details: Optional[str] = None, **context: Any):
        self.message = message
        self.details = details
        self.context = context if context else None
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> dict:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "context": self.context,
        }


class ValidationError(ChatError):
    """Invalid client input: blank message text, missing room id, bad payload."""

    code = "VALIDATION_FAILED"

    def __init__(self, message: str, details: Optional[str] = None, parameter: Optional[str] = None, **context: Any):
        ctx = {**context}
        if parameter:
            ctx["parameter"] = parameter
        super().__init__(message, details, **ctx)


class NotFoundError(ChatError):
    """A room log that was never created."""

    code = "NOT_FOUND_ROOM"

    def __init__(self, message: str, details: Optional[str] = None, room_id: Optional[str] = None, **context: Any):
        ctx = {**context}
        if room_id:
            ctx["room_id"] = room_id
        super().__init__(message, details, **ctx)


class StoreUnavailable(ChatError):
    """History read or write failed."""

    code = "STORE_UNAVAILABLE"


class AIProviderFailure(ChatError):
    """A single AI provider call failed, timed out, or returned a malformed response."""

    code = "AI_PROVIDER_FAILED"

    def __init__(self, message: str, details: Optional[str] = None, provider: Optional[str] = None, **context: Any):
        self.provider = provider
        ctx = {**context}
        if provider:
            ctx["provider"] = provider
        super().__init__(message, details, **ctx)


class AIOrchestrationFailure(ChatError):
    """Every provider in the fallback chain failed for one response cycle."""

    code = "AI_ORCHESTRATION_FAILED"

    def __init__(self, message: str, details: Optional[str] = None, last_error: Optional[BaseException] = None, **context: Any):
        self.last_error = last_error
        super().__init__(message, details, **context)


class RelayNotInitializedError(ChatError):
    """The chat relay was used before application startup registered it."""

    code = "RELAY_NOT_INITIALIZED"
