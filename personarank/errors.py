"""
Exception hierarchy for PersonaRank.

Provider failures are classified into a small closed set of
:class:`ErrorKind` values so that the completion client can decide
whether to advance its fallback chain with a plain predicate instead of
inspecting exception types.  Errors that end up persisted on a job or an
optimization run are bounded with :func:`truncate_error`.
"""

from __future__ import annotations

import enum
from typing import List, Optional

from .constants import MAX_ERROR_MESSAGE_LENGTH


class PersonaRankError(Exception):
    """Base class for all errors raised by this package."""


class ErrorKind(enum.Enum):
    RATE_LIMIT = "rate_limit"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    MODEL_NOT_FOUND = "model_not_found"
    BAD_REQUEST = "bad_request"
    AUTH = "auth"
    UNAVAILABLE = "unavailable"
    OTHER = "other"

    @classmethod
    def from_status(cls, status_code: Optional[int]) -> "ErrorKind":
        return _STATUS_KINDS.get(status_code, cls.OTHER)


_STATUS_KINDS = {
    429: ErrorKind.RATE_LIMIT,
    413: ErrorKind.PAYLOAD_TOO_LARGE,
    404: ErrorKind.MODEL_NOT_FOUND,
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.AUTH,
    503: ErrorKind.UNAVAILABLE,
}


def is_retryable(kind: ErrorKind) -> bool:
    """Return True when a failure of this kind should move on to the next model."""
    return kind is not ErrorKind.OTHER


class ProviderCallError(PersonaRankError):
    """A single completion call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, model: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.model = model
        self.kind = ErrorKind.from_status(status_code)


class ProvidersExhaustedError(PersonaRankError):
    """Every model in the fallback list failed with a retryable error.

    ``status`` is the status of the last failure (429 when unknown),
    ``provider`` names the model family ("Gemini" or "Groq") and
    ``models_attempted`` lists every model that was tried, in order.
    """

    def __init__(self, message: str, provider: str, models_attempted: List[str], status: int = 429) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.models_attempted = list(models_attempted)
        self.status = status

    @property
    def is_rate_limit(self) -> bool:
        return self.status == 429 or "rate limit" in self.message.lower()


class JSONExtractionError(PersonaRankError):
    """No repair strategy could recover a JSON payload from model output."""

    def __init__(self, text: str) -> None:
        self.snippet = text[:MAX_ERROR_MESSAGE_LENGTH]
        super().__init__(f"Failed to parse JSON (length {len(text)}): {self.snippet}...")


class ResponseValidationError(PersonaRankError):
    """Decoded model output does not have the expected structure."""


class RecordNotFoundError(PersonaRankError):
    def __init__(self, resource: str, key: str) -> None:
        super().__init__(f"{resource} not found: {key}")
        self.resource = resource
        self.key = key


class EvalSetError(PersonaRankError):
    """The labeled evaluation file is missing or malformed."""


def truncate_error(message: str, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    """Bound an error message for storage on a job or run record."""
    return message[:limit]


def classify_failure(exc: BaseException) -> str:
    """Return the error string stored on a failed optimization run.

    Rate-limit and exhausted-provider failures collapse to the token
    ``"rate_limit_exceeded"`` so callers can render quota guidance;
    anything else is stored as its (truncated) message.
    """
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, ProvidersExhaustedError) and exc.is_rate_limit:
        return "rate_limit_exceeded"
    if getattr(exc, "status", None) == 429 or getattr(exc, "status_code", None) == 429:
        return "rate_limit_exceeded"
    if "rate limit" in lowered or "models exhausted" in lowered:
        return "rate_limit_exceeded"
    return truncate_error(message)
