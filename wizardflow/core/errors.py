"""Error taxonomy for the wizard orchestration layer."""
from __future__ import annotations

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
NON_RETRYABLE_STATUS_CODES = frozenset({400, 401, 403, 404, 413, 422})

# Request-shape problems; resending the same request cannot succeed.
NON_RETRYABLE_PATTERNS = (
    "invalid",
    "validation",
    "missing required",
    "bad request",
    "malformed",
    "unprocessable",
    "not found",
    "unauthorized",
    "forbidden",
)

RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "network",
    "econnrefused",
    "enotfound",
    "econnreset",
    "etimedout",
    "eai_again",
    "socket hang up",
    "connection refused",
    "connection reset",
    "failed to fetch",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "rate limit",
    "overloaded",
    "dns",
)


class WizardError(Exception):
    """Base class for all orchestration errors."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str = "", *, user_message: str | None = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class StreamParseError(WizardError):
    """A framed line could not be decoded. Never aborts the stream."""

    def __init__(self, message: str, *, line: str = ""):
        super().__init__(message)
        self.line = line


class StreamConnectionError(WizardError, ConnectionError):
    """The event stream dropped and every reconnection attempt failed."""

    user_message = "Unable to connect to the server. Please check your internet connection and try again."

    def __init__(self, message: str = "", *, attempts: int = 0, user_message: str | None = None):
        super().__init__(message, user_message=user_message)
        self.attempts = attempts


class SnapshotValidationError(WizardError):
    """A persisted snapshot failed structural checks."""

    user_message = "Failed to load your previous progress. Starting fresh."


class GenerationTimeoutError(WizardError, TimeoutError):
    user_message = "Website generation is taking longer than expected. Please try again."


class BackendError(WizardError):
    """Error reported by the backend, classified as retryable or not."""

    user_message = "Something went wrong on our end. Please try again in a moment."

    def __init__(
        self,
        message: str,
        *,
        retryable: bool,
        status_code: int | None = None,
        category_index: int | None = None,
        user_message: str | None = None,
    ):
        super().__init__(message, user_message=user_message)
        self.retryable = retryable
        self.status_code = status_code
        self.category_index = category_index

    @classmethod
    def from_message(
        cls,
        message: str,
        *,
        status_code: int | None = None,
        category_index: int | None = None,
    ) -> "BackendError":
        retryable = classify_backend_error(message, status_code)
        user_message = None
        if not retryable:
            user_message = "The request could not be processed. Please review your input."
        return cls(
            message,
            retryable=retryable,
            status_code=status_code,
            category_index=category_index,
            user_message=user_message,
        )


def classify_backend_error(message: str | None, status_code: int | None = None) -> bool:
    """Return True when the failure is transient and a retry may succeed."""
    if status_code is not None:
        if status_code in RETRYABLE_STATUS_CODES:
            return True
        if status_code in NON_RETRYABLE_STATUS_CODES:
            return False

    text = (message or "").lower()
    if any(pattern in text for pattern in NON_RETRYABLE_PATTERNS):
        return False
    if any(pattern in text for pattern in RETRYABLE_PATTERNS):
        return True
    if status_code is not None and status_code >= 500:
        return True
    return False
