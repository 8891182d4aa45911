"""
Exception hierarchy for the multi-source sync engine.

Every exception carries a structured context dictionary so failures can be
logged with ``extra={"error_context": exc.to_dict()}`` and stored on the
sync attempt row.

Exception Hierarchy:
    SyncException (base)
    ├── FetchError
    │   ├── APIFetchError
    │   │   ├── NetworkError (transient, retryable)
    │   │   ├── RateLimitError
    │   │   ├── AuthenticationError
    │   │   └── FatalRequestError
    │   └── ResourceNotFoundError
    ├── TransformationError
    │   └── NormalizationError
    ├── LoadError
    │   └── UpsertError
    ├── CheckpointError
    ├── ErrorBudgetExceeded
    ├── SyncInterrupted
    ├── UnsupportedSyncError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class SyncException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context (source, cursor, status code, ...)
        original_exception: The exception that was caught, if any
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += (
                f" | Caused by: {type(self.original_exception).__name__}: "
                f"{self.original_exception}"
            )

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that count against the consecutive-error budget
    and are retried on the next page attempt.
    """
    pass


class NonRetryableError(SyncException):
    """Mixin for errors that end the run immediately."""
    pass


# ============================================================================
# Fetch Errors
# ============================================================================

class FetchError(SyncException):
    """Base exception for outbound request failures."""
    pass


class APIFetchError(FetchError):
    """
    Raised when a third-party API call does not produce a usable page.

    Context should include:
        - source: Source identifier
        - url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
    """
    pass


class NetworkError(RetryableError, APIFetchError):
    """Timeouts, transport errors and 5xx responses."""
    pass


class RateLimitError(RetryableError, APIFetchError):
    """Rate limit (HTTP 429) still in force after the bounded retry loop."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, APIFetchError):
    """Client-credentials grant failed or credentials are missing."""
    pass


class FatalRequestError(NonRetryableError, APIFetchError):
    """Non-retryable 4xx response."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = status_code
        if status_code is not None:
            self.context["status_code"] = status_code


class ResourceNotFoundError(NonRetryableError, FetchError):
    """HTTP 404 on a single resource."""
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(SyncException):
    """Base exception for payload mapping failures."""
    pass


class NormalizationError(TransformationError):
    """
    Raised when a raw payload cannot be mapped to a normalized record.

    Context should include:
        - source: Source identifier
        - collection: Target collection
        - natural_key: Key of the record, if known
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(SyncException):
    """Base exception for storage failures."""
    pass


class UpsertError(LoadError):
    """
    Raised when a single record write fails.

    Context should include:
        - collection: Target collection
        - natural_key: Key of the record being written
    """
    pass


# ============================================================================
# Run Errors
# ============================================================================

class CheckpointError(SyncException):
    """
    Raised when cursor or attempt bookkeeping fails.

    Context should include:
        - attempt_id: Attempt being updated
        - operation: advance, complete or fail
    """
    pass


class ErrorBudgetExceeded(SyncException):
    """Consecutive-error threshold reached for a run."""
    pass


class SyncInterrupted(SyncException):
    """Run stopped by an external request."""
    pass


class UnsupportedSyncError(SyncException):
    """The requested sync type is not available for the source."""
    pass
