"""
Core utilities and configuration for the PlayTraq sync backend.

Modules:
    config: Application settings and per-source limits
    database: Async engine and session management
    exceptions: Exception hierarchy with structured error context
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import NetworkError, UpsertError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "SourceLimits",
    "async_session_maker",
    "create_tables",
    "setup_logging",
    # Exceptions
    "SyncException",
    "FetchError",
    "APIFetchError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "FatalRequestError",
    "ResourceNotFoundError",
    "TransformationError",
    "NormalizationError",
    "LoadError",
    "UpsertError",
    "CheckpointError",
    "ErrorBudgetExceeded",
    "SyncInterrupted",
    "UnsupportedSyncError",
    "RetryableError",
    "NonRetryableError",
]
