"""
Custom exceptions for flowpulse.

This module defines the exception hierarchy shared by the Linear client,
the record store and the sync orchestrator. Every error carries a
human-readable message plus optional keyword context so the orchestrator
can surface a status message without losing debugging detail.

Exception Hierarchy:
    FlowPulseError (base)
    ├── APIError (remote API failures)
    │   ├── TransientAPIError (5xx, timeouts, connection drops)
    │   │   └── RateLimitError (HTTP 429 or GraphQL RATELIMITED)
    │   ├── FatalAPIError (4xx, malformed queries)
    │   │   └── AuthenticationError (401/403)
    │   └── RetriesExhaustedError (transient errors past the retry budget)
    ├── StoreError (SQLite store failures)
    │   ├── SchemaMismatchError (live columns differ from expected)
    │   └── MigrationError (an ordered migration failed)
    └── SyncError (orchestration failures)
        ├── SyncInProgressError (another sync holds the store)
        └── SyncStopped (cooperative stop requested)

Example:
    >>> from flowpulse.core.exceptions import RateLimitError
    >>> try:
    ...     raise RateLimitError("Linear API rate limit exceeded", status_code=429)
    ... except RateLimitError as e:
    ...     print(e.transient, e.context)
    True {'status_code': 429}
"""


class FlowPulseError(Exception):
    """
    Base exception for all flowpulse errors.

    Attributes:
        message: Human-readable error message
        context: Dictionary of additional context
    """

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Return string representation of the error."""
        return self.message


class APIError(FlowPulseError):
    """
    Base exception for remote API errors.

    The ``transient`` class attribute drives the retry decision: transient
    errors are retried in place with backoff, everything else propagates.
    """

    transient = False


class TransientAPIError(APIError):
    """
    Exception for retryable remote failures.

    Raised for 5xx responses, timeouts and dropped connections. The client
    retries the same page with exponential backoff; the cursor never moves.
    """

    transient = True


class RateLimitError(TransientAPIError):
    """
    Exception for rate-limit responses.

    Linear signals rate limiting either with HTTP 429 or with a GraphQL
    error whose extensions carry ``RATELIMITED``.
    """


class FatalAPIError(APIError):
    """
    Exception for non-retryable remote failures.

    Raised for 4xx responses and GraphQL validation errors. Aborts the
    current phase without marking it complete.
    """


class AuthenticationError(FatalAPIError):
    """Exception for rejected credentials (HTTP 401/403)."""


class RetriesExhaustedError(APIError):
    """
    Exception raised when a transient error outlasts the retry budget.

    The last transient error is preserved via ``__cause__``.
    """

    def __init__(self, message: str, attempts: int, **context: object) -> None:
        super().__init__(message, attempts=attempts, **context)
        self.attempts = attempts


class StoreError(FlowPulseError):
    """Exception for record store failures."""


class SchemaMismatchError(StoreError):
    """
    Exception for a live schema that differs from the expected schema.

    The store never repairs this automatically. The operator must run an
    explicit reset.
    """

    def __init__(
        self,
        message: str,
        missing: dict[str, list[str]] | None = None,
        unexpected: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(message, missing=missing or {}, unexpected=unexpected or {})
        self.missing = missing or {}
        self.unexpected = unexpected or {}


class MigrationError(StoreError):
    """Exception for a failed schema migration."""

    def __init__(self, version: int, message: str, **context: object) -> None:
        super().__init__(message, version=version, **context)
        self.version = version

    def __str__(self) -> str:
        """Return string representation with the migration version."""
        return f"[migration {self.version}] {self.message}"


class SyncError(FlowPulseError):
    """Base exception for sync orchestration errors."""


class SyncInProgressError(SyncError):
    """Exception raised when a sync is requested while another is running."""


class SyncStopped(SyncError):
    """Exception raised at a checkpoint after a stop was requested."""


__all__ = [
    "FlowPulseError",
    "APIError",
    "TransientAPIError",
    "RateLimitError",
    "FatalAPIError",
    "AuthenticationError",
    "RetriesExhaustedError",
    "StoreError",
    "SchemaMismatchError",
    "MigrationError",
    "SyncError",
    "SyncInProgressError",
    "SyncStopped",
]
