"""
Exception types and error classification for the token manager.

Provides:
- ErrorCategory enum for handling decisions
- Typed exception hierarchy that collaborators translate into
- Error classification utilities
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Collaborators (cloud provider, cluster store) translate their own
    SDK errors into these categories. The reconciler only ever looks at
    the category, never at provider-specific error shapes.

    Categories:
        ABSENT: Upstream record does not exist or is disabled. Not a
                failure, treated as "no current token".
        TRANSIENT: Conflict, timeout or busy server. Retried inside the
                   cluster upsert only.
        AUTH: Credentials missing or rejected (401).
        POLICY_DENIED: Authorization / policy refusal (403). Hard failure.
        PERMANENT: Non-retriable request failure.
        MALFORMED: Stored value could not be parsed into a token.
        FATAL: Startup-time misconfiguration or unavailable random source.
               Stops the process.
        UNKNOWN: Unclassified. Aborts the current cycle only.
    """

    ABSENT = "absent"
    TRANSIENT = "transient"
    AUTH = "auth"
    POLICY_DENIED = "policy_denied"
    PERMANENT = "permanent"
    MALFORMED = "malformed"
    FATAL = "fatal"
    UNKNOWN = "unknown"


class TokenManagerError(Exception):
    """
    Base exception for all token manager errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for handling decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether the cluster upsert loop may retry this error."""
        return self.category == ErrorCategory.TRANSIENT

    @property
    def is_fatal(self) -> bool:
        """Whether this error should stop the process."""
        return self.category == ErrorCategory.FATAL

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Absent (not an error for the reconciler)
# =============================================================================


class NotFoundError(TokenManagerError):
    """Resource or secret not found (404)."""

    category = ErrorCategory.ABSENT


class SecretDisabledError(NotFoundError):
    """Stored secret exists but is disabled."""

    pass


# =============================================================================
# Authentication / Authorization
# =============================================================================


class AuthError(TokenManagerError):
    """Credentials missing, expired or rejected (401)."""

    category = ErrorCategory.AUTH


class PolicyDeniedError(TokenManagerError):
    """Access forbidden by policy (403) - permissions issue, not auth."""

    category = ErrorCategory.POLICY_DENIED


# =============================================================================
# Transient Errors (retryable inside the upsert)
# =============================================================================


class TransientError(TokenManagerError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class ConflictError(TransientError):
    """Concurrent modification of the same resource (409)."""

    pass


class ConnectionError(TransientError):
    """Network connection failed."""

    pass


class TimeoutError(TransientError):
    """Operation timed out (408/504)."""

    pass


class ServiceUnavailableError(TransientError):
    """Server busy or temporarily unavailable (429/500/503)."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after  # Seconds, if the server sent one


# =============================================================================
# Permanent / Malformed
# =============================================================================


class PermanentError(TokenManagerError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class MalformedRecordError(TokenManagerError):
    """Stored value does not parse into a bootstrap token."""

    category = ErrorCategory.MALFORMED


# =============================================================================
# Fatal Errors (stop before the loop starts)
# =============================================================================


class FatalError(TokenManagerError):
    """Base class for errors that stop the process."""

    category = ErrorCategory.FATAL


class ConfigurationError(FatalError):
    """Missing or invalid configuration."""

    pass


class TemplateError(FatalError):
    """Token id template could not be compiled or expanded."""

    pass


class RandomSourceError(FatalError):
    """Secure random source unavailable."""

    pass


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_exception(exc: BaseException) -> ErrorCategory:
    """
    Classify an exception into error category.

    Only already-translated errors carry a category; anything else is
    UNKNOWN and aborts the current cycle.
    """
    if isinstance(exc, TokenManagerError):
        return exc.category
    return ErrorCategory.UNKNOWN


def is_retryable_error(exc: BaseException) -> bool:
    """Check if exception belongs to the retryable (transient) class."""
    return classify_exception(exc) == ErrorCategory.TRANSIENT


def is_absent_error(exc: BaseException) -> bool:
    """Check if exception means "record does not exist"."""
    return classify_exception(exc) == ErrorCategory.ABSENT


def is_fatal_error(exc: BaseException) -> bool:
    """Check if exception should stop the process."""
    return classify_exception(exc) == ErrorCategory.FATAL
