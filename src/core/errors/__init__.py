"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- TokenManagerError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    # Enums
    ErrorCategory,
    # Base classes
    TokenManagerError,
    TransientError,
    PermanentError,
    FatalError,
    # Absent
    NotFoundError,
    SecretDisabledError,
    # Auth / policy
    AuthError,
    PolicyDeniedError,
    # Transient errors
    ConflictError,
    ConnectionError,
    TimeoutError,
    ServiceUnavailableError,
    # Malformed
    MalformedRecordError,
    # Fatal errors
    ConfigurationError,
    TemplateError,
    RandomSourceError,
    # Classification utilities
    classify_exception,
    is_retryable_error,
    is_absent_error,
    is_fatal_error,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "TokenManagerError",
    "TransientError",
    "PermanentError",
    "FatalError",
    # Absent
    "NotFoundError",
    "SecretDisabledError",
    # Auth / policy
    "AuthError",
    "PolicyDeniedError",
    # Transient errors
    "ConflictError",
    "ConnectionError",
    "TimeoutError",
    "ServiceUnavailableError",
    # Malformed
    "MalformedRecordError",
    # Fatal errors
    "ConfigurationError",
    "TemplateError",
    "RandomSourceError",
    # Classification utilities
    "classify_exception",
    "is_retryable_error",
    "is_absent_error",
    "is_fatal_error",
]
