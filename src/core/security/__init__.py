"""
Security utilities.

Provides redaction of token secrets and credentials from text that ends up
in logs or HTTP responses.
"""

from core.security.sanitize import (
    SENSITIVE_PATTERNS,
    redact_token,
    sanitize_error_message,
)

__all__ = [
    "SENSITIVE_PATTERNS",
    "redact_token",
    "sanitize_error_message",
]
