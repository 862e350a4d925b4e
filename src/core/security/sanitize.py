"""Redaction of sensitive values in error messages."""

import re

# Bootstrap token in serialized form: <id>.<secret>
BOOTSTRAP_TOKEN_PATTERN = re.compile(r"\b([a-z0-9]{6,})\.([a-z0-9]{16,})\b")

# Patterns that may contain sensitive data in error messages
SENSITIVE_PATTERNS = [
    (BOOTSTRAP_TOKEN_PATTERN, r"\1.[REDACTED]"),
    (re.compile(r'token-secret["\']?\s*[:=]\s*["\']?[^\s"\',}]+', re.IGNORECASE),
     "token-secret=[REDACTED]"),
    (re.compile(r'token=[^&\s"\']+', re.IGNORECASE), "token=[REDACTED]"),
    (re.compile(r'secret=[^&\s"\']+', re.IGNORECASE), "secret=[REDACTED]"),
    (re.compile(r'password=[^&\s"\']+', re.IGNORECASE), "password=[REDACTED]"),
    (re.compile(r'sig=[^&\s"\']+', re.IGNORECASE), "sig=[REDACTED]"),
    (re.compile(r"bearer\s+[a-zA-Z0-9\-_.]+", re.IGNORECASE), "bearer [REDACTED]"),
    (re.compile(r'client_secret[=:]\s*[^\s"\'&]+', re.IGNORECASE),
     "client_secret=[REDACTED]"),
]


def redact_token(value: str) -> str:
    """
    Mask the secret part of a serialized bootstrap token.

    Examples:
        >>> redact_token("240101.abcdef0123456789")
        '240101.[REDACTED]'
    """
    token_id, separator, _secret = value.partition(".")
    if not separator:
        return "[REDACTED]"
    return f"{token_id}.[REDACTED]"


def sanitize_error_message(msg: str, max_length: int = 500) -> str:
    """
    Remove potentially sensitive data from error messages.

    Applies pattern-based redaction and truncates to max_length.

    Args:
        msg: Error message that may contain sensitive data
        max_length: Maximum length of returned message

    Returns:
        Sanitized and truncated error message
    """
    if not msg:
        return msg

    for pattern, replacement in SENSITIVE_PATTERNS:
        msg = pattern.sub(replacement, msg)

    if len(msg) > max_length:
        msg = msg[: max_length - 3] + "..."

    return msg
