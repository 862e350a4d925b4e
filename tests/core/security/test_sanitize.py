"""Tests for error message sanitization."""

from core.security import redact_token, sanitize_error_message


class TestSanitizeErrorMessage:
    """Tests for sanitize_error_message."""

    def test_redacts_serialized_token(self):
        """The secret part of a serialized token is removed."""
        msg = sanitize_error_message("bad value 240101.abcdefghij012345 stored")

        assert msg == "bad value 240101.[REDACTED] stored"

    def test_redacts_token_secret_key(self):
        """token-secret payload keys are redacted."""
        msg = sanitize_error_message("{'token-secret': 'abcdefghij012345'}")

        assert "abcdefghij012345" not in msg

    def test_redacts_bearer(self):
        """Bearer tokens are redacted."""
        msg = sanitize_error_message("Authorization: Bearer eyJhbGciOi.abc")

        assert "eyJhbGciOi" not in msg

    def test_keeps_harmless_text(self):
        """Messages without sensitive content are unchanged."""
        msg = "secret kube-system/bootstrap-token-240101 not found"
        assert sanitize_error_message(msg) == msg

    def test_truncates(self):
        """Long messages are truncated with ellipsis."""
        msg = sanitize_error_message("x" * 600, max_length=100)

        assert len(msg) == 100
        assert msg.endswith("...")

    def test_empty(self):
        """Empty input passes through."""
        assert sanitize_error_message("") == ""


class TestRedactToken:
    """Tests for redact_token."""

    def test_keeps_id(self):
        """Token id stays visible."""
        assert redact_token("240101.abcdef0123456789") == "240101.[REDACTED]"

    def test_no_separator(self):
        """Values without separator are fully redacted."""
        assert redact_token("garbage") == "[REDACTED]"
