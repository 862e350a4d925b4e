"""Tests for the BootstrapToken model."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from bootstrap_token_manager.token import (
    ANNOTATION_PROVIDER,
    BootstrapToken,
    format_rfc3339,
)


class TestParse:
    """Tests for BootstrapToken.parse."""

    @pytest.mark.parametrize(
        "value",
        ["240101.abcdef0123456789", "a.b", "240101.sec.ret"],
    )
    def test_parse_then_serialize_is_identity(self, value):
        """full_token() reproduces the parsed value."""
        token = BootstrapToken.parse(value)

        assert token is not None
        assert token.full_token() == value

    def test_splits_on_first_separator(self):
        """Secret keeps any further separators."""
        token = BootstrapToken.parse("240101.sec.ret")

        assert token.id == "240101"
        assert token.secret == "sec.ret"

    @pytest.mark.parametrize(
        "value",
        [None, "", "no-separator", ".secret", "240101.", "."],
    )
    def test_malformed_returns_none(self, value):
        """Values without a separator or with an empty part are not tokens."""
        assert BootstrapToken.parse(value) is None

    def test_parsed_token_has_no_timestamps(self):
        """Timestamps are set by whoever supplied the record."""
        token = BootstrapToken.parse("240101.abcdef0123456789")

        assert token.creation_time is None
        assert token.expiration_time is None
        assert token.annotations == {}


class TestValidation:
    """Tests for model validation."""

    def test_id_with_separator_rejected(self):
        """Token id must not contain the separator."""
        with pytest.raises(ValidationError):
            BootstrapToken(id="24.01", secret="abc")

    @pytest.mark.parametrize("token_id,secret", [("", "abc"), ("240101", "")])
    def test_empty_parts_rejected(self, token_id, secret):
        """Empty id or secret is rejected."""
        with pytest.raises(ValidationError):
            BootstrapToken(id=token_id, secret=secret)

    def test_id_and_secret_are_immutable(self):
        """Id and secret cannot be reassigned."""
        token = BootstrapToken(id="240101", secret="abc")

        with pytest.raises(ValidationError):
            token.id = "240102"
        with pytest.raises(ValidationError):
            token.secret = "xyz"

    def test_naive_timestamp_taken_as_utc(self):
        """Naive datetimes are interpreted as UTC."""
        token = BootstrapToken(id="240101", secret="abc")
        token.expiration_time = datetime(2025, 1, 1, 0, 0, 0)

        assert token.expiration_time.tzinfo == timezone.utc

    def test_aware_timestamp_normalized_to_utc(self):
        """Aware datetimes are converted to UTC."""
        token = BootstrapToken(id="240101", secret="abc")
        token.creation_time = datetime(
            2025, 1, 1, 2, 0, 0, tzinfo=timezone(timedelta(hours=2))
        )

        assert token.creation_time == datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
        assert token.creation_time.utcoffset() == timedelta(0)

    def test_secret_hidden_from_repr(self):
        """The secret does not appear in repr."""
        token = BootstrapToken(id="240101", secret="supersecretvalue")

        assert "supersecretvalue" not in repr(token)


class TestHelpers:
    """Tests for timestamp helpers and annotations."""

    def test_expiration_string_not_set(self):
        """Unexpiring tokens report <not set>."""
        token = BootstrapToken(id="240101", secret="abc")

        assert token.expiration_string() == "<not set>"

    def test_expiration_string_with_remaining(self):
        """Expiration is rendered as RFC3339 with remaining time."""
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        token = BootstrapToken(id="240101", secret="abc")
        token.expiration_time = now + timedelta(hours=1)

        assert token.expiration_string(now) == "2024-01-01T01:00:00Z (1:00:00)"

    def test_timestamps(self):
        """Unix timestamps are derived from the datetimes."""
        token = BootstrapToken(id="240101", secret="abc")
        assert token.expiration_timestamp() is None
        assert token.creation_timestamp() is None

        token.creation_time = datetime(1970, 1, 1, 0, 1, tzinfo=timezone.utc)
        token.expiration_time = datetime(1970, 1, 1, 0, 2, tzinfo=timezone.utc)

        assert token.creation_timestamp() == 60
        assert token.expiration_timestamp() == 120

    def test_set_annotation(self):
        """Annotations are stored by key."""
        token = BootstrapToken(id="240101", secret="abc")
        token.set_annotation(ANNOTATION_PROVIDER, "azure")

        assert token.annotations == {"bootstraptoken.webdevops.io/provider": "azure"}

    def test_model_dump_serializes_rfc3339(self):
        """Timestamps serialize as RFC3339 strings."""
        token = BootstrapToken(id="240101", secret="abc")
        token.expiration_time = datetime(2025, 6, 1, 8, 30, tzinfo=timezone.utc)

        dumped = token.model_dump()

        assert dumped["expiration_time"] == "2025-06-01T08:30:00Z"
        assert dumped["creation_time"] is None

    def test_format_rfc3339_converts_to_utc(self):
        """format_rfc3339 always renders UTC with Z suffix."""
        value = datetime(2025, 1, 1, 1, 0, tzinfo=timezone(timedelta(hours=1)))

        assert format_rfc3339(value) == "2025-01-01T00:00:00Z"
