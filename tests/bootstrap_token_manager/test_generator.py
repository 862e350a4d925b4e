"""Tests for token id and secret generation."""

import secrets
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import ConfigurationError, RandomSourceError, TemplateError

from bootstrap_token_manager.generator import (
    DEFAULT_TOKEN_RUNES,
    TokenGenerator,
    compile_id_template,
    generate_secret,
)

NOW = datetime(2024, 1, 2, 23, 30, tzinfo=timezone.utc)


class TestCompileIdTemplate:
    """Tests for id template validation."""

    @pytest.mark.parametrize(
        "template,fields",
        [
            ("{Date}", ["Date"]),
            ("k{Date}", ["Date"]),
            ("static", []),
            ("{{x}}{Date}", ["Date"]),
        ],
    )
    def test_valid(self, template, fields):
        """Valid templates return the variables they use."""
        assert compile_id_template(template) == fields

    @pytest.mark.parametrize(
        "template",
        ["", "{Time}", "{}", "{0}", "{Date:>8}", "{Date!r}", "{Date", "Date}"],
    )
    def test_invalid(self, template):
        """Unknown, positional, formatted or malformed fields are rejected."""
        with pytest.raises(TemplateError):
            compile_id_template(template)


class TestGenerateSecret:
    """Tests for secret generation."""

    def test_length_and_alphabet(self):
        """Secrets have the requested length and only use the alphabet."""
        for length in (1, 16, 64):
            value = generate_secret(length, "abc123")
            assert len(value) == length
            assert set(value) <= set("abc123")

    def test_single_character_alphabet(self):
        """A one character alphabet yields a constant secret."""
        assert generate_secret(5, "z") == "zzzzz"

    @pytest.mark.parametrize("length,alphabet", [(0, "abc"), (-1, "abc"), (8, "")])
    def test_invalid_arguments(self, length, alphabet):
        """Non-positive length or empty alphabet is a configuration error."""
        with pytest.raises(ConfigurationError):
            generate_secret(length, alphabet)

    def test_random_source_unavailable(self, monkeypatch):
        """OS random failures become RandomSourceError."""

        def broken(_n):
            raise NotImplementedError("no urandom")

        monkeypatch.setattr(secrets, "randbelow", broken)

        with pytest.raises(RandomSourceError):
            generate_secret(16, DEFAULT_TOKEN_RUNES)

    def test_distribution_is_uniform(self):
        """Character frequencies stay within a chi-square bound."""
        alphabet = DEFAULT_TOKEN_RUNES
        sample = generate_secret(36000, alphabet)
        counts = Counter(sample)
        expected = len(sample) / len(alphabet)

        chi_square = sum(
            (counts.get(char, 0) - expected) ** 2 / expected for char in alphabet
        )

        # 35 degrees of freedom; 99.99th percentile is about 77
        assert chi_square < 90


class TestTokenGenerator:
    """Tests for TokenGenerator."""

    def test_default_id_is_utc_date(self):
        """The default template expands to yymmdd in UTC."""
        generator = TokenGenerator()

        assert generator.generate_id(NOW) == "240102"

    def test_date_uses_utc(self):
        """Local offsets are converted before formatting."""
        generator = TokenGenerator()
        local = datetime(2024, 1, 3, 1, 0, tzinfo=timezone(timedelta(hours=2)))

        assert generator.generate_id(local) == "240102"

    def test_template_with_literal(self):
        """Literal text around variables is kept."""
        assert TokenGenerator(id_template="k{Date}").generate_id(NOW) == "k240102"

    def test_invalid_template_fails_at_construction(self):
        """Bad templates fail fast."""
        with pytest.raises(TemplateError):
            TokenGenerator(id_template="{Nope}")

    def test_template_producing_separator_rejected(self):
        """Expanded ids must not contain the separator."""
        generator = TokenGenerator(id_template="a.{Date}")

        with pytest.raises(TemplateError):
            generator.generate_id(NOW)

    def test_alphabet_with_separator_rejected(self):
        """The separator cannot be part of the token alphabet."""
        with pytest.raises(ConfigurationError):
            TokenGenerator(token_runes="abc.")

    def test_collision_replaces_trailing_characters(self):
        """A taken id keeps its length with a random tail from the alphabet."""
        generator = TokenGenerator(token_runes="xy")

        token_id = generator.generate_id(NOW, taken={"240102"})

        assert token_id != "240102"
        assert len(token_id) == 6
        assert token_id.startswith("2401")
        assert set(token_id[4:]) <= {"x", "y"}

    def test_collision_checks_lookup(self):
        """Ids reported by the lookup are skipped as well."""
        generator = TokenGenerator(token_runes="x")
        existing = {"240102"}

        token_id = generator.generate_id(NOW, is_taken=existing.__contains__)

        assert token_id == "2401xx"

    def test_short_id_is_extended(self):
        """Ids no longer than the suffix get the suffix appended."""
        generator = TokenGenerator(id_template="k", token_runes="x")

        assert generator.generate_id(NOW, taken={"k"}) == "kxx"

    def test_collision_exhausted(self):
        """An id space with no free suffix raises TemplateError."""
        generator = TokenGenerator(token_runes="x")

        with pytest.raises(TemplateError):
            generator.generate_id(
                NOW, taken={"240102"}, is_taken=lambda candidate: candidate == "2401xx"
            )

    def test_new_token(self):
        """New tokens carry creation and expiration times."""
        generator = TokenGenerator(token_length=20)

        token = generator.new_token(NOW, expiration=timedelta(hours=8760))

        assert token.id == "240102"
        assert len(token.secret) == 20
        assert token.creation_time == NOW
        assert token.expiration_time == NOW + timedelta(hours=8760)

    def test_new_token_without_expiration(self):
        """Without expiration the token does not expire."""
        token = TokenGenerator().new_token(NOW)

        assert token.expiration_time is None

    def test_secrets_differ(self):
        """Two secrets are not equal."""
        generator = TokenGenerator()

        assert generator.generate_secret() != generator.generate_secret()
