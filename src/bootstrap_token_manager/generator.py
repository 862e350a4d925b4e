"""
Token generation.

Token ids are expanded from a configurable template, token secrets are
drawn from a configurable alphabet using the OS secure random source.
"""

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Callable, Collection, Dict, List, Optional

from core.errors import ConfigurationError, RandomSourceError, TemplateError
from core.logging.setup import get_logger
from core.logging.utilities import log_with_context

from bootstrap_token_manager.token import TOKEN_SEPARATOR, BootstrapToken

logger = get_logger(__name__)

# Date variable format: two-digit year, month, day (6 digits)
DATE_FORMAT = "%y%m%d"

# Variables recognized in the id template
TEMPLATE_VARIABLES = ("Date",)

DEFAULT_ID_TEMPLATE = "{Date}"
DEFAULT_TOKEN_LENGTH = 16
DEFAULT_TOKEN_RUNES = "abcdefghijklmnopqrstuvwxyz0123456789"

# Trailing characters replaced in an id that collides with an existing one
COLLISION_SUFFIX_LENGTH = 2
MAX_COLLISION_ATTEMPTS = 100


def compile_id_template(template: str) -> List[str]:
    """
    Validate an id template and return the variable names it uses.

    Templates use ``str.format`` syntax restricted to the recognized
    variables, e.g. ``"{Date}"`` or ``"k{Date}"``. Literal braces are
    written ``{{`` and ``}}``.

    Raises:
        TemplateError: On malformed syntax, unknown or positional fields,
            format specs or conversions
    """
    if not template:
        raise TemplateError("token id template is empty")

    fields: List[str] = []
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError as e:
        raise TemplateError(f"invalid token id template '{template}': {e}", cause=e)

    for _literal, field_name, format_spec, conversion in parsed:
        if field_name is None:
            continue
        if field_name not in TEMPLATE_VARIABLES:
            raise TemplateError(
                f"unknown variable '{{{field_name}}}' in token id template "
                f"'{template}' (supported: {', '.join(TEMPLATE_VARIABLES)})"
            )
        if format_spec or conversion:
            raise TemplateError(
                f"format options are not supported in token id template '{template}'"
            )
        fields.append(field_name)

    return fields


def generate_secret(length: int, alphabet: str) -> str:
    """
    Generate a random secret.

    Every character is drawn independently and uniformly from the alphabet
    using ``secrets.randbelow``, which samples an unbiased integer in
    ``[0, len(alphabet))``.

    Raises:
        ConfigurationError: If length is not positive or alphabet is empty
        RandomSourceError: If the OS random source is unavailable
    """
    if length <= 0:
        raise ConfigurationError(f"token length must be positive, got {length}")
    if not alphabet:
        raise ConfigurationError("token alphabet must not be empty")

    try:
        return "".join(
            alphabet[secrets.randbelow(len(alphabet))] for _ in range(length)
        )
    except (NotImplementedError, OSError) as e:
        raise RandomSourceError("secure random source unavailable", cause=e)


class TokenGenerator:
    """
    Mints new bootstrap tokens.

    The id template is compiled at construction so a bad template fails
    at startup, not during a sync cycle.
    """

    def __init__(
        self,
        id_template: str = DEFAULT_ID_TEMPLATE,
        token_length: int = DEFAULT_TOKEN_LENGTH,
        token_runes: str = DEFAULT_TOKEN_RUNES,
    ):
        self.id_template = id_template
        self.token_length = token_length
        self.token_runes = token_runes

        compile_id_template(id_template)
        if token_length <= 0:
            raise ConfigurationError(
                f"token length must be positive, got {token_length}"
            )
        if not token_runes:
            raise ConfigurationError("token alphabet must not be empty")
        if TOKEN_SEPARATOR in token_runes:
            raise ConfigurationError(
                f"token alphabet must not contain '{TOKEN_SEPARATOR}'"
            )

    def template_variables(self, now: datetime) -> Dict[str, str]:
        return {"Date": now.astimezone(timezone.utc).strftime(DATE_FORMAT)}

    def generate_id(
        self,
        now: datetime,
        taken: Collection[str] = (),
        is_taken: Optional[Callable[[str], bool]] = None,
    ) -> str:
        """
        Expand the id template at ``now``.

        If the expanded id is already in use (a second rotation within the
        same templated time unit), its trailing characters are replaced by
        random ones from the token alphabet until the id is unique. The id
        keeps the length of the expanded template, so the default ``{Date}``
        template still yields the six characters Kubernetes requires.

        Args:
            now: Expansion time
            taken: Ids known to be in use
            is_taken: Lookup for ids in use elsewhere (e.g. existing
                cluster secrets)

        Raises:
            TemplateError: If expansion fails, yields an invalid id or no
                unused id is found
        """
        try:
            token_id = self.id_template.format(**self.template_variables(now))
        except (KeyError, IndexError, ValueError) as e:
            raise TemplateError(
                f"unable to expand token id template '{self.id_template}'", cause=e
            )

        if not token_id or TOKEN_SEPARATOR in token_id:
            raise TemplateError(
                f"token id template '{self.id_template}' produced invalid id '{token_id}'"
            )

        def in_use(candidate: str) -> bool:
            if candidate in taken:
                return True
            return is_taken is not None and is_taken(candidate)

        if not in_use(token_id):
            return token_id

        if len(token_id) > COLLISION_SUFFIX_LENGTH:
            prefix = token_id[:-COLLISION_SUFFIX_LENGTH]
        else:
            # Too short to replace characters, extend instead
            prefix = token_id

        for _ in range(MAX_COLLISION_ATTEMPTS):
            candidate = prefix + generate_secret(
                COLLISION_SUFFIX_LENGTH, self.token_runes
            )
            if not in_use(candidate):
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"Token id '{token_id}' already in use, using '{candidate}' instead",
                    token_id=candidate,
                )
                return candidate

        raise TemplateError(
            f"unable to find a unique token id for template '{self.id_template}'"
        )

    def generate_secret(self) -> str:
        return generate_secret(self.token_length, self.token_runes)

    def new_token(
        self,
        now: datetime,
        expiration: Optional[timedelta] = None,
        taken: Collection[str] = (),
        is_taken: Optional[Callable[[str], bool]] = None,
    ) -> BootstrapToken:
        """
        Mint a new token created at ``now``.

        Args:
            now: Creation time
            expiration: Token lifetime; None leaves the token unexpiring
            taken: Token ids that must not be reused
            is_taken: Lookup for ids in use elsewhere
        """
        token = BootstrapToken(
            id=self.generate_id(now, taken=taken, is_taken=is_taken),
            secret=self.generate_secret(),
        )
        token.creation_time = now
        if expiration is not None:
            token.expiration_time = now + expiration
        return token
