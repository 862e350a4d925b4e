"""
Bootstrap token entity.

A bootstrap token is an id/secret pair serialized as ``<id>.<secret>``.
The id and secret are fixed at construction; timestamps and provenance
annotations are set by whichever collaborator supplied the record.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

# Separator between token id and token secret in the serialized form
TOKEN_SEPARATOR = "."

# Provenance annotation keys
ANNOTATION_PREFIX = "bootstraptoken.webdevops.io"
ANNOTATION_PROVIDER = f"{ANNOTATION_PREFIX}/provider"
ANNOTATION_KEYVAULT = f"{ANNOTATION_PREFIX}/keyvault"
ANNOTATION_SECRET = f"{ANNOTATION_PREFIX}/secret"
ANNOTATION_SECRET_VERSION = f"{ANNOTATION_PREFIX}/secretVersion"
ANNOTATION_CREATED = f"{ANNOTATION_PREFIX}/created"
ANNOTATION_EXPIRES = f"{ANNOTATION_PREFIX}/expires"
ANNOTATION_NOT_BEFORE = f"{ANNOTATION_PREFIX}/notBefore"


def format_rfc3339(value: datetime) -> str:
    """Format a datetime as RFC3339 in UTC with a ``Z`` suffix."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class BootstrapToken(BaseModel):
    """Kubernetes bootstrap token.

    Attributes:
        id: Token id, must not contain the separator character
        secret: Token secret
        creation_time: When the token was minted (UTC, optional)
        expiration_time: When the token expires (UTC, optional)
        annotations: Provenance metadata (provider, vault, secret version)

    Example:
        >>> token = BootstrapToken.parse("240101.abcdef0123456789")
        >>> token.id
        '240101'
        >>> token.full_token()
        '240101.abcdef0123456789'
    """

    id: str = Field(
        ...,
        description="Token id (public part)",
        min_length=1,
        frozen=True,
    )
    secret: str = Field(
        ...,
        description="Token secret (private part)",
        min_length=1,
        frozen=True,
        repr=False,
    )
    creation_time: Optional[datetime] = Field(
        default=None,
        description="Creation timestamp (UTC)",
    )
    expiration_time: Optional[datetime] = Field(
        default=None,
        description="Expiration timestamp (UTC)",
    )
    annotations: Dict[str, str] = Field(
        default_factory=dict,
        description="Provenance metadata",
    )

    model_config = {"validate_assignment": True}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Token id must not contain the separator character."""
        if TOKEN_SEPARATOR in v:
            raise ValueError(f"token id must not contain '{TOKEN_SEPARATOR}'")
        return v

    @field_validator("creation_time", "expiration_time")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store timestamps as timezone-aware UTC; naive values are taken as UTC."""
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_serializer("creation_time", "expiration_time")
    def serialize_timestamp(self, timestamp: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to RFC3339."""
        if timestamp is None:
            return None
        return format_rfc3339(timestamp)

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["BootstrapToken"]:
        """
        Parse a serialized ``<id>.<secret>`` value.

        Splits on the first separator. Returns None when the value has no
        separator or either part is empty.
        """
        if not value:
            return None
        token_id, separator, secret = value.partition(TOKEN_SEPARATOR)
        if not separator or not token_id or not secret:
            return None
        return cls(id=token_id, secret=secret)

    def full_token(self) -> str:
        """Serialized form: ``<id>.<secret>``."""
        return f"{self.id}{TOKEN_SEPARATOR}{self.secret}"

    def set_annotation(self, name: str, value: str) -> None:
        self.annotations[name] = value

    def expiration_timestamp(self) -> Optional[int]:
        """Expiration as Unix seconds, or None when unset."""
        if self.expiration_time is None:
            return None
        return int(self.expiration_time.timestamp())

    def creation_timestamp(self) -> Optional[int]:
        """Creation as Unix seconds, or None when unset."""
        if self.creation_time is None:
            return None
        return int(self.creation_time.timestamp())

    def expiration_string(self, now: Optional[datetime] = None) -> str:
        """Human readable expiration for log messages."""
        if self.expiration_time is None:
            return "<not set>"
        now = now or datetime.now(timezone.utc)
        remaining = self.expiration_time - now
        return f"{format_rfc3339(self.expiration_time)} ({remaining})"
