"""
Token renewal policy.

Pure decision logic: given the current token (or its absence) decide
whether a new token must be minted. No I/O.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from bootstrap_token_manager.token import BootstrapToken


def should_renew(
    token: Optional[BootstrapToken],
    now: datetime,
    recreate_before: timedelta,
    enforce_expiration: bool,
) -> bool:
    """
    Decide whether the token has to be rotated.

    Args:
        token: Current token, None when no token exists
        now: Reference time (timezone-aware)
        recreate_before: Lead time before expiration at which to rotate
        enforce_expiration: Whether tokens must carry an expiration

    Returns:
        True if a new token must be minted
    """
    if token is None:
        return True

    # An unexpiring token is only acceptable when expiration is not enforced
    if token.expiration_time is None:
        return enforce_expiration

    return token.expiration_time < now + recreate_before


@dataclass(frozen=True)
class RenewalPolicy:
    """Renewal policy bound to configuration values."""

    recreate_before: timedelta
    enforce_expiration: bool

    def should_renew(self, token: Optional[BootstrapToken], now: datetime) -> bool:
        return should_renew(
            token,
            now,
            recreate_before=self.recreate_before,
            enforce_expiration=self.enforce_expiration,
        )
