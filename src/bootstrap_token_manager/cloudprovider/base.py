"""
Abstract base class and registry for cloud providers.

Provides:
- CloudProvider: durable store for the current bootstrap token
- register_cloud_provider / new_cloud_provider: name based provider selection
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Type, TypeVar

from core.errors import ConfigurationError

from bootstrap_token_manager.token import BootstrapToken

if TYPE_CHECKING:
    from bootstrap_token_manager.config import Config

# Upper bound on token versions returned by fetch_tokens()
SECRET_SYNC_COUNT_MAX = 15

T = TypeVar("T", bound="CloudProvider")

_PROVIDERS: Dict[str, Type["CloudProvider"]] = {}


class CloudProvider(ABC):
    """
    Durable store holding the current bootstrap token and its history.

    Implementations translate their SDK errors into ``core.errors``:
    absent or disabled records are not errors, malformed records are
    logged and treated as absent, policy refusals are raised.

    Usage:
        with new_cloud_provider("azure", config) as provider:
            token = provider.fetch_token()
    """

    name: str = ""

    def __enter__(self: T) -> T:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @classmethod
    @abstractmethod
    def from_config(cls: Type[T], config: "Config") -> T:
        """
        Build the provider from configuration.

        Raises:
            ConfigurationError: If required settings are missing
        """

    @abstractmethod
    def fetch_token(self) -> Optional[BootstrapToken]:
        """
        Fetch the current token.

        Returns:
            Current token, or None if absent, disabled or malformed

        Raises:
            PolicyDeniedError: If access to the store is refused
        """

    @abstractmethod
    def fetch_tokens(self) -> List[BootstrapToken]:
        """
        Fetch recent valid tokens.

        Returns:
            At most SECRET_SYNC_COUNT_MAX enabled, active, non-expired
            tokens, newest creation time first
        """

    @abstractmethod
    def store_token(self, token: BootstrapToken) -> None:
        """Persist a token as the new current version."""

    def close(self) -> None:
        """Release client resources."""
        pass


def register_cloud_provider(name: str) -> Callable[[Type[T]], Type[T]]:
    """Class decorator registering a provider under ``name``."""

    def decorator(cls: Type[T]) -> Type[T]:
        cls.name = name
        _PROVIDERS[name.lower()] = cls
        return cls

    return decorator


def available_cloud_providers() -> List[str]:
    return sorted(_PROVIDERS)


def new_cloud_provider(name: str, config: "Config") -> CloudProvider:
    """
    Create a cloud provider by name.

    Args:
        name: Provider name (case-insensitive), e.g. "azure"
        config: Root configuration

    Raises:
        ConfigurationError: If the provider is unknown or misconfigured
    """
    provider_cls = _PROVIDERS.get((name or "").strip().lower())
    if provider_cls is None:
        raise ConfigurationError(
            f"cloud provider '{name}' not available "
            f"(available: {', '.join(available_cloud_providers()) or 'none'})"
        )
    return provider_cls.from_config(config)
