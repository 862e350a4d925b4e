"""
Cloud providers holding the durable copy of the bootstrap token.

Importing this package registers the built-in providers.
"""

from bootstrap_token_manager.cloudprovider.azure import (
    AzureKeyVaultProvider,
    translate_azure_error,
)
from bootstrap_token_manager.cloudprovider.base import (
    SECRET_SYNC_COUNT_MAX,
    CloudProvider,
    available_cloud_providers,
    new_cloud_provider,
    register_cloud_provider,
)

__all__ = [
    "AzureKeyVaultProvider",
    "CloudProvider",
    "SECRET_SYNC_COUNT_MAX",
    "available_cloud_providers",
    "new_cloud_provider",
    "register_cloud_provider",
    "translate_azure_error",
]
