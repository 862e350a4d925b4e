"""
pytest configuration for token manager tests.

Adds src directory to Python path for imports and isolates tests from
configuration environment variables set on the host.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

# Environment variables read by bootstrap_token_manager.config
CONFIG_ENV_VARS = [
    "CLOUD_PROVIDER",
    "AZURE_KEYVAULT_URL",
    "AZURE_KEYVAULT_NAME",
    "AZURE_KEYVAULT_SECRET_NAME",
    "BOOTSTRAPTOKEN_ID_TEMPLATE",
    "BOOTSTRAPTOKEN_NAME",
    "BOOTSTRAPTOKEN_LABEL",
    "BOOTSTRAPTOKEN_NAMESPACE",
    "BOOTSTRAPTOKEN_TYPE",
    "BOOTSTRAPTOKEN_USAGE_BOOTSTRAP_AUTHENTICATION",
    "BOOTSTRAPTOKEN_USAGE_BOOTSTRAP_SIGNING",
    "BOOTSTRAPTOKEN_AUTH_EXTRA_GROUPS",
    "BOOTSTRAPTOKEN_EXPIRATION",
    "BOOTSTRAPTOKEN_TOKEN_LENGTH",
    "BOOTSTRAPTOKEN_TOKEN_RUNES",
    "SYNC_TIME",
    "SYNC_RECREATE_BEFORE",
    "SYNC_FULL",
    "SYNC_RETRY_ATTEMPTS",
    "DRY_RUN",
    "SERVER_BIND",
    "LOG_LEVEL",
    "LOG_DIR",
    "LOG_JSON",
    "KUBECONFIG",
]


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch):
    """Remove configuration environment variables for every test."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
