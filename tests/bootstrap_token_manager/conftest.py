"""
Fixtures for bootstrap token manager tests.

Provides in-memory collaborators so the manager can be exercised without
Azure or a Kubernetes API server.
"""

import copy
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from prometheus_client import CollectorRegistry

from core.errors import NotFoundError

from bootstrap_token_manager.api.health import HealthState
from bootstrap_token_manager.cloudprovider.base import CloudProvider
from bootstrap_token_manager.cluster import ClusterStore, SecretResource
from bootstrap_token_manager.config import load_config_from_dict
from bootstrap_token_manager.manager import BootstrapTokenManager
from bootstrap_token_manager.metrics import TokenMetrics
from bootstrap_token_manager.token import BootstrapToken

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeCloudProvider(CloudProvider):
    """Cloud provider keeping tokens in a list, newest last."""

    name = "fake"

    def __init__(self, token: Optional[BootstrapToken] = None):
        self.current: Optional[BootstrapToken] = token
        self.history: List[BootstrapToken] = [token] if token else []
        self.stored: List[BootstrapToken] = []
        self.fetch_error: Optional[Exception] = None
        self.store_error: Optional[Exception] = None

    @classmethod
    def from_config(cls, config):
        return cls()

    def fetch_token(self) -> Optional[BootstrapToken]:
        if self.fetch_error:
            raise self.fetch_error
        return self.current

    def fetch_tokens(self) -> List[BootstrapToken]:
        if self.fetch_error:
            raise self.fetch_error
        return list(reversed(self.history))

    def store_token(self, token: BootstrapToken) -> None:
        if self.store_error:
            raise self.store_error
        self.stored.append(token)
        self.history.append(token)
        self.current = token


class InMemoryClusterStore(ClusterStore):
    """Cluster store backed by a dict with call recording and error injection."""

    def __init__(self, namespace: str = "kube-system"):
        self.namespace = namespace
        self.secrets: Dict[str, SecretResource] = {}
        self.calls: List[str] = []
        # Errors raised by the next calls, consumed in order
        self.get_errors: List[Exception] = []
        self.write_errors: List[Exception] = []

    def get(self, name: str) -> SecretResource:
        self.calls.append(f"get:{name}")
        if self.get_errors:
            raise self.get_errors.pop(0)
        if name not in self.secrets:
            raise NotFoundError(f"secret {name} not found")
        return copy.deepcopy(self.secrets[name])

    def _write(self, op: str, resource: SecretResource) -> SecretResource:
        self.calls.append(f"{op}:{resource.name}")
        if self.write_errors:
            raise self.write_errors.pop(0)
        version = 1
        if op == "update":
            version = int(self.secrets[resource.name].resource_version or 0) + 1
        stored = copy.deepcopy(resource)
        stored.resource_version = str(version)
        self.secrets[resource.name] = stored
        return copy.deepcopy(stored)

    def create(self, resource: SecretResource) -> SecretResource:
        return self._write("create", resource)

    def update(self, resource: SecretResource) -> SecretResource:
        return self._write("update", resource)


def make_token(
    token_id: str = "231231",
    secret: str = "abcdefghij012345",
    expires_in: Optional[timedelta] = timedelta(hours=8000),
    now: datetime = NOW,
) -> BootstrapToken:
    token = BootstrapToken(id=token_id, secret=secret)
    token.creation_time = now - timedelta(hours=1)
    if expires_in is not None:
        token.expiration_time = now + expires_in
    return token


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def token_factory():
    """Build tokens relative to NOW."""
    return make_token


@pytest.fixture
def config_data():
    return {
        "cloud_provider": {
            "provider": "azure",
            "azure": {"vault_url": "https://test.vault.azure.net"},
        },
        "server": {"enabled": False},
    }


@pytest.fixture
def config(config_data):
    return load_config_from_dict(config_data)


@pytest.fixture
def cloud():
    return FakeCloudProvider()


@pytest.fixture
def store():
    return InMemoryClusterStore()


@pytest.fixture
def metrics():
    return TokenMetrics(CollectorRegistry())


@pytest.fixture
def health_state():
    return HealthState()


@pytest.fixture
def manager(config, cloud, store, metrics, health_state):
    return BootstrapTokenManager(
        config,
        cloud_provider=cloud,
        cluster_store=store,
        metrics=metrics,
        health_state=health_state,
        clock=lambda: NOW,
    )
