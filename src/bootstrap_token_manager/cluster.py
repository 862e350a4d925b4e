"""
Cluster secret store.

The reconciler exchanges plain ``SecretResource`` records with a
``ClusterStore``; only ``KubernetesSecretStore`` knows about the
Kubernetes client models. API errors are translated into the
``core.errors`` taxonomy at this boundary.
"""

import base64
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from core.errors import (
    AuthError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PermanentError,
    PolicyDeniedError,
    ServiceUnavailableError,
    TimeoutError,
    TokenManagerError,
    TransientError,
)
from core.logging.setup import get_logger
from core.logging.utilities import log_with_context

logger = get_logger(__name__)


@dataclass
class SecretResource:
    """
    Cluster secret as seen by the reconciler.

    Attributes:
        name: Resource name
        namespace: Resource namespace
        type: Secret type (e.g. bootstrap.kubernetes.io/token)
        labels: Resource labels
        string_data: Decoded payload
        resource_version: Server version, used for optimistic concurrency
        metadata: Server object metadata (annotations, owner references,
            finalizers), written back unchanged on update
    """

    name: str
    namespace: str
    type: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    string_data: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None
    metadata: Any = field(default=None, repr=False, compare=False)


class ClusterStore(ABC):
    """Read / create / update access to cluster secrets in one namespace."""

    namespace: str

    @abstractmethod
    def get(self, name: str) -> SecretResource:
        """
        Read a secret by name.

        Raises:
            NotFoundError: If the secret does not exist
        """

    @abstractmethod
    def create(self, resource: SecretResource) -> SecretResource:
        """Create a new secret."""

    @abstractmethod
    def update(self, resource: SecretResource) -> SecretResource:
        """
        Replace an existing secret.

        Raises:
            ConflictError: If the secret was modified concurrently
        """


def translate_api_exception(exc: ApiException, resource: str = "") -> TokenManagerError:
    """
    Map a Kubernetes ``ApiException`` into the error taxonomy.

    Args:
        exc: Exception raised by the Kubernetes client
        resource: Resource description for the message

    Returns:
        Translated error (caller raises it)
    """
    status = exc.status or 0
    reason = exc.reason or "unknown"
    message = f"kubernetes api error for {resource or 'secret'}: {status} {reason}"
    context = {"http_status": status}

    if status == 404:
        return NotFoundError(message, cause=exc, context=context)
    if status == 409:
        return ConflictError(message, cause=exc, context=context)
    if status == 403:
        return PolicyDeniedError(message, cause=exc, context=context)
    if status == 401:
        return AuthError(message, cause=exc, context=context)
    if status in (408, 504):
        return TimeoutError(message, cause=exc, context=context)
    if status in (429, 500, 503):
        retry_after = None
        headers = exc.headers or {}
        if headers.get("Retry-After"):
            try:
                retry_after = float(headers["Retry-After"])
            except ValueError:
                pass
        return ServiceUnavailableError(
            message, retry_after=retry_after, cause=exc, context=context
        )
    if status >= 500:
        return TransientError(message, cause=exc, context=context)
    return PermanentError(message, cause=exc, context=context)


def load_kubernetes_config() -> None:
    """
    Load Kubernetes client configuration.

    Uses the kubeconfig named by ``KUBECONFIG`` when set, otherwise the
    in-cluster service account, otherwise the default kubeconfig file.

    Raises:
        ConfigurationError: If no configuration can be loaded
    """
    kubeconfig = os.getenv("KUBECONFIG")
    try:
        if kubeconfig:
            k8s_config.load_kube_config(config_file=kubeconfig)
            logger.info(f"Loaded Kubernetes configuration from {kubeconfig}")
            return
        try:
            k8s_config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except ConfigException:
            k8s_config.load_kube_config()
            logger.info("Loaded local Kubernetes configuration")
    except (ConfigException, OSError) as e:
        raise ConfigurationError("unable to load kubernetes configuration", cause=e)


def _decode_data(data: Optional[Dict[str, str]]) -> Dict[str, str]:
    decoded = {}
    for key, value in (data or {}).items():
        decoded[key] = base64.b64decode(value).decode("utf-8") if value else ""
    return decoded


class KubernetesSecretStore(ClusterStore):
    """
    ``ClusterStore`` backed by the Kubernetes ``CoreV1Api``.

    Example:
        load_kubernetes_config()
        store = KubernetesSecretStore(namespace="kube-system")
        resource = store.get("bootstrap-token-240101")
    """

    def __init__(self, namespace: str, api: Optional[k8s_client.CoreV1Api] = None):
        self.namespace = namespace
        self._api = api or k8s_client.CoreV1Api()

    def _to_resource(self, secret: k8s_client.V1Secret) -> SecretResource:
        metadata = secret.metadata or k8s_client.V1ObjectMeta()
        string_data = _decode_data(secret.data)
        string_data.update(secret.string_data or {})
        return SecretResource(
            name=metadata.name,
            namespace=metadata.namespace or self.namespace,
            type=secret.type or "",
            labels=dict(metadata.labels or {}),
            string_data=string_data,
            resource_version=metadata.resource_version,
            metadata=metadata,
        )

    def _to_secret(self, resource: SecretResource) -> k8s_client.V1Secret:
        metadata = resource.metadata or k8s_client.V1ObjectMeta()
        metadata.name = resource.name
        metadata.namespace = resource.namespace
        metadata.labels = dict(resource.labels)
        metadata.resource_version = resource.resource_version

        return k8s_client.V1Secret(
            api_version="v1",
            kind="Secret",
            type=resource.type or None,
            metadata=metadata,
            string_data=dict(resource.string_data),
        )

    def get(self, name: str) -> SecretResource:
        try:
            secret = self._api.read_namespaced_secret(name=name, namespace=self.namespace)
        except ApiException as e:
            raise translate_api_exception(e, f"secret {self.namespace}/{name}")
        return self._to_resource(secret)

    def create(self, resource: SecretResource) -> SecretResource:
        try:
            secret = self._api.create_namespaced_secret(
                namespace=resource.namespace,
                body=self._to_secret(resource),
            )
        except ApiException as e:
            raise translate_api_exception(
                e, f"secret {resource.namespace}/{resource.name}"
            )
        log_with_context(
            logger,
            logging.DEBUG,
            "Created cluster secret",
            resource_name=resource.name,
            namespace=resource.namespace,
        )
        return self._to_resource(secret)

    def update(self, resource: SecretResource) -> SecretResource:
        try:
            secret = self._api.replace_namespaced_secret(
                name=resource.name,
                namespace=resource.namespace,
                body=self._to_secret(resource),
            )
        except ApiException as e:
            raise translate_api_exception(
                e, f"secret {resource.namespace}/{resource.name}"
            )
        log_with_context(
            logger,
            logging.DEBUG,
            "Replaced cluster secret",
            resource_name=resource.name,
            namespace=resource.namespace,
        )
        return self._to_resource(secret)
