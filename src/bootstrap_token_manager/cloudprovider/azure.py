"""
Azure Key Vault cloud provider.

The current token is the latest version of one Key Vault secret. Older
versions are the token history used by full sync. Authentication uses
``DefaultAzureCredential`` (workload identity, managed identity,
service principal environment variables or Azure CLI login).
"""

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Iterable, List, Optional, Set

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import KeyVaultSecret, SecretClient, SecretProperties

from core.errors import (
    AuthError,
    ConfigurationError,
    ConnectionError,
    MalformedRecordError,
    NotFoundError,
    PermanentError,
    PolicyDeniedError,
    SecretDisabledError,
    ServiceUnavailableError,
    TimeoutError,
    TokenManagerError,
    TransientError,
    is_absent_error,
)
from core.logging.setup import get_logger
from core.logging.utilities import log_exception, log_with_context
from core.security import redact_token

from bootstrap_token_manager.cloudprovider.base import (
    SECRET_SYNC_COUNT_MAX,
    CloudProvider,
    register_cloud_provider,
)
from bootstrap_token_manager.token import (
    ANNOTATION_CREATED,
    ANNOTATION_EXPIRES,
    ANNOTATION_KEYVAULT,
    ANNOTATION_NOT_BEFORE,
    ANNOTATION_PROVIDER,
    ANNOTATION_SECRET,
    ANNOTATION_SECRET_VERSION,
    BootstrapToken,
    format_rfc3339,
)

if TYPE_CHECKING:
    from bootstrap_token_manager.config import Config

logger = get_logger(__name__)

MANAGED_BY = "kube-bootstrap-token-manager"
CONTENT_TYPE = "kube-bootstrap-token"

# Key Vault error codes
CODE_SECRET_NOT_FOUND = "SecretNotFound"
CODE_SECRET_DISABLED = "SecretDisabled"
CODE_FORBIDDEN_BY_POLICY = "ForbiddenByPolicy"
CODE_FORBIDDEN = "Forbidden"


def _error_codes(exc: HttpResponseError) -> Set[str]:
    """Collect the top-level and inner Key Vault error codes."""
    codes = set()
    error = getattr(exc, "error", None)
    while error is not None:
        code = getattr(error, "code", None)
        if code:
            codes.add(code)
        inner = getattr(error, "innererror", None)
        if isinstance(inner, dict):
            if inner.get("code"):
                codes.add(inner["code"])
            break
        error = inner
    return codes


def translate_azure_error(exc: Exception, resource: str = "") -> TokenManagerError:
    """
    Map an Azure SDK exception into the error taxonomy.

    Args:
        exc: Exception raised by the Azure SDK
        resource: Resource description for the message

    Returns:
        Translated error (caller raises it)
    """
    if isinstance(exc, TokenManagerError):
        return exc

    message = f"azure key vault error for {resource or 'secret'}: {exc}"

    if isinstance(exc, ServiceRequestError):
        return ConnectionError(message, cause=exc)
    if isinstance(exc, ServiceResponseError):
        return TransientError(message, cause=exc)

    if not isinstance(exc, HttpResponseError):
        return TokenManagerError(message, cause=exc)

    status = exc.status_code or 0
    codes = _error_codes(exc)
    context = {"http_status": status, "error_codes": sorted(codes)}

    if CODE_SECRET_DISABLED in codes:
        return SecretDisabledError(message, cause=exc, context=context)
    if (
        isinstance(exc, ResourceNotFoundError)
        or status == 404
        or CODE_SECRET_NOT_FOUND in codes
    ):
        return NotFoundError(message, cause=exc, context=context)
    if status == 403 or codes & {CODE_FORBIDDEN_BY_POLICY, CODE_FORBIDDEN}:
        return PolicyDeniedError(message, cause=exc, context=context)
    if isinstance(exc, ClientAuthenticationError) or status == 401:
        return AuthError(message, cause=exc, context=context)
    if status in (408, 504):
        return TimeoutError(message, cause=exc, context=context)
    if status in (429, 500, 503):
        retry_after = None
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None) or {}
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
    if 400 <= status < 500:
        return PermanentError(message, cause=exc, context=context)
    return TokenManagerError(message, cause=exc, context=context)


@register_cloud_provider("azure")
class AzureKeyVaultProvider(CloudProvider):
    """
    Bootstrap token store backed by an Azure Key Vault secret.

    Example:
        provider = AzureKeyVaultProvider(
            vault_url="https://myvault.vault.azure.net",
            secret_name="kube-bootstrap-token",
        )
        token = provider.fetch_token()
    """

    def __init__(
        self,
        vault_url: str,
        secret_name: str,
        client: Optional[SecretClient] = None,
        credential=None,
    ):
        if not vault_url:
            raise ConfigurationError("no Azure Key Vault url or name specified")
        if not secret_name:
            raise ConfigurationError("no Azure Key Vault secret name specified")

        self.vault_url = vault_url
        self.secret_name = secret_name
        self._credential = credential
        if client is None:
            self._credential = credential or DefaultAzureCredential()
            client = SecretClient(vault_url=vault_url, credential=self._credential)
        self._client = client

    @classmethod
    def from_config(cls, config: "Config") -> "AzureKeyVaultProvider":
        azure = config.cloud_provider.azure
        return cls(vault_url=azure.vault_url, secret_name=azure.secret_name)

    def close(self) -> None:
        self._client.close()
        if isinstance(self._credential, DefaultAzureCredential):
            self._credential.close()

    def _log_context(self) -> dict:
        return {
            "provider": self.name,
            "vault_url": self.vault_url,
            "secret_name": self.secret_name,
        }

    def _annotate(self, token: BootstrapToken, properties: SecretProperties) -> None:
        token.set_annotation(ANNOTATION_PROVIDER, self.name)
        token.set_annotation(ANNOTATION_KEYVAULT, self.vault_url)
        token.set_annotation(ANNOTATION_SECRET, properties.name or self.secret_name)
        if properties.version:
            token.set_annotation(ANNOTATION_SECRET_VERSION, properties.version)
        if properties.created_on:
            token.set_annotation(ANNOTATION_CREATED, format_rfc3339(properties.created_on))
        if properties.expires_on:
            token.set_annotation(ANNOTATION_EXPIRES, format_rfc3339(properties.expires_on))
        if properties.not_before:
            token.set_annotation(
                ANNOTATION_NOT_BEFORE, format_rfc3339(properties.not_before)
            )

    def _to_token(self, secret: KeyVaultSecret) -> BootstrapToken:
        """
        Parse a secret version into a token.

        Raises:
            MalformedRecordError: If the value is not ``<id>.<secret>``
        """
        token = BootstrapToken.parse(secret.value)
        if token is None:
            raise MalformedRecordError(
                f"secret '{self.secret_name}' version "
                f"'{secret.properties.version}' is not a bootstrap token",
                context={"stored_value": redact_token(secret.value or "")},
            )

        properties = secret.properties
        if properties.created_on:
            token.creation_time = properties.created_on
        if properties.expires_on:
            token.expiration_time = properties.expires_on
        self._annotate(token, properties)
        return token

    def _log_malformed(self, error: MalformedRecordError) -> None:
        log_exception(
            logger,
            error,
            "Stored secret value is not a bootstrap token, ignoring",
            level=logging.WARNING,
            include_traceback=False,
            stored_value=error.context.get("stored_value"),
            **self._log_context(),
        )

    def fetch_token(self) -> Optional[BootstrapToken]:
        log_with_context(
            logger,
            logging.INFO,
            f"Fetching current token from Azure Key Vault '{self.vault_url}' "
            f"secret '{self.secret_name}'",
            operation="fetch_token",
            **self._log_context(),
        )

        try:
            secret = self._client.get_secret(self.secret_name)
        except (HttpResponseError, ServiceRequestError, ServiceResponseError) as e:
            error = translate_azure_error(e, self.secret_name)
            if is_absent_error(error):
                reason = (
                    "disabled" if isinstance(error, SecretDisabledError) else "not found"
                )
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"Current secret {reason}, assuming no existing token",
                    error_category=error.category.value,
                    **self._log_context(),
                )
                return None
            if isinstance(error, PolicyDeniedError):
                log_with_context(
                    logger,
                    logging.ERROR,
                    "Access to Azure Key Vault denied, please check permissions",
                    error_category=error.category.value,
                    **self._log_context(),
                )
            raise error

        try:
            return self._to_token(secret)
        except MalformedRecordError as e:
            self._log_malformed(e)
            return None

    def _candidates(
        self, versions: Iterable[SecretProperties], now: datetime
    ) -> List[SecretProperties]:
        """Enabled, active, non-expired versions, newest first."""
        candidates = []
        for properties in versions:
            if not properties.enabled:
                continue
            if properties.not_before and now < properties.not_before:
                continue
            if properties.expires_on and now > properties.expires_on:
                continue
            candidates.append(properties)

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        candidates.sort(key=lambda p: p.created_on or epoch, reverse=True)
        return candidates

    def fetch_tokens(self) -> List[BootstrapToken]:
        log_with_context(
            logger,
            logging.INFO,
            f"Fetching all tokens from Azure Key Vault '{self.vault_url}' "
            f"secret '{self.secret_name}'",
            operation="fetch_tokens",
            **self._log_context(),
        )

        now = datetime.now(timezone.utc)
        try:
            candidates = self._candidates(
                self._client.list_properties_of_secret_versions(self.secret_name), now
            )
        except (HttpResponseError, ServiceRequestError, ServiceResponseError) as e:
            error = translate_azure_error(e, self.secret_name)
            if is_absent_error(error):
                log_with_context(
                    logger,
                    logging.WARNING,
                    "No secret versions found",
                    **self._log_context(),
                )
                return []
            raise error

        tokens = []
        for properties in candidates[:SECRET_SYNC_COUNT_MAX]:
            try:
                secret = self._client.get_secret(
                    properties.name or self.secret_name, properties.version
                )
            except (HttpResponseError, ServiceRequestError, ServiceResponseError) as e:
                log_exception(
                    logger,
                    translate_azure_error(e, self.secret_name),
                    "Unable to fetch secret version, skipping",
                    level=logging.WARNING,
                    include_traceback=False,
                    secret_version=properties.version,
                    **self._log_context(),
                )
                continue

            try:
                token = self._to_token(secret)
            except MalformedRecordError as e:
                self._log_malformed(e)
                continue

            log_with_context(
                logger,
                logging.INFO,
                "Found valid token version",
                token_id=token.id,
                secret_version=properties.version,
                **self._log_context(),
            )
            tokens.append(token)

        return tokens

    def store_token(self, token: BootstrapToken) -> None:
        log_with_context(
            logger,
            logging.INFO,
            f"Storing token to Azure Key Vault '{self.vault_url}' secret "
            f"'{self.secret_name}' with expiration {token.expiration_string()}",
            operation="store_token",
            token_id=token.id,
            **self._log_context(),
        )

        try:
            self._client.set_secret(
                self.secret_name,
                token.full_token(),
                tags={"managed-by": MANAGED_BY, "token": token.id},
                content_type=CONTENT_TYPE,
                not_before=token.creation_time,
                expires_on=token.expiration_time,
            )
        except (HttpResponseError, ServiceRequestError, ServiceResponseError) as e:
            raise translate_azure_error(e, self.secret_name)
