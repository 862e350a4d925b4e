"""
Token manager configuration.

Dataclass-based configuration loaded from YAML with environment variable
overrides. Environment variable names follow the upstream
kube-bootstrap-token-manager conventions (BOOTSTRAPTOKEN_*, SYNC_*, AZURE_*).
"""

import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from bootstrap_token_manager.generator import (
    DEFAULT_ID_TEMPLATE,
    DEFAULT_TOKEN_LENGTH,
    DEFAULT_TOKEN_RUNES,
)

# Default config file location (working directory)
DEFAULT_CONFIG_PATH = Path("config.yaml")

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

DurationValue = Union[None, str, int, float, timedelta]


def parse_duration(value: DurationValue) -> timedelta:
    """
    Parse a duration.

    Accepts Go-style duration strings ("90m", "1h30m", "8760h", "10s"),
    plain numbers (seconds) and timedelta instances.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return timedelta(seconds=float(text))

    sign = 1
    if text.startswith("-"):
        sign, text = -1, text[1:]

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if not text or pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")

    return timedelta(seconds=sign * seconds)


def parse_optional_duration(value: DurationValue) -> Optional[timedelta]:
    """Parse a duration where empty, "none" or "0" mean "not set"."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in ("", "none", "null", "0"):
        return None
    duration = parse_duration(value)
    if duration == timedelta(0):
        return None
    return duration


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_flag(value: Any) -> str:
    """Bootstrap token usage flags are stored as "true"/"false" strings."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return _as_bool(value)


@dataclass
class BootstrapTokenConfig:
    """Bootstrap token generation and cluster resource settings."""

    id_template: str = DEFAULT_ID_TEMPLATE
    name: str = "bootstrap-token-%s"
    label: str = "webdevops.kubernetes.io/bootstraptoken-managed"
    namespace: str = "kube-system"
    type: str = "bootstrap.kubernetes.io/token"
    usage_bootstrap_authentication: str = "true"
    usage_bootstrap_signing: str = "true"
    auth_extra_groups: str = "system:bootstrappers:worker,system:bootstrappers:ingress"
    expiration: Optional[timedelta] = timedelta(hours=8760)
    token_length: int = DEFAULT_TOKEN_LENGTH
    token_runes: str = DEFAULT_TOKEN_RUNES

    def __post_init__(self):
        # Env overrides
        self.id_template = os.getenv("BOOTSTRAPTOKEN_ID_TEMPLATE", self.id_template)
        self.name = os.getenv("BOOTSTRAPTOKEN_NAME", self.name)
        self.label = os.getenv("BOOTSTRAPTOKEN_LABEL", self.label)
        self.namespace = os.getenv("BOOTSTRAPTOKEN_NAMESPACE", self.namespace)
        self.type = os.getenv("BOOTSTRAPTOKEN_TYPE", self.type)
        self.usage_bootstrap_authentication = os.getenv(
            "BOOTSTRAPTOKEN_USAGE_BOOTSTRAP_AUTHENTICATION",
            _as_flag(self.usage_bootstrap_authentication),
        )
        self.usage_bootstrap_signing = os.getenv(
            "BOOTSTRAPTOKEN_USAGE_BOOTSTRAP_SIGNING",
            _as_flag(self.usage_bootstrap_signing),
        )
        self.auth_extra_groups = os.getenv(
            "BOOTSTRAPTOKEN_AUTH_EXTRA_GROUPS", self.auth_extra_groups
        )
        if "BOOTSTRAPTOKEN_EXPIRATION" in os.environ:
            self.expiration = os.environ["BOOTSTRAPTOKEN_EXPIRATION"]
        self.expiration = parse_optional_duration(self.expiration)
        self.token_length = int(
            os.getenv("BOOTSTRAPTOKEN_TOKEN_LENGTH", self.token_length)
        )
        self.token_runes = os.getenv("BOOTSTRAPTOKEN_TOKEN_RUNES", self.token_runes)

    @property
    def enforce_expiration(self) -> bool:
        """Tokens must carry an expiration when one is configured."""
        return self.expiration is not None

    def resource_name(self, token_id: str) -> str:
        """Cluster secret name for a token id."""
        return self.name % token_id


@dataclass
class SyncConfig:
    """Sync loop settings."""

    time: timedelta = timedelta(hours=1)
    recreate_before: timedelta = timedelta(hours=2190)
    full: bool = False
    retry_attempts: int = 5

    def __post_init__(self):
        self.time = parse_duration(os.getenv("SYNC_TIME", self.time))
        self.recreate_before = parse_duration(
            os.getenv("SYNC_RECREATE_BEFORE", self.recreate_before)
        )
        self.full = _env_bool("SYNC_FULL", _as_bool(self.full))
        self.retry_attempts = int(os.getenv("SYNC_RETRY_ATTEMPTS", self.retry_attempts))


@dataclass
class AzureConfig:
    """Azure Key Vault settings."""

    vault_url: str = ""
    vault_name: str = ""
    secret_name: str = "kube-bootstrap-token"

    def __post_init__(self):
        self.vault_url = os.getenv("AZURE_KEYVAULT_URL", self.vault_url)
        self.vault_name = os.getenv("AZURE_KEYVAULT_NAME", self.vault_name)
        self.secret_name = os.getenv("AZURE_KEYVAULT_SECRET_NAME", self.secret_name)

        # Derived URL
        if self.vault_name and not self.vault_url:
            self.vault_url = f"https://{self.vault_name}.vault.azure.net"


@dataclass
class CloudProviderConfig:
    """Cloud provider selection."""

    provider: str = ""
    azure: AzureConfig = field(default_factory=AzureConfig)

    def __post_init__(self):
        self.provider = os.getenv("CLOUD_PROVIDER", self.provider).strip().lower()


@dataclass
class ServerConfig:
    """Health / metrics HTTP server settings."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080

    def __post_init__(self):
        bind = os.getenv("SERVER_BIND")
        if bind:
            host, _, port = bind.rpartition(":")
            self.host = host or "0.0.0.0"
            self.port = int(port)
        self.port = int(self.port)
        self.enabled = _as_bool(self.enabled)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    log_dir: str = "logs"
    json_logs: bool = True
    file_logging: bool = False

    def __post_init__(self):
        self.level = os.getenv("LOG_LEVEL", self.level).upper()
        self.log_dir = os.getenv("LOG_DIR", self.log_dir)
        self.json_logs = _env_bool("LOG_JSON", _as_bool(self.json_logs))
        self.file_logging = _as_bool(self.file_logging)


@dataclass
class Config:
    """
    Root configuration for the token manager.

    Loads from YAML file with environment variable overrides.
    """

    bootstrap_token: BootstrapTokenConfig = field(default_factory=BootstrapTokenConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    cloud_provider: CloudProviderConfig = field(default_factory=CloudProviderConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    dry_run: bool = False

    def __post_init__(self):
        self.dry_run = _env_bool("DRY_RUN", _as_bool(self.dry_run))

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        # Cloud provider
        if not self.cloud_provider.provider:
            errors.append("cloud_provider.provider is required")
        elif self.cloud_provider.provider == "azure":
            if not self.cloud_provider.azure.vault_url:
                errors.append(
                    "cloud_provider.azure.vault_url (or vault_name) is required"
                )
            if not self.cloud_provider.azure.secret_name:
                errors.append("cloud_provider.azure.secret_name is required")

        # Bootstrap token
        token = self.bootstrap_token
        if token.name.count("%s") != 1:
            errors.append("bootstrap_token.name must contain exactly one '%s'")
        if not token.label:
            errors.append("bootstrap_token.label is required")
        if not token.namespace:
            errors.append("bootstrap_token.namespace is required")
        if token.token_length < 1:
            errors.append("bootstrap_token.token_length must be >= 1")
        if not token.token_runes:
            errors.append("bootstrap_token.token_runes cannot be empty")
        if token.expiration is not None and token.expiration <= timedelta(0):
            errors.append("bootstrap_token.expiration must be positive")

        # Sync
        if self.sync.time <= timedelta(0):
            errors.append("sync.time must be positive")
        if self.sync.recreate_before < timedelta(0):
            errors.append("sync.recreate_before must not be negative")
        if self.sync.retry_attempts < 1:
            errors.append("sync.retry_attempts must be >= 1")
        if (
            token.expiration is not None
            and token.expiration <= self.sync.recreate_before
        ):
            errors.append(
                "bootstrap_token.expiration must be longer than sync.recreate_before "
                "(otherwise every new token is immediately due for renewal)"
            )

        # Server
        if not 0 < self.server.port < 65536:
            errors.append("server.port must be between 1 and 65535")

        return errors

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return len(self.validate()) == 0


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _dict_to_config(data: Dict[str, Any]) -> Config:
    """Convert dict to Config with nested dataclasses."""
    cloud_data = dict(data.get("cloud_provider") or {})
    azure_data = cloud_data.pop("azure", None) or {}

    return Config(
        bootstrap_token=BootstrapTokenConfig(**(data.get("bootstrap_token") or {})),
        sync=SyncConfig(**(data.get("sync") or {})),
        cloud_provider=CloudProviderConfig(
            azure=AzureConfig(**azure_data), **cloud_data
        ),
        server=ServerConfig(**(data.get("server") or {})),
        logging=LoggingConfig(**(data.get("logging") or {})),
        dry_run=data.get("dry_run", False),
    )


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> Config:
    """
    Load configuration from YAML file with optional overrides.

    A missing config file is not an error: all settings have defaults or
    environment variables.

    Args:
        config_path: Path to YAML config file (default: ./config.yaml)
        overrides: Dict of overrides to apply after loading

    Returns:
        Config instance

    Raises:
        yaml.YAMLError: If config file is invalid YAML
    """
    config_path = config_path or DEFAULT_CONFIG_PATH

    if config_path.exists():
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    if overrides:
        data = _deep_merge(data, overrides)

    return _dict_to_config(data)


def load_config_from_dict(data: Dict[str, Any]) -> Config:
    """
    Load configuration from a dictionary.

    Useful for testing or programmatic config.
    """
    return _dict_to_config(data)
