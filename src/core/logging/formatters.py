"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from core.logging.context import get_log_context


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Token identity
        "token_id",
        "token_expiration",
        "resource_name",
        "namespace",
        # Cloud provider
        "provider",
        "vault_url",
        "secret_name",
        "secret_version",
        # Sync tracking
        "operation",
        "action",
        "attempt",
        "max_attempts",
        "dry_run",
        "state",
        "duration_ms",
        "tokens_found",
        "tokens_synced",
        # Errors
        "error_category",
        "error_message",
        "http_status",
        # Server
        "host",
        "port",
    ]

    # Values that must never reach a log sink
    REDACTED_FIELDS = ["token_secret", "secret_value", "full_token"]

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Inject context variables
        ctx = get_log_context()
        for key, value in ctx.items():
            if value:
                log_entry[key] = value

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        for field in self.REDACTED_FIELDS:
            if getattr(record, field, None) is not None:
                log_entry[field] = "***"

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Includes context when available.
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]

        if ctx["component"]:
            parts.append(f"[{ctx['component']}]")

        prefix = " - ".join(parts)

        token_id = getattr(record, "token_id", None)
        if token_id:
            line = f"{prefix} - [token={token_id}] {record.getMessage()}"
        else:
            line = f"{prefix} - {record.getMessage()}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
