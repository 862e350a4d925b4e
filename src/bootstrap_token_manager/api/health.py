"""
Health check HTTP endpoint.

Provides /healthz, /readyz, /metrics and /status endpoints for
monitoring and orchestration.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from core.logging.utilities import log_with_context
from core.security import sanitize_error_message

logger = logging.getLogger(__name__)

# Consecutive failed cycles before the state turns unhealthy
UNHEALTHY_AFTER_ERRORS = 3


class HealthState:
    """
    Thread-safe health state container.

    Updated by the token manager, read by the health endpoints.
    """

    def __init__(self, dry_run: bool = False):
        self._lock = threading.RLock()
        self._started_at = datetime.now(timezone.utc)
        self._dry_run = dry_run
        self._healthy = True
        self._status = "starting"
        self._current_state = "idle"
        self._current_cycle_id: Optional[str] = None
        self._last_successful_sync: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._token_id: Optional[str] = None
        self._token_expiration: Optional[datetime] = None
        self._cycle_count = 0
        self._error_count = 0
        self._consecutive_errors = 0

    def set_state(self, state: str, cycle_id: Optional[str] = None) -> None:
        """Record the sync state machine position."""
        with self._lock:
            self._current_state = state
            if cycle_id:
                self._current_cycle_id = cycle_id

    def set_idle(self) -> None:
        """Mark manager as idle between cycles."""
        with self._lock:
            self._current_state = "idle"
            self._current_cycle_id = None

    def set_token(self, token_id: str, expiration: Optional[datetime]) -> None:
        with self._lock:
            self._token_id = token_id
            self._token_expiration = expiration

    def set_cycle_success(self) -> None:
        """Record successful cycle completion."""
        with self._lock:
            self._last_successful_sync = datetime.now(timezone.utc)
            self._cycle_count += 1
            self._healthy = True
            self._status = "healthy"
            self._last_error = None
            self._consecutive_errors = 0

    def set_cycle_error(self, error: str) -> None:
        """Record cycle error."""
        with self._lock:
            self._cycle_count += 1
            self._error_count += 1
            self._consecutive_errors += 1
            self._last_error = sanitize_error_message(error)
            # Degraded after 1 error, unhealthy after 3 consecutive
            if self._consecutive_errors >= UNHEALTHY_AFTER_ERRORS:
                self._healthy = False
                self._status = "unhealthy"
            else:
                self._status = "degraded"

    def set_shutting_down(self) -> None:
        """Mark manager as shutting down."""
        with self._lock:
            self._status = "draining"
            self._healthy = False
            self._current_state = "shutting_down"

    @property
    def is_healthy(self) -> bool:
        with self._lock:
            return self._healthy

    @property
    def is_ready(self) -> bool:
        """Ready once a cycle has completed and the state is not unhealthy."""
        with self._lock:
            return self._cycle_count > 0 and self._status not in (
                "unhealthy",
                "draining",
            )

    @property
    def current_state(self) -> str:
        with self._lock:
            return self._current_state

    def get_detailed_status(self) -> Dict[str, Any]:
        """Get detailed status for debugging."""
        with self._lock:
            uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()
            return {
                "healthy": self._healthy,
                "ready": self.is_ready,
                "status": self._status,
                "current_state": self._current_state,
                "current_cycle_id": self._current_cycle_id,
                "dry_run": self._dry_run,
                "uptime_seconds": uptime,
                "token": {
                    "id": self._token_id,
                    "expiration": (
                        self._token_expiration.isoformat()
                        if self._token_expiration
                        else None
                    ),
                },
                "cycle_count": self._cycle_count,
                "error_count": self._error_count,
                "consecutive_errors": self._consecutive_errors,
                "last_successful_sync": (
                    self._last_successful_sync.isoformat()
                    if self._last_successful_sync
                    else None
                ),
                "last_error": self._last_error,
            }


class _HealthHTTPServer(HTTPServer):
    """HTTPServer carrying the state and registry the handler reads."""

    def __init__(
        self,
        address,
        handler,
        health_state: HealthState,
        registry: CollectorRegistry,
    ):
        self.health_state = health_state
        self.registry = registry
        super().__init__(address, handler)


class HealthRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for health endpoints."""

    server: _HealthHTTPServer

    # Suppress default logging
    def log_message(self, format: str, *args: Any) -> None:
        logger.debug(f"Health endpoint: {args[0] if args else ''}")

    def _send_response(self, status_code: int, body: bytes, content_type: str) -> None:
        self.send_response(status_code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_text_response(self, status_code: int, text: str) -> None:
        self._send_response(status_code, text.encode(), "text/plain; charset=utf-8")

    def _send_json_response(self, status_code: int, data: Dict[str, Any]) -> None:
        self._send_response(
            status_code, json.dumps(data, default=str).encode(), "application/json"
        )

    def do_GET(self) -> None:
        """Handle GET requests."""
        path = self.path.split("?", 1)[0]
        if path == "/healthz":
            self._send_text_response(200, "Ok")
        elif path == "/readyz":
            self._handle_ready()
        elif path == "/metrics":
            self._handle_metrics()
        elif path == "/status":
            self._send_json_response(200, self.server.health_state.get_detailed_status())
        else:
            self.send_error(404, "Not Found")

    def _handle_ready(self) -> None:
        """
        Readiness check endpoint.

        Returns 200 once the first cycle completed, 503 before that or
        while unhealthy.
        """
        if self.server.health_state.is_ready:
            self._send_text_response(200, "Ok")
        else:
            self._send_text_response(503, "Not ready")

    def _handle_metrics(self) -> None:
        """Prometheus text exposition of the metrics registry."""
        output = generate_latest(self.server.registry)
        self._send_response(200, output, CONTENT_TYPE_LATEST)


class HealthServer:
    """
    Health check HTTP server.

    Runs in background thread, provides health endpoints.

    Endpoints:
        /healthz - Liveness check (always "Ok")
        /readyz  - Readiness check (200/503)
        /metrics - Prometheus-format metrics
        /status  - Detailed JSON status for debugging

    Usage:
        server = HealthServer("0.0.0.0", 8080, state, metrics.registry)
        server.start()
        # ... manager runs ...
        server.stop()
    """

    def __init__(
        self,
        host: str,
        port: int,
        health_state: HealthState,
        registry: CollectorRegistry,
        enabled: bool = True,
    ):
        self.host = host
        self.port = port
        self.enabled = enabled
        self.health_state = health_state
        self.registry = registry

        self._server: Optional[_HealthHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def start(self) -> None:
        """Start health server in background thread."""
        if not self.enabled:
            logger.info("Health server disabled")
            return

        if self._running:
            logger.warning("Health server already running")
            return

        try:
            self._server = _HealthHTTPServer(
                (self.host, self.port),
                HealthRequestHandler,
                health_state=self.health_state,
                registry=self.registry,
            )
        except OSError as e:
            logger.error(f"Failed to start health server: {e}")
            raise

        # Resolve ephemeral port
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="health-server", daemon=True
        )
        self._thread.start()
        self._running = True

        log_with_context(
            logger,
            logging.INFO,
            f"Health server started on {self.host}:{self.port}",
            host=self.host,
            port=self.port,
        )

    def stop(self) -> None:
        """Stop health server."""
        if not self._running:
            return

        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None

        self._running = False
        logger.info("Health server stopped")

    @property
    def is_running(self) -> bool:
        return self._running
