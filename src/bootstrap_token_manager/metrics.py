"""
Prometheus metrics for bootstrap token monitoring.

Provides instrumentation for:
- Tokens present in the cluster and their expiration
- Sync cycle status, last success time and count
- Sync errors by category
- Sync cycle duration

Metrics live in one CollectorRegistry created at startup and handed to
the manager and the health server.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from bootstrap_token_manager.token import BootstrapToken


class TokenMetrics:
    """
    Metric collectors bound to a registry.

    Example:
        metrics = TokenMetrics()
        metrics.record_token(token)
        metrics.record_sync_success(duration=0.4)
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        # Token metrics
        self.token_info = Gauge(
            "bootstraptoken_token_info",
            "Bootstrap token info",
            ["tokenID"],
            registry=self.registry,
        )
        self.token_expiration = Gauge(
            "bootstraptoken_token_expiration",
            "Bootstrap token expiration time (unix seconds, 0 if not set)",
            ["tokenID"],
            registry=self.registry,
        )

        # Sync metrics
        self.sync_status = Gauge(
            "bootstraptoken_sync_status",
            "Bootstrap token sync status (1=success, 0=failed)",
            registry=self.registry,
        )
        self.sync_time = Gauge(
            "bootstraptoken_sync_time",
            "Last successful bootstrap token sync time (unix seconds)",
            registry=self.registry,
        )
        self.sync_count = Counter(
            "bootstraptoken_sync_count",
            "Number of successful bootstrap token syncs",
            registry=self.registry,
        )
        self.sync_errors = Counter(
            "bootstraptoken_sync_errors",
            "Number of failed bootstrap token syncs by error category",
            ["error_category"],
            registry=self.registry,
        )
        self.sync_duration_seconds = Histogram(
            "bootstraptoken_sync_duration_seconds",
            "Time spent in one sync cycle",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self.registry,
        )

    def record_token(self, token: BootstrapToken) -> None:
        """Record a token present in the cluster."""
        self.token_info.labels(tokenID=token.id).set(1)
        self.token_expiration.labels(tokenID=token.id).set(
            token.expiration_timestamp() or 0
        )

    def record_sync_success(self, duration: Optional[float] = None) -> None:
        self.sync_status.set(1)
        self.sync_count.inc()
        self.sync_time.set_to_current_time()
        if duration is not None:
            self.sync_duration_seconds.observe(duration)

    def record_sync_failure(
        self, error_category: str, duration: Optional[float] = None
    ) -> None:
        self.sync_status.set(0)
        self.sync_errors.labels(error_category=error_category).inc()
        if duration is not None:
            self.sync_duration_seconds.observe(duration)
