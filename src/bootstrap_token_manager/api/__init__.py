"""HTTP endpoints: health, readiness and metrics."""

from bootstrap_token_manager.api.health import HealthServer, HealthState

__all__ = ["HealthServer", "HealthState"]
