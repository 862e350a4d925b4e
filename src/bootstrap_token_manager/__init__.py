"""Kubernetes bootstrap token manager - keeps one bootstrap token in sync between cluster and cloud."""

__version__ = "1.0.0"

# Essential exports only
__all__ = ["__version__"]
