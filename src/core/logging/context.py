"""Log context variables injected into every record by the formatters."""

from contextvars import ContextVar
from typing import Dict, Optional

_component: ContextVar[Optional[str]] = ContextVar("component", default=None)
_cycle_id: ContextVar[Optional[str]] = ContextVar("cycle_id", default=None)
_instance_id: ContextVar[Optional[str]] = ContextVar("instance_id", default=None)

_VARS = {
    "component": _component,
    "cycle_id": _cycle_id,
    "instance_id": _instance_id,
}


def set_log_context(
    component: Optional[str] = None,
    cycle_id: Optional[str] = None,
    instance_id: Optional[str] = None,
) -> None:
    """
    Set log context variables.

    Only non-None arguments are applied; existing values are kept.
    """
    if component is not None:
        _component.set(component)
    if cycle_id is not None:
        _cycle_id.set(cycle_id)
    if instance_id is not None:
        _instance_id.set(instance_id)


def get_log_context() -> Dict[str, Optional[str]]:
    """Get current log context as a dict."""
    return {name: var.get() for name, var in _VARS.items()}


def clear_log_context() -> None:
    """Reset all log context variables."""
    for var in _VARS.values():
        var.set(None)


def clear_cycle_id() -> None:
    """Reset the cycle id after a sync cycle completes."""
    _cycle_id.set(None)
