"""Default adapter registry factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gce_provisioner.engine.adapters import ErrorClassifyingAdapter, LoggingAdapter, compose
from gce_provisioner.engine.registry import AdapterRegistry

if TYPE_CHECKING:
    from gce_provisioner.core.provider import GCPProvider


def default_registry(provider: GCPProvider) -> AdapterRegistry:
    """Create a fresh registry with the built-in compute instance adapter."""
    registry = AdapterRegistry()
    registry.register(
        "compute_instance",
        compose(provider.instances, ErrorClassifyingAdapter, LoggingAdapter),
    )
    return registry
