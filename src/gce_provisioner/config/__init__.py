"""YAML configuration loading and convenience plan/reconcile API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from gce_provisioner.config.loader import ConfigError, load_config
from gce_provisioner.config.registry import default_registry
from gce_provisioner.config.schema import Config, ProviderConfig
from gce_provisioner.core.provider import GCPProvider
from gce_provisioner.engine.reconciler import Reconciler
from gce_provisioner.engine.store import StateStore

if TYPE_CHECKING:
    import threading
    from pathlib import Path

    from gce_provisioner.core.state import StateFile
    from gce_provisioner.engine.errors import EngineError
    from gce_provisioner.engine.types import Diff, ReconcileOptions, ReconcileResult

__all__ = [
    "Config",
    "ConfigError",
    "ProviderConfig",
    "load",
    "load_config",
    "plan",
    "reconcile",
    "reconciler_from_config",
    "show_state",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def reconciler_from_config(
    config: Config,
    *,
    options: ReconcileOptions | None = None,
    cancel_event: threading.Event | None = None,
) -> Reconciler:
    """Build a ``Reconciler`` from a ``Config`` instance."""
    provider = GCPProvider(
        project=config.provider.project,
        zone=config.provider.zone,
        credentials_file=config.provider.credentials_file,
        operation_timeout=config.wait.timeout,
    )
    return Reconciler(
        store=StateStore(config.state_path),
        registry=default_registry(provider),
        options=options,
        wait=config.wait,
        cancel_event=cancel_event,
    )


def plan(config: Config, options: ReconcileOptions | None = None) -> list[Diff]:
    """Compute the diff for every declared instance."""
    reconciler = reconciler_from_config(config, options=options)
    return [reconciler.plan(spec) for spec in config.instances]


def reconcile(
    config: Config,
    options: ReconcileOptions | None = None,
    *,
    cancel_event: threading.Event | None = None,
) -> dict[str, ReconcileResult | EngineError]:
    """Reconcile every declared instance; returns an outcome per instance id."""
    reconciler = reconciler_from_config(config, options=options, cancel_event=cancel_event)
    return reconciler.reconcile_many(config.instances)


def show_state(config: Config) -> StateFile:
    """Return the persisted state file contents."""
    return StateStore(config.state_path).load_all()
