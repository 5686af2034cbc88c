"""Reconciliation engine for managed resources."""

from gce_provisioner.engine.adapters import (
    AdapterDecorator,
    ComputeInstanceAdapter,
    ErrorClassifyingAdapter,
    LoggingAdapter,
    ResourceAdapter,
    compose,
)
from gce_provisioner.engine.diff import canonical_name, compute_diff, group_status
from gce_provisioner.engine.errors import (
    EngineError,
    NotFoundError,
    PermanentError,
    ProviderError,
    ReconcileError,
    StateLockError,
    StatePersistError,
    TransientError,
    UnexpectedStatusError,
    UnknownResourceKindError,
    ValidationError,
    WaitCanceledError,
    WaitError,
    WaitTimeoutError,
)
from gce_provisioner.engine.poller import WaitResult, wait_for_status
from gce_provisioner.engine.reconciler import Reconciler
from gce_provisioner.engine.registry import AdapterRegistry
from gce_provisioner.engine.store import StateStore
from gce_provisioner.engine.types import (
    AttributeChange,
    Diff,
    InstanceState,
    ObservedResource,
    ReconcileOptions,
    ReconcileResult,
    ResourceSpec,
    Transition,
    WaitSettings,
)

__all__ = [
    "AdapterDecorator",
    "AdapterRegistry",
    "AttributeChange",
    "ComputeInstanceAdapter",
    "Diff",
    "EngineError",
    "ErrorClassifyingAdapter",
    "InstanceState",
    "LoggingAdapter",
    "NotFoundError",
    "ObservedResource",
    "PermanentError",
    "ProviderError",
    "ReconcileError",
    "ReconcileOptions",
    "ReconcileResult",
    "Reconciler",
    "ResourceAdapter",
    "ResourceSpec",
    "StateLockError",
    "StatePersistError",
    "StateStore",
    "Transition",
    "TransientError",
    "UnexpectedStatusError",
    "UnknownResourceKindError",
    "ValidationError",
    "WaitCanceledError",
    "WaitError",
    "WaitResult",
    "WaitSettings",
    "WaitTimeoutError",
    "canonical_name",
    "compose",
    "compute_diff",
    "group_status",
    "wait_for_status",
]
