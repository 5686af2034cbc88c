"""Engine types (specs, diffs, transitions, options, results)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, model_validator

from gce_provisioner.core.state import ResourceState

STATE_ATTRIBUTE = "state"
NAME_ATTRIBUTE = "name"


class InstanceState(str, Enum):
    RUNNING = "RUNNING"
    TERMINATED = "TERMINATED"


class ResourceSpec(BaseModel):
    """Desired configuration for a single managed resource.

    ``state`` is the one transition attribute; every other attribute lives in
    ``attributes`` and is applied with a synchronous provider update.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = ""
    kind: str = "compute_instance"
    attributes: dict[str, Any] = Field(default_factory=dict)
    state: InstanceState = InstanceState.RUNNING

    @model_validator(mode="after")
    def _reserved_attributes(self) -> ResourceSpec:
        if STATE_ATTRIBUTE in self.attributes:
            raise ValueError(f"'{STATE_ATTRIBUTE}' must be set via the state field")
        return self


class AttributeChange(BaseModel):
    attribute: str
    old: Any = None
    new: Any = None
    transition: bool = False


class Diff(BaseModel):
    """Ordered attribute delta between a spec and the actual state."""

    resource_id: str
    kind: str = "compute_instance"
    changes: list[AttributeChange] = Field(default_factory=list)
    display_name: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @property
    def transition(self) -> AttributeChange | None:
        return next((c for c in self.changes if c.transition), None)

    @property
    def attribute_changes(self) -> list[AttributeChange]:
        return [c for c in self.changes if not c.transition]

    def summary(self) -> dict[str, int]:
        return {
            "attributes": len(self.attribute_changes),
            "transitions": 0 if self.transition is None else 1,
        }


@dataclass(frozen=True)
class Transition:
    """Provider action plus the status sets used to wait for it."""

    action: str
    target: frozenset[str]
    pending: frozenset[str]


START = Transition(
    action="start",
    target=frozenset({"RUNNING"}),
    pending=frozenset({"PROVISIONING", "STAGING", "TERMINATED"}),
)

STOP = Transition(
    action="stop",
    target=frozenset({"TERMINATED"}),
    pending=frozenset({"PROVISIONING", "STAGING", "RUNNING", "STOPPING"}),
)

TRANSITIONS: dict[InstanceState, Transition] = {
    InstanceState.RUNNING: START,
    InstanceState.TERMINATED: STOP,
}


class ObservedResource(NamedTuple):
    """What the provider currently reports for a resource."""

    attributes: dict[str, Any]
    status: str


class WaitSettings(BaseModel):
    """Convergence poller defaults, in seconds."""

    model_config = ConfigDict(frozen=True)

    timeout: PositiveFloat = 300.0
    delay: float = Field(default=5.0, ge=0)
    min_timeout: float = Field(default=2.0, ge=0)


class ReconcileOptions(BaseModel):
    """Per-call reconciliation options.

    Attributes:
        force_refresh: Bypass the persisted record and read the provider
        destroy: Drive the resource to ``TERMINATED`` and skip attribute updates
        timeout: Poller deadline override (seconds)
        delay: Poll interval override (seconds)
        min_timeout: Poll interval floor override (seconds)
    """

    model_config = ConfigDict(frozen=True)

    force_refresh: bool = False
    destroy: bool = False
    timeout: PositiveFloat | None = None
    delay: float | None = Field(default=None, ge=0)
    min_timeout: float | None = Field(default=None, ge=0)

    def wait_settings(self, defaults: WaitSettings) -> WaitSettings:
        return WaitSettings(
            timeout=defaults.timeout if self.timeout is None else self.timeout,
            delay=defaults.delay if self.delay is None else self.delay,
            min_timeout=defaults.min_timeout if self.min_timeout is None else self.min_timeout,
        )


class ReconcileResult(BaseModel):
    state: ResourceState
    diff: Diff
