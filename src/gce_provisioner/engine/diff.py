"""Compute the attribute delta between a desired spec and the actual state."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from gce_provisioner.engine.types import (
    NAME_ATTRIBUTE,
    STATE_ATTRIBUTE,
    AttributeChange,
    Diff,
    InstanceState,
)

if TYPE_CHECKING:
    from gce_provisioner.core.state import ResourceState
    from gce_provisioner.engine.types import ResourceSpec

logger = logging.getLogger(__name__)

# Provider statuses where the machine is up in some form.
RUNNING_STATUSES: frozenset[str] = frozenset({"PROVISIONING", "STAGING", "RUNNING"})


def group_status(status: str) -> InstanceState | None:
    """Collapse a raw provider status into the two-valued desired-state enum.

    An empty status means the resource was never observed and groups to
    ``None`` so that a first run always produces a ``state`` change.
    """
    if not status:
        return None
    if status.upper() in RUNNING_STATUSES:
        return InstanceState.RUNNING
    return InstanceState.TERMINATED


def canonical_name(old: Any, new: Any) -> Any:
    """The name to report for a resource whose name may be changing."""
    if old != new:
        return new
    return old


def compute_diff(
    spec: ResourceSpec,
    actual: ResourceState,
    *,
    desired_state: InstanceState | None = None,
) -> Diff:
    """Return the ordered changes needed to move ``actual`` to ``spec``.

    Plain attributes come first, in spec order, followed by the ``state``
    transition entry if the grouped actual status differs from the desired
    state.  ``desired_state`` overrides ``spec.state``.
    """
    changes = [
        AttributeChange(attribute=k, old=actual.attributes.get(k), new=v)
        for k, v in spec.attributes.items()
        if actual.attributes.get(k) != v
    ]

    wanted = desired_state or spec.state
    current = group_status(actual.status)
    if current != wanted:
        changes.append(
            AttributeChange(
                attribute=STATE_ATTRIBUTE,
                old=None if current is None else current.value,
                new=wanted.value,
                transition=True,
            )
        )

    name = canonical_name(
        actual.attributes.get(NAME_ATTRIBUTE),
        spec.attributes.get(NAME_ATTRIBUTE, actual.attributes.get(NAME_ATTRIBUTE)),
    )
    diff = Diff(
        resource_id=spec.id, kind=spec.kind, changes=changes, display_name=name or spec.id
    )
    logger.debug("Diff for %s: %d change(s)", spec.id, len(diff.changes))
    return diff
