"""Durable store for the last recorded state of each resource."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gce_provisioner.core.state import ResourceState, StateFile
from gce_provisioner.engine.lock import KeyedLocks, StateLock

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class StateStore:
    """Persist and load ``ResourceState`` records keyed by resource id.

    All records live in one JSON state file.  Reads are lock-free: the file is
    only ever replaced atomically, so a reader sees either the old or the new
    content.  Writes are serialized per id in-process and across processes via
    the state file lock.
    """

    def __init__(self, path: Path, *, lock_timeout: float | None = None) -> None:
        self._path = path
        self._lock_timeout = lock_timeout
        self._locks = KeyedLocks()

    @property
    def path(self) -> Path:
        return self._path

    def load_all(self) -> StateFile:
        return StateFile.load_or_create(self._path)

    def ids(self) -> list[str]:
        return sorted(self.load_all().resources)

    def load(self, resource_id: str, kind: str = "compute_instance") -> ResourceState:
        """Return the persisted state, or an empty state if none was recorded."""
        state = self.load_all().resources.get(resource_id)
        if state is None:
            logger.debug("No recorded state for %s", resource_id)
            return ResourceState.empty(resource_id, kind)
        return state.model_copy(deep=True)

    def save(self, resource_id: str, state: ResourceState) -> None:
        if state.id != resource_id:
            raise ValueError(f"State id mismatch: {state.id} != {resource_id}")
        with self._locks.hold(resource_id), StateLock(self._path, timeout=self._lock_timeout):
            state_file = StateFile.load_or_create(self._path)
            state_file.resources[resource_id] = state.model_copy(deep=True)
            state_file.serial += 1
            state_file.save(self._path)
        logger.debug("Saved state for %s (status=%s)", resource_id, state.status or "unknown")
