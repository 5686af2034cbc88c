"""Refresh / diff / apply / persist cycle for a single resource."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from gce_provisioner.engine.diff import compute_diff
from gce_provisioner.engine.errors import (
    EngineError,
    NotFoundError,
    ReconcileError,
    StateLockError,
    StatePersistError,
    ValidationError,
)
from gce_provisioner.engine.lock import KeyedLocks
from gce_provisioner.engine.poller import wait_for_status
from gce_provisioner.engine.types import (
    STATE_ATTRIBUTE,
    TRANSITIONS,
    InstanceState,
    ReconcileOptions,
    ReconcileResult,
    WaitSettings,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gce_provisioner.core.state import ResourceState
    from gce_provisioner.engine.adapters import ResourceAdapter
    from gce_provisioner.engine.registry import AdapterRegistry
    from gce_provisioner.engine.store import StateStore
    from gce_provisioner.engine.types import Diff, ObservedResource, ResourceSpec

logger = logging.getLogger(__name__)


class _Observation:
    """Latest provider view of the resource seen during an apply."""

    def __init__(self) -> None:
        self.latest: ObservedResource | None = None


class Reconciler:
    """Drive resources toward their declared spec.

    One reconciliation per resource id runs at a time; distinct ids may be
    reconciled concurrently.  ``cancel_event`` aborts in-flight convergence
    waits (e.g. on process shutdown).
    """

    def __init__(
        self,
        *,
        store: StateStore,
        registry: AdapterRegistry,
        options: ReconcileOptions | None = None,
        wait: WaitSettings | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._options = options or ReconcileOptions()
        self._wait = wait or WaitSettings()
        self._cancel = cancel_event or threading.Event()
        self._locks = KeyedLocks()

    @property
    def options(self) -> ReconcileOptions:
        return self._options

    def _validate(self, spec: ResourceSpec) -> ResourceAdapter:
        errors: list[str] = []
        if not spec.id:
            errors.append("Resource id is required; creation is handled upstream")
        if spec.kind not in self._registry:
            errors.append(f"Resource '{spec.id}': unknown kind '{spec.kind}'")
        if errors:
            raise ValidationError(errors)
        return self._registry.get(spec.kind)

    def _persist(self, state: ResourceState) -> None:
        try:
            self._store.save(state.id, state)
        except (OSError, StateLockError) as exc:
            raise StatePersistError(state.id, state=state, message=str(exc)) from exc

    def _actual_state(
        self, spec: ResourceSpec, adapter: ResourceAdapter, opts: ReconcileOptions
    ) -> tuple[ResourceState, bool]:
        """Return the state to diff against and whether it drifted from the store.

        A refreshed view only replaces the stored record in memory; it is
        written back by the end of a ``reconcile`` cycle, never by ``plan``.
        """
        stored = self._store.load(spec.id, spec.kind)
        if not opts.force_refresh:
            return stored, False

        logger.debug("Refreshing %s from provider", spec.id)
        observed = adapter.get(spec.id)
        live = stored.model_copy(
            update={
                "kind": spec.kind,
                "attributes": {**stored.attributes, **observed.attributes},
                "status": observed.status,
            },
            deep=True,
        )
        drifted = live != stored
        if drifted:
            logger.info(
                "Drift on %s: status %s -> %s", spec.id, stored.status or "unknown", live.status
            )
        return live, drifted

    def _diff(self, spec: ResourceSpec, actual: ResourceState, opts: ReconcileOptions) -> Diff:
        if opts.destroy:
            diff = compute_diff(spec, actual, desired_state=InstanceState.TERMINATED)
            return diff.model_copy(update={"changes": [c for c in diff.changes if c.transition]})
        return compute_diff(spec, actual, desired_state=InstanceState(spec.state))

    def plan(self, spec: ResourceSpec, options: ReconcileOptions | None = None) -> Diff:
        """Compute the diff for ``spec`` without applying it."""
        opts = options or self._options
        adapter = self._validate(spec)
        with self._locks.hold(spec.id):
            actual, _ = self._actual_state(spec, adapter, opts)
            return self._diff(spec, actual, opts)

    def reconcile(
        self, spec: ResourceSpec, options: ReconcileOptions | None = None
    ) -> ReconcileResult:
        """Converge one resource and persist the resulting state.

        Raises:
            ValidationError: ``spec`` was rejected before any provider call.
            ReconcileError: An update or transition failed; the partial state
                was persisted on a best-effort basis.
            StatePersistError: Provider changes succeeded but saving failed.
        """
        opts = options or self._options
        adapter = self._validate(spec)
        with self._locks.hold(spec.id):
            actual, drifted = self._actual_state(spec, adapter, opts)
            diff = self._diff(spec, actual, opts)
            if diff.is_empty:
                logger.info("%s is up-to-date", diff.display_name)
                if drifted:
                    self._persist(actual)
                return ReconcileResult(state=actual, diff=diff)

            logger.info("Applying %d change(s) to %s", len(diff.changes), diff.display_name)
            state = self._apply(spec, adapter, actual, diff, opts)
            self._persist(state)
            return ReconcileResult(state=state, diff=diff)

    def _apply(
        self,
        spec: ResourceSpec,
        adapter: ResourceAdapter,
        actual: ResourceState,
        diff: Diff,
        opts: ReconcileOptions,
    ) -> ResourceState:
        attrs = dict(actual.attributes)
        seen = _Observation()
        attribute = ""
        try:
            for change in diff.attribute_changes:
                attribute = change.attribute
                logger.debug("%s: %s %r -> %r", spec.id, attribute, change.old, change.new)
                adapter.update(spec.id, attribute, change.new)
                attrs[attribute] = change.new

            transition = diff.transition
            if transition is not None:
                attribute = STATE_ATTRIBUTE
                self._transition(spec.id, adapter, InstanceState(transition.new), opts, seen)
        except Exception as exc:
            partial, gone = self._partial_state(spec, adapter, actual, attrs, seen)
            if gone:
                logger.warning("%s no longer exists; state left unchanged", spec.id)
            else:
                try:
                    self._persist(partial)
                except StatePersistError as persist_exc:
                    logger.error("Could not record partial state: %s", persist_exc)
            raise ReconcileError(
                spec.id, attribute=attribute, state=partial, message=str(exc)
            ) from exc

        status = actual.status
        if seen.latest is not None:
            attrs.update(seen.latest.attributes)
            status = seen.latest.status
        return actual.model_copy(
            update={
                "kind": spec.kind,
                "attributes": attrs,
                "status": status,
                "last_applied_at": datetime.now(UTC),
            },
            deep=True,
        )

    def _transition(
        self,
        resource_id: str,
        adapter: ResourceAdapter,
        desired: InstanceState,
        opts: ReconcileOptions,
        seen: _Observation,
    ) -> None:
        transition = TRANSITIONS[desired]
        logger.info("%s: %s (waiting for %s)", resource_id, transition.action, desired.value)
        if desired is InstanceState.RUNNING:
            adapter.start(resource_id)
        else:
            adapter.stop(resource_id)

        def refresh() -> str:
            seen.latest = adapter.get(resource_id)
            return seen.latest.status

        wait = opts.wait_settings(self._wait)
        result = wait_for_status(
            refresh,
            pending=transition.pending,
            target=transition.target,
            timeout=wait.timeout,
            delay=wait.delay,
            min_timeout=wait.min_timeout,
            cancel=self._cancel,
        )
        logger.info(
            "%s reached %s after %d poll(s) (%.1fs)",
            resource_id,
            result.status,
            result.attempts,
            result.elapsed,
        )

    def _partial_state(
        self,
        spec: ResourceSpec,
        adapter: ResourceAdapter,
        actual: ResourceState,
        attrs: dict,
        seen: _Observation,
    ) -> tuple[ResourceState, bool]:
        """Best-effort state after a failed apply, and whether the resource is gone."""
        observed = seen.latest
        gone = False
        if observed is None:
            try:
                observed = adapter.get(spec.id)
            except NotFoundError:
                gone = True
            except Exception as exc:
                logger.warning("Could not observe %s after failure: %s", spec.id, exc)
        if observed is not None:
            attrs = {**attrs, **observed.attributes}
        state = actual.model_copy(
            update={
                "kind": spec.kind,
                "attributes": attrs,
                "status": actual.status if observed is None else observed.status,
            },
            deep=True,
        )
        return state, gone

    def reconcile_many(
        self,
        specs: Sequence[ResourceSpec],
        options: ReconcileOptions | None = None,
        *,
        max_workers: int = 4,
    ) -> dict[str, ReconcileResult | EngineError]:
        """Reconcile distinct resources concurrently.

        Returns a result or the raised ``EngineError`` per resource id.
        """
        ids = [s.id for s in specs]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValidationError([f"Duplicate resource id: {i}" for i in duplicates])

        outcomes: dict[str, ReconcileResult | EngineError] = {}
        if not specs:
            return outcomes
        with ThreadPoolExecutor(max_workers=min(len(specs), max_workers)) as executor:
            futures = {s.id: executor.submit(self.reconcile, s, options) for s in specs}
            for resource_id, future in futures.items():
                try:
                    outcomes[resource_id] = future.result()
                except EngineError as exc:
                    logger.error("Reconcile of %s failed: %s", resource_id, exc)
                    outcomes[resource_id] = exc
        return outcomes
