from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import pydantic
import pytest

from gce_provisioner.core.state import ResourceState, StateFile
from gce_provisioner.engine.errors import (
    NotFoundError,
    PermanentError,
    ReconcileError,
    StatePersistError,
    UnexpectedStatusError,
    ValidationError,
    WaitCanceledError,
    WaitTimeoutError,
)
from gce_provisioner.engine.reconciler import Reconciler
from gce_provisioner.engine.registry import AdapterRegistry
from gce_provisioner.engine.store import StateStore
from gce_provisioner.engine.types import (
    InstanceState,
    ObservedResource,
    ReconcileOptions,
    ResourceSpec,
    WaitSettings,
)


class FakeInstances:
    """In-memory instance adapter.

    ``start``/``stop`` queue the statuses later ``get`` calls walk through,
    so convergence is observed by polling just like against the real API.
    """

    def __init__(self) -> None:
        self.instances: dict[str, dict[str, Any]] = {}
        self.queued: dict[str, list[str]] = {}
        self.calls: list[tuple[str, ...]] = []
        self.start_statuses = ["STAGING", "RUNNING"]
        self.stop_statuses = ["STOPPING", "TERMINATED"]
        self.fail_update: dict[str, Exception] = {}

    def add(self, resource_id: str, status: str = "TERMINATED", **attributes: Any) -> None:
        self.instances[resource_id] = {
            "status": status,
            "attributes": {"name": resource_id, **attributes},
        }

    def _instance(self, resource_id: str) -> dict[str, Any]:
        try:
            return self.instances[resource_id]
        except KeyError:
            raise NotFoundError(f"Instance {resource_id} not found") from None

    def get(self, resource_id: str) -> ObservedResource:
        instance = self._instance(resource_id)
        queue = self.queued.get(resource_id)
        if queue:
            instance["status"] = queue.pop(0)
        return ObservedResource(dict(instance["attributes"]), instance["status"])

    def start(self, resource_id: str) -> None:
        self._instance(resource_id)
        self.calls.append(("start", resource_id))
        self.queued[resource_id] = list(self.start_statuses)

    def stop(self, resource_id: str) -> None:
        self._instance(resource_id)
        self.calls.append(("stop", resource_id))
        self.queued[resource_id] = list(self.stop_statuses)

    def create(self, spec: ResourceSpec) -> ObservedResource:
        self.calls.append(("create", spec.id))
        self.add(spec.id, status="RUNNING", **spec.attributes)
        return self.get(spec.id)

    def update(self, resource_id: str, attribute: str, value: Any) -> None:
        instance = self._instance(resource_id)
        self.calls.append(("update", resource_id, attribute))
        if attribute in self.fail_update:
            raise self.fail_update[attribute]
        instance["attributes"][attribute] = value

    def delete(self, resource_id: str) -> None:
        self.calls.append(("delete", resource_id))
        self.instances.pop(resource_id, None)


@pytest.fixture
def fake() -> FakeInstances:
    return FakeInstances()


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "state.json")


@pytest.fixture
def reconciler(fake: FakeInstances, store: StateStore) -> Reconciler:
    registry = AdapterRegistry()
    registry.register("compute_instance", fake)
    return Reconciler(
        store=store,
        registry=registry,
        wait=WaitSettings(timeout=1.0, delay=0.0, min_timeout=0.0),
    )


def _spec(resource_id: str = "web-1", state: InstanceState = InstanceState.RUNNING, **attrs: Any):
    return ResourceSpec(id=resource_id, attributes=attrs, state=state)


class TestFirstRun:
    def test_applies_attributes_then_transition(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", machine_type="e2-micro")

        result = reconciler.reconcile(_spec(machine_type="e2-small"))

        assert fake.calls == [("update", "web-1", "machine_type"), ("start", "web-1")]
        assert [c.attribute for c in result.diff.changes] == ["machine_type", "state"]
        assert result.state.status == "RUNNING"
        assert result.state.attributes["machine_type"] == "e2-small"
        assert result.state.last_applied_at is not None
        assert store.load("web-1") == result.state

    def test_second_run_is_a_no_op(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", machine_type="e2-micro")
        spec = _spec(machine_type="e2-small")
        first = reconciler.reconcile(spec)
        serial = StateFile.load(store.path).serial
        fake.calls.clear()

        result = reconciler.reconcile(spec)

        assert result.diff.is_empty
        assert result.state == first.state
        assert fake.calls == []
        assert StateFile.load(store.path).serial == serial


class TestTransitions:
    def test_state_only_change_stops_without_updates(
        self, reconciler: Reconciler, fake: FakeInstances
    ) -> None:
        fake.add("web-1", status="RUNNING")
        reconciler.reconcile(_spec())
        fake.calls.clear()

        result = reconciler.reconcile(_spec(state=InstanceState.TERMINATED))

        assert fake.calls == [("stop", "web-1")]
        assert result.state.status == "TERMINATED"

    def test_destroy_skips_attribute_updates(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", labels={"env": "dev"})
        reconciler.reconcile(_spec(labels={"env": "dev"}))
        fake.calls.clear()

        result = reconciler.reconcile(
            _spec(labels={"env": "prod"}), ReconcileOptions(destroy=True)
        )

        assert fake.calls == [("stop", "web-1")]
        assert [c.attribute for c in result.diff.changes] == ["state"]
        assert store.load("web-1").attributes["labels"] == {"env": "dev"}
        assert store.load("web-1").status == "TERMINATED"

    def test_start_from_transitional_status_is_no_op(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        store.save("web-1", ResourceState(id="web-1", status="STAGING"))

        result = reconciler.reconcile(_spec())

        assert result.diff.is_empty
        assert fake.calls == []


class TestRefresh:
    def test_drift_ignored_without_refresh(
        self, reconciler: Reconciler, fake: FakeInstances
    ) -> None:
        fake.add("web-1", status="TERMINATED")
        reconciler.reconcile(_spec())
        fake.instances["web-1"]["status"] = "TERMINATED"
        fake.calls.clear()

        assert reconciler.reconcile(_spec()).diff.is_empty
        assert fake.calls == []

    def test_force_refresh_detects_and_fixes_drift(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", status="TERMINATED")
        reconciler.reconcile(_spec())
        fake.instances["web-1"]["status"] = "TERMINATED"
        fake.calls.clear()

        result = reconciler.reconcile(_spec(), ReconcileOptions(force_refresh=True))

        assert fake.calls == [("start", "web-1")]
        assert result.diff.transition is not None
        assert result.diff.transition.old == "TERMINATED"
        assert store.load("web-1").status == "RUNNING"

    def test_plan_with_refresh_does_not_write_state(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", status="TERMINATED", machine_type="e2-micro")

        diff = reconciler.plan(
            _spec(machine_type="e2-small"), ReconcileOptions(force_refresh=True)
        )

        assert [(c.attribute, c.old, c.new) for c in diff.changes] == [
            ("machine_type", "e2-micro", "e2-small"),
            ("state", "TERMINATED", "RUNNING"),
        ]
        assert fake.calls == []
        assert not store.path.exists()
        assert store.load("web-1").status == ""

    def test_plan_with_refresh_keeps_recorded_state(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", status="TERMINATED")
        reconciler.reconcile(_spec())
        serial = StateFile.load(store.path).serial
        fake.instances["web-1"]["status"] = "TERMINATED"

        diff = reconciler.plan(_spec(), ReconcileOptions(force_refresh=True))

        assert diff.transition is not None
        assert diff.transition.old == "TERMINATED"
        assert store.load("web-1").status == "RUNNING"
        assert StateFile.load(store.path).serial == serial

    def test_refresh_with_no_changes_records_drift(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", status="RUNNING", labels={"env": "dev"})
        store.save("web-1", ResourceState(id="web-1", status="RUNNING"))

        result = reconciler.reconcile(
            _spec(labels={"env": "dev"}), ReconcileOptions(force_refresh=True)
        )

        assert result.diff.is_empty
        assert fake.calls == []
        assert store.load("web-1").attributes["labels"] == {"env": "dev"}

    def test_refresh_of_missing_instance_raises_not_found(self, reconciler: Reconciler) -> None:
        with pytest.raises(NotFoundError):
            reconciler.reconcile(_spec("ghost"), ReconcileOptions(force_refresh=True))


class TestValidation:
    def test_empty_id_rejected_before_provider_calls(
        self, reconciler: Reconciler, fake: FakeInstances
    ) -> None:
        with pytest.raises(ValidationError, match="id is required"):
            reconciler.reconcile(ResourceSpec())
        assert fake.calls == []

    def test_unknown_kind_rejected(self, reconciler: Reconciler) -> None:
        with pytest.raises(ValidationError, match="unknown kind 'sql_instance'"):
            reconciler.reconcile(ResourceSpec(id="db-1", kind="sql_instance"))

    def test_spec_rejects_unknown_state(self) -> None:
        with pytest.raises(pydantic.ValidationError):
            ResourceSpec(id="web-1", state="SUSPENDED")  # type: ignore[arg-type]

    def test_spec_rejects_state_in_attributes(self) -> None:
        with pytest.raises(pydantic.ValidationError, match="via the state field"):
            ResourceSpec(id="web-1", attributes={"state": "RUNNING"})


class TestFailures:
    def test_update_failure_persists_partial_state(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", status="RUNNING", labels={}, machine_type="e2-micro")
        fake.fail_update["machine_type"] = PermanentError(
            "machine type change requires a stopped instance", attribute="machine_type"
        )

        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile(_spec(labels={"env": "prod"}, machine_type="e2-small"))

        err = exc_info.value
        assert err.attribute == "machine_type"
        assert isinstance(err.__cause__, PermanentError)
        assert ("start", "web-1") not in fake.calls

        saved = store.load("web-1")
        assert saved == err.state
        assert saved.attributes["labels"] == {"env": "prod"}
        assert saved.attributes["machine_type"] == "e2-micro"
        assert saved.status == "RUNNING"

    def test_unclassified_error_is_wrapped_and_partial_state_saved(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", status="RUNNING", labels={}, tags=[])
        fake.fail_update["tags"] = RuntimeError("connection pool is closed")

        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile(_spec(labels={"env": "prod"}, tags=["web"]))

        err = exc_info.value
        assert err.attribute == "tags"
        assert isinstance(err.__cause__, RuntimeError)
        saved = store.load("web-1")
        assert saved == err.state
        assert saved.attributes["labels"] == {"env": "prod"}
        assert saved.attributes["tags"] == []

    def test_missing_instance_leaves_no_record(
        self, reconciler: Reconciler, store: StateStore
    ) -> None:
        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile(_spec("ghost"))

        assert isinstance(exc_info.value.__cause__, NotFoundError)
        assert exc_info.value.attribute == "state"
        assert store.ids() == []
        assert not store.path.exists()

    def test_timeout_surfaces_with_last_status(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", status="TERMINATED")
        fake.start_statuses = ["STAGING"]

        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile(_spec(), ReconcileOptions(timeout=0.05))

        cause = exc_info.value.__cause__
        assert isinstance(cause, WaitTimeoutError)
        assert cause.last_status == "STAGING"
        assert exc_info.value.attribute == "state"
        assert store.load("web-1").status == "STAGING"

    def test_unexpected_status_aborts(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1", status="TERMINATED")
        fake.start_statuses = ["SUSPENDED"]

        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile(_spec())

        assert isinstance(exc_info.value.__cause__, UnexpectedStatusError)
        assert store.load("web-1").status == "SUSPENDED"

    def test_cancel_aborts_wait(self, fake: FakeInstances, store: StateStore) -> None:
        registry = AdapterRegistry()
        registry.register("compute_instance", fake)
        cancel = threading.Event()
        cancel.set()
        reconciler = Reconciler(
            store=store,
            registry=registry,
            wait=WaitSettings(timeout=30.0, delay=0.0, min_timeout=0.0),
            cancel_event=cancel,
        )
        fake.add("web-1", status="TERMINATED")

        with pytest.raises(ReconcileError) as exc_info:
            reconciler.reconcile(_spec())

        assert isinstance(exc_info.value.__cause__, WaitCanceledError)

    def test_save_failure_recovered_by_refresh(
        self,
        reconciler: Reconciler,
        fake: FakeInstances,
        store: StateStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        fake.add("web-1", status="TERMINATED")

        def _fail(resource_id: str, state: ResourceState) -> None:
            raise OSError("read-only file system")

        monkeypatch.setattr(store, "save", _fail)
        with pytest.raises(StatePersistError) as exc_info:
            reconciler.reconcile(_spec())
        assert exc_info.value.state.status == "RUNNING"
        monkeypatch.undo()

        fake.calls.clear()
        result = reconciler.reconcile(_spec(), ReconcileOptions(force_refresh=True))

        assert result.diff.is_empty
        assert fake.calls == []
        assert store.load("web-1").status == "RUNNING"


class BlockingStartInstances(FakeInstances):
    """Holds the first ``start`` until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def start(self, resource_id: str) -> None:
        super().start(resource_id)
        if not self.entered.is_set():
            self.entered.set()
            assert self.release.wait(5.0)


class TestSerialization:
    def test_same_id_reconciles_run_one_at_a_time(self, store: StateStore) -> None:
        fake = BlockingStartInstances()
        fake.add("web-1", status="TERMINATED")
        registry = AdapterRegistry()
        registry.register("compute_instance", fake)
        reconciler = Reconciler(
            store=store,
            registry=registry,
            wait=WaitSettings(timeout=5.0, delay=0.0, min_timeout=0.0),
        )
        results: dict[str, Any] = {}

        def run(name: str) -> None:
            results[name] = reconciler.reconcile(_spec())

        first = threading.Thread(target=run, args=("first",))
        first.start()
        assert fake.entered.wait(5.0)

        second = threading.Thread(target=run, args=("second",))
        second.start()
        second.join(0.2)
        assert second.is_alive()
        assert fake.calls == [("start", "web-1")]

        fake.release.set()
        first.join(5.0)
        second.join(5.0)

        assert fake.calls == [("start", "web-1")]
        assert not results["first"].diff.is_empty
        assert results["second"].diff.is_empty
        assert results["second"].state.status == "RUNNING"

    def test_distinct_ids_are_not_serialized(self, store: StateStore) -> None:
        fake = BlockingStartInstances()
        fake.add("web-1", status="TERMINATED")
        fake.add("web-2", status="TERMINATED")
        registry = AdapterRegistry()
        registry.register("compute_instance", fake)
        reconciler = Reconciler(
            store=store,
            registry=registry,
            wait=WaitSettings(timeout=5.0, delay=0.0, min_timeout=0.0),
        )

        blocked = threading.Thread(target=reconciler.reconcile, args=(_spec("web-1"),))
        blocked.start()
        assert fake.entered.wait(5.0)

        result = reconciler.reconcile(_spec("web-2"))
        fake.release.set()
        blocked.join(5.0)

        assert result.state.status == "RUNNING"
        assert ("start", "web-2") in fake.calls


class TestReconcileMany:
    def test_reports_each_outcome(
        self, reconciler: Reconciler, fake: FakeInstances, store: StateStore
    ) -> None:
        fake.add("web-1")
        fake.add("web-2")

        outcomes = reconciler.reconcile_many([_spec("web-1"), _spec("web-2"), _spec("ghost")])

        assert outcomes["web-1"].state.status == "RUNNING"  # type: ignore[union-attr]
        assert outcomes["web-2"].state.status == "RUNNING"  # type: ignore[union-attr]
        ghost = outcomes["ghost"]
        assert isinstance(ghost, ReconcileError)
        assert isinstance(ghost.__cause__, NotFoundError)
        assert store.ids() == ["web-1", "web-2"]

    def test_duplicate_ids_rejected(self, reconciler: Reconciler) -> None:
        with pytest.raises(ValidationError, match="Duplicate resource id: web-1"):
            reconciler.reconcile_many([_spec("web-1"), _spec("web-1")])

    def test_empty_input(self, reconciler: Reconciler) -> None:
        assert reconciler.reconcile_many([]) == {}
