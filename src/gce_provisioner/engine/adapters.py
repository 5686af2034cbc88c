"""Provider adapters: the capability set the reconciler drives.

Cross-cutting behavior is layered with explicit decorators rather than by
subclassing a concrete adapter::

    adapter = compose(
        ComputeInstanceAdapter(client, project="p", zone="z"),
        ErrorClassifyingAdapter,
        LoggingAdapter,
    )

The first wrapper is innermost, so ``LoggingAdapter`` above logs the already
classified errors.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

import requests
from google.api_core import exceptions as gexc
from google.auth import exceptions as gauth_exc
from google.cloud import compute_v1

from gce_provisioner.engine.errors import (
    EngineError,
    NotFoundError,
    PermanentError,
    TransientError,
)
from gce_provisioner.engine.types import ObservedResource

if TYPE_CHECKING:
    from collections.abc import Callable

    from gce_provisioner.engine.types import ResourceSpec

logger = logging.getLogger(__name__)


class ResourceAdapter(Protocol):
    """Operations a provider exposes for one resource kind.

    ``get`` must be cheap and safe to call repeatedly; the poller re-invokes
    it on every tick.
    """

    def get(self, resource_id: str) -> ObservedResource: ...

    def start(self, resource_id: str) -> None: ...

    def stop(self, resource_id: str) -> None: ...

    def create(self, spec: ResourceSpec) -> ObservedResource: ...

    def update(self, resource_id: str, attribute: str, value: Any) -> None: ...

    def delete(self, resource_id: str) -> None: ...


class ComputeInstanceAdapter:
    """Adapter for Compute Engine instances in a single project and zone.

    Resource ids are instance names.  ``start``/``stop`` only issue the
    operation; convergence is observed by polling ``get``.  Every other
    mutating call blocks until its zone operation completes (at most
    ``operation_timeout`` seconds) so asynchronous failures surface as
    exceptions.
    """

    def __init__(
        self,
        client: compute_v1.InstancesClient,
        *,
        project: str,
        zone: str,
        operation_timeout: float = 300.0,
    ) -> None:
        self.client = client
        self.project = project
        self.zone = zone
        self.operation_timeout = operation_timeout
        self._updaters: dict[str, Callable[[str, Any], None]] = {
            "labels": self._set_labels,
            "machine_type": self._set_machine_type,
            "tags": self._set_tags,
            "deletion_protection": self._set_deletion_protection,
        }

    def _instance(self, resource_id: str) -> compute_v1.Instance:
        return self.client.get(project=self.project, zone=self.zone, instance=resource_id)

    def _await(self, operation: Any) -> None:
        operation.result(timeout=self.operation_timeout)

    @staticmethod
    def _read_attrs(instance: compute_v1.Instance) -> dict[str, Any]:
        """Extract the attributes a spec may declare."""
        return {
            "name": instance.name,
            "machine_type": instance.machine_type.rsplit("/", 1)[-1],
            "labels": dict(instance.labels),
            "tags": list(instance.tags.items),
            "deletion_protection": bool(instance.deletion_protection),
            "description": instance.description,
        }

    def get(self, resource_id: str) -> ObservedResource:
        instance = self._instance(resource_id)
        return ObservedResource(attributes=self._read_attrs(instance), status=instance.status)

    def start(self, resource_id: str) -> None:
        self.client.start(project=self.project, zone=self.zone, instance=resource_id)

    def stop(self, resource_id: str) -> None:
        self.client.stop(project=self.project, zone=self.zone, instance=resource_id)

    def create(self, spec: ResourceSpec) -> ObservedResource:
        attrs = spec.attributes
        instance = compute_v1.Instance(
            name=spec.id,
            machine_type=f"zones/{self.zone}/machineTypes/{attrs.get('machine_type', 'e2-micro')}",
            labels=dict(attrs.get("labels", {})),
            tags=compute_v1.Tags(items=list(attrs.get("tags", []))),
            deletion_protection=bool(attrs.get("deletion_protection", False)),
            description=attrs.get("description", ""),
        )
        self._await(
            self.client.insert(project=self.project, zone=self.zone, instance_resource=instance)
        )
        return self.get(spec.id)

    def update(self, resource_id: str, attribute: str, value: Any) -> None:
        updater = self._updaters.get(attribute)
        if updater is None:
            raise PermanentError(
                f"Attribute '{attribute}' cannot be updated in place", attribute=attribute
            )
        updater(resource_id, value)

    def delete(self, resource_id: str) -> None:
        self._await(
            self.client.delete(project=self.project, zone=self.zone, instance=resource_id)
        )

    def _set_labels(self, resource_id: str, value: Any) -> None:
        current = self._instance(resource_id)
        request = compute_v1.InstancesSetLabelsRequest(
            labels=dict(value or {}), label_fingerprint=current.label_fingerprint
        )
        self._await(
            self.client.set_labels(
                project=self.project,
                zone=self.zone,
                instance=resource_id,
                instances_set_labels_request_resource=request,
            )
        )

    def _set_machine_type(self, resource_id: str, value: Any) -> None:
        request = compute_v1.InstancesSetMachineTypeRequest(
            machine_type=f"zones/{self.zone}/machineTypes/{value}"
        )
        self._await(
            self.client.set_machine_type(
                project=self.project,
                zone=self.zone,
                instance=resource_id,
                instances_set_machine_type_request_resource=request,
            )
        )

    def _set_tags(self, resource_id: str, value: Any) -> None:
        current = self._instance(resource_id)
        tags = compute_v1.Tags(items=list(value or []), fingerprint=current.tags.fingerprint)
        self._await(
            self.client.set_tags(
                project=self.project, zone=self.zone, instance=resource_id, tags_resource=tags
            )
        )

    def _set_deletion_protection(self, resource_id: str, value: Any) -> None:
        self._await(
            self.client.set_deletion_protection(
                project=self.project,
                zone=self.zone,
                resource=resource_id,
                deletion_protection=bool(value),
            )
        )


class AdapterDecorator:
    """Forwards every operation to the wrapped adapter."""

    def __init__(self, inner: ResourceAdapter) -> None:
        self.inner = inner

    def get(self, resource_id: str) -> ObservedResource:
        return self.inner.get(resource_id)

    def start(self, resource_id: str) -> None:
        self.inner.start(resource_id)

    def stop(self, resource_id: str) -> None:
        self.inner.stop(resource_id)

    def create(self, spec: ResourceSpec) -> ObservedResource:
        return self.inner.create(spec)

    def update(self, resource_id: str, attribute: str, value: Any) -> None:
        self.inner.update(resource_id, attribute, value)

    def delete(self, resource_id: str) -> None:
        self.inner.delete(resource_id)


_TRANSIENT = (
    gexc.TooManyRequests,
    gexc.ServiceUnavailable,
    gexc.InternalServerError,
    gexc.GatewayTimeout,
    gexc.DeadlineExceeded,
    gexc.RetryError,
)

# Failures below the API layer: the request never got an HTTP answer.
_TRANSPORT = (
    gauth_exc.TransportError,
    requests.ConnectionError,
    requests.Timeout,
)

_CLASSIFIED = (gexc.GoogleAPIError, gexc.RetryError, *_TRANSPORT)


def classify(exc: Exception, *, attribute: str | None = None) -> EngineError:
    """Map a client exception onto the engine's error kinds."""
    if isinstance(exc, EngineError):
        return exc
    if isinstance(exc, gexc.NotFound):
        return NotFoundError(str(exc), attribute=attribute)
    if isinstance(exc, _TRANSIENT + _TRANSPORT):
        return TransientError(str(exc), attribute=attribute)
    return PermanentError(str(exc), attribute=attribute)


class ErrorClassifyingAdapter(AdapterDecorator):
    """Re-raises provider client errors as ``NotFoundError`` / ``TransientError``
    / ``PermanentError``.

    API errors and transport failures (auth transport, connection resets,
    socket timeouts) are classified; programming errors propagate unchanged.
    """

    def _call(self, fn: Callable[[], Any], *, attribute: str | None = None) -> Any:
        try:
            return fn()
        except _CLASSIFIED as exc:
            raise classify(exc, attribute=attribute) from exc

    def get(self, resource_id: str) -> ObservedResource:
        return self._call(lambda: self.inner.get(resource_id))

    def start(self, resource_id: str) -> None:
        self._call(lambda: self.inner.start(resource_id), attribute="state")

    def stop(self, resource_id: str) -> None:
        self._call(lambda: self.inner.stop(resource_id), attribute="state")

    def create(self, spec: ResourceSpec) -> ObservedResource:
        return self._call(lambda: self.inner.create(spec))

    def update(self, resource_id: str, attribute: str, value: Any) -> None:
        self._call(lambda: self.inner.update(resource_id, attribute, value), attribute=attribute)

    def delete(self, resource_id: str) -> None:
        self._call(lambda: self.inner.delete(resource_id))


class LoggingAdapter(AdapterDecorator):
    """Debug-logs every call with its duration and outcome."""

    def _logged(self, op: str, resource_id: str, fn: Callable[[], Any]) -> Any:
        started = time.monotonic()
        try:
            result = fn()
        except Exception as exc:
            logger.debug(
                "%s %s failed after %.2fs: %s",
                op,
                resource_id,
                time.monotonic() - started,
                exc,
            )
            raise
        logger.debug("%s %s ok in %.2fs", op, resource_id, time.monotonic() - started)
        return result

    def get(self, resource_id: str) -> ObservedResource:
        return self._logged("get", resource_id, lambda: self.inner.get(resource_id))

    def start(self, resource_id: str) -> None:
        self._logged("start", resource_id, lambda: self.inner.start(resource_id))

    def stop(self, resource_id: str) -> None:
        self._logged("stop", resource_id, lambda: self.inner.stop(resource_id))

    def create(self, spec: ResourceSpec) -> ObservedResource:
        return self._logged("create", spec.id, lambda: self.inner.create(spec))

    def update(self, resource_id: str, attribute: str, value: Any) -> None:
        self._logged(
            f"update[{attribute}]",
            resource_id,
            lambda: self.inner.update(resource_id, attribute, value),
        )

    def delete(self, resource_id: str) -> None:
        self._logged("delete", resource_id, lambda: self.inner.delete(resource_id))


def compose(
    base: ResourceAdapter, *wrappers: Callable[[ResourceAdapter], ResourceAdapter]
) -> ResourceAdapter:
    """Wrap ``base`` with each wrapper in turn (first wrapper innermost)."""
    adapter = base
    for wrap in wrappers:
        adapter = wrap(adapter)
    return adapter
