"""Engine error types."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gce_provisioner.core.state import ResourceState


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceKindError(EngineError):
    """Raised when a resource kind has no registered adapter."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown resource kind: {kind}")
        self.kind = kind


class ValidationError(EngineError):
    """A resource spec was rejected before any provider call."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class ProviderError(EngineError):
    """Base class for classified provider failures."""

    def __init__(self, message: str, *, attribute: str | None = None) -> None:
        super().__init__(message)
        self.attribute = attribute


class NotFoundError(ProviderError):
    """The resource does not exist at the provider."""


class TransientError(ProviderError):
    """Retryable provider failure (rate limit, unavailable, ...)."""


class PermanentError(ProviderError):
    """Non-retryable provider failure (bad request, permission denied, ...)."""


class WaitError(EngineError):
    """Base class for convergence wait failures.

    ``last_status`` is the last provider status observed before the wait
    ended, or ``None`` if no poll completed.
    """

    def __init__(self, message: str, *, last_status: str | None = None) -> None:
        super().__init__(message)
        self.last_status = last_status


class UnexpectedStatusError(WaitError):
    """The resource reported a status in neither the pending nor target set."""

    def __init__(self, status: str, *, pending: Iterable[str], target: Iterable[str]) -> None:
        super().__init__(
            f"Unexpected status {status!r} (pending: {', '.join(sorted(pending))}; "
            f"target: {', '.join(sorted(target))})",
            last_status=status,
        )
        self.status = status


class WaitTimeoutError(WaitError):
    """The resource did not reach a target status before the deadline."""

    def __init__(self, timeout: float, *, last_status: str | None = None) -> None:
        super().__init__(
            f"Timed out after {timeout:g}s waiting for target status "
            f"(last status: {last_status or 'unknown'})",
            last_status=last_status,
        )
        self.timeout = timeout


class WaitCanceledError(WaitError):
    """The wait was canceled by an external signal."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class StatePersistError(EngineError):
    """Raised when the provider changes succeeded but the state could not be saved.

    ``state`` holds the observed state that failed to persist; a later
    reconciliation with a forced refresh recovers it from the provider.
    """

    def __init__(self, resource_id: str, *, state: ResourceState, message: str) -> None:
        super().__init__(f"Failed to save state for {resource_id}: {message}")
        self.resource_id = resource_id
        self.state = state


class ReconcileError(EngineError):
    """Raised when a reconciliation fails mid-way through.

    Carries the partial state observed before the failure (already persisted
    on a best-effort basis) and the attribute being applied.  The original
    exception is chained via ``__cause__``.
    """

    def __init__(
        self,
        resource_id: str,
        *,
        attribute: str,
        state: ResourceState,
        message: str,
    ) -> None:
        super().__init__(f"Reconcile failed on {resource_id} ({attribute}): {message}")
        self.resource_id = resource_id
        self.attribute = attribute
        self.state = state
