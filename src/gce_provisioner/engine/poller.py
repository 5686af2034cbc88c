"""Bounded, cancellable polling until a resource reaches a target status.

A wait starts in ``Waiting`` and ends in one of:

- converged: the status entered the target set (returns a ``WaitResult``)
- aborted: the status was in neither set, or ``refresh`` raised a
  non-transient error (raises ``UnexpectedStatusError`` / the error itself)
- timed out: the deadline passed first (raises ``WaitTimeoutError``)
- canceled: the cancel event was set (raises ``WaitCanceledError``)

Checks are spaced by a fixed interval of ``max(delay, min_timeout)``; the
first check also waits one interval so the resource is not polled
immediately after the action that started the transition.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from gce_provisioner.engine.errors import (
    TransientError,
    UnexpectedStatusError,
    WaitCanceledError,
    WaitTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Collection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaitResult:
    status: str
    attempts: int
    elapsed: float


def wait_for_status(
    refresh: Callable[[], str],
    *,
    pending: Collection[str],
    target: Collection[str],
    timeout: float,
    delay: float = 0.0,
    min_timeout: float = 0.0,
    cancel: threading.Event | None = None,
) -> WaitResult:
    """Poll ``refresh`` until it returns a status in ``target``."""
    pending_set = frozenset(pending)
    target_set = frozenset(target)
    if pending_set & target_set:
        raise ValueError(
            f"Pending and target statuses overlap: {', '.join(sorted(pending_set & target_set))}"
        )
    if timeout <= 0:
        raise ValueError("timeout must be positive")

    cancel = cancel or threading.Event()
    interval = max(delay, min_timeout)
    start = time.monotonic()
    deadline = start + timeout
    attempts = 0
    last_status: str | None = None

    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise WaitTimeoutError(timeout, last_status=last_status)
        if cancel.wait(min(interval, remaining)):
            raise WaitCanceledError("Wait canceled", last_status=last_status)

        attempts += 1
        try:
            status = refresh()
        except TransientError as exc:
            logger.debug("Transient error while polling (attempt %d): %s", attempts, exc)
            continue

        last_status = status
        if status in target_set:
            elapsed = time.monotonic() - start
            logger.debug("Reached %s after %d poll(s) in %.2fs", status, attempts, elapsed)
            return WaitResult(status=status, attempts=attempts, elapsed=elapsed)
        if status not in pending_set:
            raise UnexpectedStatusError(status, pending=pending_set, target=target_set)
        logger.debug("Still %s (attempt %d), waiting", status, attempts)
