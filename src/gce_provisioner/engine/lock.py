"""State locking: cross-process file lock and per-resource in-process locks."""

from __future__ import annotations

import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from gce_provisioner.engine.errors import StateLockError

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

_LOCK_POLL_INTERVAL = 0.05


class StateLock:
    """Exclusive lock for a local state file.

    ``timeout=None`` blocks until the lock is free; otherwise acquisition
    gives up with ``StateLockError`` after ``timeout`` seconds.
    """

    def __init__(self, state_path: Path, *, timeout: float | None = None) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._file = None

    def __enter__(self) -> StateLock:
        # Keep fd open for lifetime of the lock.
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire()
        except Exception as e:
            try:
                self._file.close()
            finally:
                self._file = None
            if isinstance(e, StateLockError):
                raise
            raise StateLockError(str(e)) from e
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            self._release()
        finally:
            self._file.close()
            self._file = None

    def _acquire(self) -> None:
        if self._file is None:
            raise StateLockError("Lock file is not open")

        if fcntl is not None:
            if self._timeout is None:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_EX)
                return
            deadline = time.monotonic() + self._timeout
            while True:
                try:
                    fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    return
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise StateLockError(
                            f"Timed out after {self._timeout:g}s waiting for {self._lock_path}"
                        ) from None
                    time.sleep(_LOCK_POLL_INTERVAL)

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            msvcrt.locking(self._file.fileno(), msvcrt.LK_LOCK, 1)
            return

        raise StateLockError("State locking is not supported on this platform")

    def _release(self) -> None:
        if self._file is None:
            return

        if fcntl is not None:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
            return


class KeyedLocks:
    """Lazily created ``threading.Lock`` per resource id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def get(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield
