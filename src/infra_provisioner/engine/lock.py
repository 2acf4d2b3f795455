"""Run-level state locking.

One apply/destroy/refresh may write a given state file at a time. The lock is
an exclusive ``flock`` on ``<state>.lock``; acquisition is retried until
``timeout`` seconds have passed.
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

from infra_provisioner.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class StateLock:
    """Exclusive lock for a local state file."""

    def __init__(self, state_path: Path, *, timeout: float = 0.0) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._file = None

    @property
    def lock_path(self) -> Path:
        return self._lock_path

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
        logger.debug("Acquired state lock %s", self._lock_path)
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

    def _try_lock(self) -> bool:
        if self._file is None:
            raise StateLockError("Lock file is not open")

        if fcntl is not None:
            try:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return False
            return True

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            try:
                msvcrt.locking(self._file.fileno(), msvcrt.LK_NBLCK, 1)
            except OSError:
                return False
            return True

        raise StateLockError("State locking is not supported on this platform")

    def _acquire(self) -> None:
        deadline = time.monotonic() + self._timeout
        while not self._try_lock():
            if time.monotonic() >= deadline:
                raise StateLockError(
                    f"State is locked by another run ({self._lock_path}); "
                    f"gave up after {self._timeout:g}s"
                )
            time.sleep(_POLL_INTERVAL)

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
