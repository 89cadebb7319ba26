"""Advisory lock around read-modify-write cycles on the store file."""

from __future__ import annotations

import contextlib
import logging
import sys
import time
from pathlib import Path
from typing import IO, TYPE_CHECKING

from envgroups.core.errors import StoreLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
_POLL_INTERVAL = 0.05


def _try_lock(handle: IO[str]) -> bool:
    """Take the lock without blocking. Returns False if another process holds it."""
    if fcntl is not None:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    if sys.platform == "win32":  # pragma: no cover
        import msvcrt

        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    raise StoreLockError("Store locking is not supported on this platform")


def _unlock(handle: IO[str]) -> None:
    if fcntl is not None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    elif sys.platform == "win32":  # pragma: no cover
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)


class StoreLock:
    """Exclusive lock on ``<store>.lock``, held for one store operation.

    Polls until *timeout* seconds have passed, then raises StoreLockError so a
    stuck process cannot hang every other envgroups command.
    """

    def __init__(self, store_path: Path, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._lock_path = Path(str(store_path) + ".lock")
        self._timeout = timeout
        self._handle: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._lock_path

    def __enter__(self) -> StoreLock:
        try:
            self._lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = self._lock_path.open("a+", encoding="utf-8")
        except OSError as exc:
            raise StoreLockError(f"Cannot open lock file {self._lock_path}: {exc}") from exc

        deadline = time.monotonic() + self._timeout
        try:
            while not _try_lock(handle):
                if time.monotonic() >= deadline:
                    raise StoreLockError(
                        f"Timed out after {self._timeout:g}s waiting for {self._lock_path}"
                    )
                time.sleep(_POLL_INTERVAL)
        except BaseException:
            handle.close()
            raise

        self._handle = handle
        logger.debug("Acquired %s", self._lock_path)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        with contextlib.closing(handle):
            _unlock(handle)
