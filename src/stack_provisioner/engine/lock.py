"""Local state locking."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import IO, TYPE_CHECKING

from stack_provisioner.engine.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]


class StateLock:
    """Exclusive inter-process lock guarding a local state file.

    With ``blocking=False`` a held lock fails immediately with
    ``StateLockError`` instead of waiting for the other run to finish.
    """

    def __init__(self, state_path: Path, *, blocking: bool = True) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._blocking = blocking
        self._file: IO[str] | None = None

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
            raise StateLockError(f"Cannot lock {self._lock_path}: {e}") from e
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
            flags = fcntl.LOCK_EX if self._blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
            try:
                fcntl.flock(self._file.fileno(), flags)
            except BlockingIOError as e:
                raise StateLockError(f"State is locked by another run: {self._lock_path}") from e
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            mode = msvcrt.LK_LOCK if self._blocking else msvcrt.LK_NBLCK
            msvcrt.locking(self._file.fileno(), mode, 1)
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
