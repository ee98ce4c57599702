"""Single-instance locking with PID lock files.

A lock file holds the PID of its owner. A lock whose PID is no longer alive
is stale and gets reclaimed; a live PID means another instance is running.
"""

import contextlib
import errno
import logging
import os
from pathlib import Path
from typing import Iterator

from filelock import FileLock

from ..__util__ import AbortError
from ..config.paths import is_safe_name
from ..config.schema import DEFAULT_LOCK_FILE, LockGranularity

logger = logging.getLogger(__name__)

ACQUIRE_ATTEMPTS = 3


class LockError(AbortError):
    """The lock file could not be created or inspected."""


class AlreadyRunningError(LockError):
    """Another live process holds the lock."""


def pid_alive(pid: int) -> bool:
    """Check if a process with given PID is still alive."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)  # Signal 0 = check existence only
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but belongs to another user
        return True


def read_pid(path: Path) -> int | None:
    """Return the PID recorded in ``path``, or None if missing or unreadable."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    try:
        return int(text.strip().splitlines()[0])
    except (ValueError, IndexError):
        return 0


class PidLock:
    """An exclusive PID lock file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._guard = FileLock(str(self.path) + ".reclaim")
        self.held = False

    def __repr__(self) -> str:
        return f"PidLock({self.path})"

    def _permission_hint(self, e: OSError) -> LockError:
        return LockError(
            f"failed to lock {self.path}: {e.strerror or e} "
            "(need write permission; try sudo or adjust permissions)"
        )

    def _create(self) -> bool:
        """Try to create the lock file; return False if it already exists.

        The PID goes into a private file first, which is then hard-linked
        into place, so the lock file never exists without its owner's PID.
        """
        tmp = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        try:
            fd = os.open(tmp, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o644)
            try:
                os.write(fd, f"{os.getpid()}\n".encode())
            finally:
                os.close(fd)
            os.link(tmp, self.path)
        except FileExistsError:
            return False
        except OSError as e:
            raise self._permission_hint(e) from e
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
        return True

    def _reclaim_stale(self) -> None:
        """Remove the lock file if its owner is gone."""
        try:
            with self._guard:
                pid = read_pid(self.path)
                if pid is None:
                    return
                if pid_alive(pid):
                    raise AlreadyRunningError("timevault is already running")
                logger.warning("Removing stale lock %s (pid %d)", self.path, pid)
                try:
                    self.path.unlink()
                except FileNotFoundError:
                    pass
        except PermissionError as e:
            raise self._permission_hint(e) from e

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            AlreadyRunningError: A live process owns the lock
            LockError: The lock could not be taken
        """
        for _ in range(ACQUIRE_ATTEMPTS):
            if self._create():
                self.held = True
                logger.debug("Acquired lock %s", self.path)
                return
            self._reclaim_stale()
        raise AlreadyRunningError("timevault is already running")

    def release(self) -> None:
        """Drop the lock if this process still owns it."""
        self.held = False
        pid = read_pid(self.path)
        if pid is None:
            return
        if pid == os.getpid() and pid_alive(pid):
            try:
                self.path.unlink()
                logger.debug("Released lock %s", self.path)
            except OSError as e:
                if e.errno != errno.ENOENT:
                    logger.error("Failed to remove lock %s: %s", self.path, e)
        else:
            logger.debug("Lock %s is owned by pid %s, leaving it", self.path, pid)

    def __enter__(self) -> "PidLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


def job_lock_path(name: str, run_lock: Path | str = DEFAULT_LOCK_FILE) -> Path:
    """Lock path for a single job, next to the run lock."""
    if not is_safe_name(name):
        raise LockError(f"job {name} name must use only letters, digits, '.', '-', '_'")
    run_lock = Path(run_lock)
    stem = run_lock.name.removesuffix(".pid")
    return run_lock.with_name(f"{stem}.{name}.pid")


class LockManager:
    """Hand out locks at the configured granularity.

    ``run_lock`` guards a whole run and ``job_lock`` a single job. Whichever
    does not apply to the granularity is a no-op, as is everything in
    dry-run mode.
    """

    def __init__(
        self,
        path: Path | str = DEFAULT_LOCK_FILE,
        granularity: LockGranularity = LockGranularity.RUN,
        dry_run: bool = False,
    ) -> None:
        self.path = Path(path)
        self.granularity = granularity
        self.dry_run = dry_run

    @contextlib.contextmanager
    def _hold(self, path: Path) -> Iterator[PidLock | None]:
        if self.dry_run:
            yield None
            return
        lock = PidLock(path)
        lock.acquire()
        try:
            yield lock
        finally:
            lock.release()

    @contextlib.contextmanager
    def run_lock(self) -> Iterator[PidLock | None]:
        if self.granularity is LockGranularity.RUN:
            with self._hold(self.path) as lock:
                yield lock
        else:
            yield None

    @contextlib.contextmanager
    def job_lock(self, name: str) -> Iterator[PidLock | None]:
        if self.granularity is LockGranularity.JOB:
            with self._hold(job_lock_path(name, self.path)) as lock:
                yield lock
        else:
            yield None

    @contextlib.contextmanager
    def exclusive(self) -> Iterator[PidLock | None]:
        """Hold the run lock regardless of granularity (used by enrolment)."""
        with self._hold(self.path) as lock:
            yield lock
