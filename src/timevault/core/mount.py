"""Mount lifecycle for backup media.

A job's media goes through ``Idle -> Mounted -> VerifiedWritable -> Released``.
Every mount this process makes is registered in a process-wide
``TrackedMountSet`` as soon as it is active, so a signal or interpreter exit
can always unmount it again.
Restore mounts are read-only and are handed back untracked once verified.
"""

import atexit
import logging
import os
import re
import signal
from pathlib import Path
from typing import Callable, Iterable

from .. import IDENTITY_MARKER
from ..__util__ import AbortError, CommandRunner
from ..config.paths import is_strict_descendant, path_starts_with
from ..config.schema import Job

logger = logging.getLogger(__name__)

PROC_MOUNTS = "/proc/mounts"
FSTAB = "/etc/fstab"

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


class MountError(AbortError):
    """Mounting, verifying or releasing backup media failed."""


def _unescape(field: str) -> str:
    # /proc/mounts and fstab encode blanks as \040 and friends
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), field)


def _same_path(a: str, b: str) -> bool:
    # The kernel reports mount points without a trailing slash
    return os.path.normpath(a) == os.path.normpath(b)


def _read_table(path: str) -> list[list[str]]:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            lines = f.readlines()
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
        return []
    rows = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        rows.append([_unescape(field) for field in line.split()])
    return rows


class MountTable:
    """Read-only views of the live and static mount tables."""

    def __init__(self, proc_mounts: str = PROC_MOUNTS, fstab: str = FSTAB) -> None:
        self.proc_mounts = proc_mounts
        self.fstab = fstab

    def _live_entry(self, path: str) -> list[str] | None:
        entry = None
        # Later entries shadow earlier ones on the same mount point
        for row in _read_table(self.proc_mounts):
            if len(row) >= 2 and _same_path(row[1], path):
                entry = row
        return entry

    def is_mounted(self, path: str) -> bool:
        return self._live_entry(path) is not None

    def is_readonly(self, path: str) -> bool | None:
        """Return whether ``path`` is mounted read-only, or None if not mounted."""
        entry = self._live_entry(path)
        if entry is None:
            return None
        if len(entry) < 4:
            return False
        return "ro" in entry[3].split(",")

    def in_fstab(self, path: str) -> bool:
        return any(
            len(row) >= 2 and _same_path(row[1], path)
            for row in _read_table(self.fstab)
        )


class TrackedMountSet:
    """Mounts this process is responsible for unmounting."""

    def __init__(self) -> None:
        self._mounts: list[str] = []

    def register(self, path: str) -> None:
        if not path:
            return
        path = os.path.normpath(path)
        if path not in self._mounts:
            self._mounts.append(path)

    def unregister(self, path: str) -> None:
        path = os.path.normpath(path)
        if path in self._mounts:
            self._mounts.remove(path)

    def drain(self, unmount: Callable[[str], object]) -> None:
        """Unmount and forget every tracked path, nested mounts first."""
        mounts = sorted(self._mounts, key=len, reverse=True)
        self._mounts.clear()
        for path in mounts:
            try:
                unmount(path)
            except Exception as e:  # noqa: BLE001
                logger.error("Cleanup of %s failed: %s", path, e)


TRACKED_MOUNTS = TrackedMountSet()


class MountController:
    """Validated mount, verify and release of backup media."""

    def __init__(
        self,
        runner: CommandRunner,
        table: MountTable | None = None,
        tracked: TrackedMountSet | None = None,
        mount_prefix: str | None = None,
    ) -> None:
        self.runner = runner
        self.table = table or MountTable()
        self.tracked = TRACKED_MOUNTS if tracked is None else tracked
        self.mount_prefix = mount_prefix

    def _run(self, *command: str) -> int:
        return self.runner.run(list(command))

    def ensure_unmounted(self, path: str) -> None:
        """Make sure nothing is mounted at ``path``."""
        if not self.table.is_mounted(path):
            logger.debug("Mount not active, skip umount: %s", path)
            return
        logger.info("Unmounting %s", path)
        rc = self._run("umount", path)
        if rc != 0:
            raise MountError(f"umount {path} failed with exit code {rc}")
        if self.table.is_mounted(path):
            raise MountError(f"umount {path} did not detach")
        self.tracked.unregister(path)

    def _mount_tracked(self, path: str) -> None:
        rc = self._run("mount", path)
        if rc != 0:
            raise MountError(f"mount {path} failed with exit code {rc}")
        if not self.table.is_mounted(path):
            # mount reported success; try to undo whatever it attached
            rc = self._run("umount", path)
            if rc != 0:
                logger.error("umount %s failed with exit code %d", path, rc)
            raise MountError(f"mount {path} is not mounted")
        self.tracked.register(path)

    def mount_and_verify_writable(self, path: str) -> None:
        """Mount ``path`` and make sure it is writable.

        On failure after the mount became active the media is released
        again before the error propagates.
        """
        self._mount_tracked(path)
        try:
            rc = self._run("mount", "-oremount,rw", path)
            if rc != 0:
                raise MountError(f"remount rw {path} failed with exit code {rc}")
            readonly = self.table.is_readonly(path)
            if readonly is None:
                raise MountError(f"mount {path} is not mounted")
            if readonly:
                raise MountError(f"mount {path} is read-only")
        except Exception:
            self.release(path)
            raise

    def mount_for_restore(self, path: str) -> None:
        """Mount enrolled media read-only and leave it mounted.

        The mount is not tracked once verified, so it survives the end of
        the process until ``umount`` is requested.
        """
        self._mount_tracked(path)
        try:
            marker = Path(path) / IDENTITY_MARKER
            if not marker.exists():
                raise MountError(
                    f"target device is not a timevault device "
                    f"(missing {IDENTITY_MARKER} at {marker})"
                )
            rc = self._run("mount", "-oremount,ro", path)
            if rc != 0:
                raise MountError(f"remount ro {path} failed with exit code {rc}")
            if self.table.is_readonly(path) is not True:
                raise MountError(f"mount {path} did not become read-only")
        except Exception:
            self.release(path)
            raise
        self.tracked.unregister(path)

    def verify_destination(self, job: Job) -> None:
        """Check that ``job.dest`` is safe to write to.

        Raises:
            MountError: With the first failed check as reason
        """
        if not job.dest:
            raise MountError("destination path is empty")
        if not job.mount:
            raise MountError("mount is required for all jobs")
        if self.mount_prefix and not path_starts_with(job.mount, self.mount_prefix):
            raise MountError(
                f"mount {job.mount} does not start with required prefix "
                f"{self.mount_prefix}"
            )

        try:
            dest_real = os.path.realpath(job.dest, strict=True)
        except OSError as e:
            raise MountError(f"cannot access destination {job.dest}: {e.strerror}")
        if dest_real == "/":
            raise MountError("destination resolves to /")
        try:
            mount_real = os.path.realpath(job.mount, strict=True)
        except OSError as e:
            raise MountError(f"cannot access mount {job.mount}: {e.strerror}")
        if mount_real == "/":
            raise MountError("mount resolves to /")

        if not path_starts_with(dest_real, mount_real):
            raise MountError(f"destination {dest_real} is not under mount {mount_real}")
        if not is_strict_descendant(dest_real, mount_real):
            raise MountError("destination must be a subdirectory of mount")
        if not self.table.is_mounted(mount_real):
            raise MountError(f"mount {mount_real} is not mounted")
        if not self.table.in_fstab(mount_real):
            raise MountError(f"mount {mount_real} not found in {self.table.fstab}")
        marker = Path(mount_real) / IDENTITY_MARKER
        if not marker.exists():
            raise MountError(
                f"target device is not a timevault device "
                f"(missing {IDENTITY_MARKER} at {marker})"
            )

    def release(self, path: str) -> None:
        """Remount read-only and unmount; failures are logged, not raised."""
        rc = self._run("mount", "-oremount,ro", path)
        if rc != 0:
            logger.warning("Remount ro %s failed with exit code %d", path, rc)
        rc = self._run("umount", path)
        if rc != 0:
            logger.error("umount %s failed with exit code %d", path, rc)
        self.tracked.unregister(path)

    def cleanup(self) -> None:
        """Release every mount still tracked."""
        self.tracked.drain(self.release)


_cleanup_controller: MountController | None = None


def cleanup_mounts() -> None:
    """Release all tracked mounts; safe to call more than once."""
    if _cleanup_controller is not None:
        _cleanup_controller.cleanup()


def _handle_signal(signum, frame) -> None:
    logger.warning("Caught signal %d, unmounting tracked mounts", signum)
    cleanup_mounts()
    os._exit(1)


def install_cleanup_handlers(
    controller: MountController,
    signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM),
) -> None:
    """Route SIGINT/SIGTERM and interpreter exit through ``cleanup_mounts``."""
    global _cleanup_controller

    first = _cleanup_controller is None
    _cleanup_controller = controller
    if first:
        atexit.register(cleanup_mounts)
    for signum in signals:
        signal.signal(signum, _handle_signal)
