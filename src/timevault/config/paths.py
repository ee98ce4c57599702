"""Path checks for job destinations and mounts.

These work on the configured strings only; nothing here touches the
filesystem. Resolved (real path) checks happen in the mount controller once
the media is mounted.
"""

import re

from .schema import Job

_SAFE_NAME = re.compile(r"^[A-Za-z0-9._-]+$")


def is_safe_name(name: str) -> bool:
    """Return True if ``name`` can be used in a file name (e.g. a lock path)."""
    if name in ("", ".", ".."):
        return False
    return bool(_SAFE_NAME.match(name))


def has_parent_dir(path: str) -> bool:
    """Return True if any component of ``path`` is ``..``."""
    return any(part == ".." for part in path.split("/"))


def _strip_trailing(path: str) -> str:
    stripped = path.rstrip("/")
    return stripped or "/"


def path_starts_with(path: str, prefix: str) -> bool:
    """Component-wise prefix test.

    ``/mnt/backup`` is a prefix of ``/mnt/backup`` and ``/mnt/backup/1`` but
    not of ``/mnt/backup2``. An empty prefix matches nothing.
    """
    if not prefix:
        return False
    prefix = _strip_trailing(prefix)
    if prefix == "/":
        return path.startswith("/")
    if not path.startswith(prefix):
        return False
    return len(path) == len(prefix) or path[len(prefix)] == "/"


def is_strict_descendant(path: str, ancestor: str) -> bool:
    """Return True if ``path`` lies below ``ancestor`` and is not equal to it."""
    path = _strip_trailing(path)
    ancestor = _strip_trailing(ancestor)
    return path != ancestor and path_starts_with(path, ancestor)


def job_path_error(job: Job, mount_prefix: str | None = None) -> str | None:
    """Validate a job's destination and mount.

    Returns:
        A human readable reason if the paths are invalid, otherwise None
    """
    if not job.dest:
        return "destination path is empty"
    if not job.mount:
        return "mount is required for all jobs"
    if not job.dest.startswith("/"):
        return "destination path must be absolute"
    if not job.mount.startswith("/"):
        return "mount path must be absolute"
    if has_parent_dir(job.dest):
        return "destination path must not contain .."
    if has_parent_dir(job.mount):
        return "mount path must not contain .."
    if mount_prefix and not path_starts_with(job.mount, mount_prefix):
        return f"mount {job.mount} does not start with required prefix {mount_prefix}"
    if not path_starts_with(_strip_trailing(job.dest), job.mount):
        return f"destination {job.dest} is not under mount {job.mount}"
    if not is_strict_descendant(job.dest, job.mount):
        return "destination must be a subdirectory of mount"
    return None
