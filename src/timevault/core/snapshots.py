"""Dated snapshot directories under a job destination.

Layout of a destination::

    dest/
      20240101/     one directory per completed backup, named YYYYMMDD
      20240102/
      current -> 20240102
"""

import logging
import os
import shutil
from datetime import date, timedelta
from pathlib import Path
from typing import Sequence

from .. import IDENTITY_MARKER
from ..__util__ import CommandRunner
from ..config.schema import RunMode

logger = logging.getLogger(__name__)

CURRENT = "current"
LABEL_FORMAT = "%Y%m%d"


def snapshot_label(today: date | None = None) -> str:
    """Label for this run: yesterday's date, the period just completed."""
    today = today or date.today()
    return (today - timedelta(days=1)).strftime(LABEL_FORMAT)


def excludes_path() -> Path:
    """Per-user location of the materialised exclude list."""
    home = os.environ.get("HOME") or "/tmp"
    return Path(home) / "tmp" / "timevault.excludes"


def write_excludes_file(excludes: Sequence[str], mode: RunMode) -> Path:
    """Write one exclude pattern per line and return the file path."""
    path = excludes_path()
    if mode.dry_run:
        logger.info("dry-run: would write excludes file %s", path)
        return path
    path.parent.mkdir(mode=0o755, exist_ok=True)
    path.write_text("".join(f"{ex}\n" for ex in excludes), encoding="utf-8")
    logger.debug("Wrote %d exclude(s) to %s", len(excludes), path)
    return path


def list_snapshot_dirs(dest: Path) -> list[str]:
    """Names of the genuine snapshot directories under ``dest``, oldest first."""
    names = []
    try:
        entries = list(os.scandir(dest))
    except FileNotFoundError:
        return []
    for entry in entries:
        if entry.name in (CURRENT, IDENTITY_MARKER):
            continue
        if entry.is_symlink():
            logger.info("skip symlink delete: %s", entry.path)
            continue
        if not entry.is_dir(follow_symlinks=False):
            logger.info("skip non-dir delete: %s", entry.path)
            continue
        names.append(entry.name)
    # YYYYMMDD sorts chronologically
    return sorted(names)


def rotate(dest: Path, copies: int, mode: RunMode) -> list[str]:
    """Delete the oldest snapshot directories beyond ``copies``.

    Returns:
        Names of the snapshots removed (or that would be, in safe/dry-run)
    """
    dest = Path(dest)
    snapshots = list_snapshot_dirs(dest)
    if len(snapshots) <= copies:
        return []

    expired = snapshots[: len(snapshots) - copies]
    for name in expired:
        path = dest / name
        if mode.dry_run:
            logger.info("dry-run: rm -rf %s", path)
        elif mode.safe_mode:
            logger.info("skip delete (safe-mode): %s", path)
        else:
            logger.info("delete: %s", path)
            shutil.rmtree(path)
    return expired


def delete_symlinks(root: Path) -> int:
    """Remove every symlink below ``root`` without following any."""
    removed = 0
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        # os.walk reports links to directories in dirnames
        for name in dirnames + filenames:
            path = os.path.join(dirpath, name)
            if os.path.islink(path):
                os.unlink(path)
                removed += 1
    return removed


def seed_snapshot(dest: Path, label: str, runner: CommandRunner, mode: RunMode) -> bool:
    """Pre-populate today's snapshot with hard links of ``current``.

    Only happens when ``current`` exists and the snapshot does not yet.

    Returns:
        True if a seed copy was made (or would be, on a dry run)
    """
    dest = Path(dest)
    current = dest / CURRENT
    snapshot = dest / label
    if not current.exists() or snapshot.exists():
        return False

    if mode.dry_run:
        logger.info("dry-run: mkdir -p %s", snapshot)
    else:
        snapshot.mkdir(mode=0o755)
    rc = runner.run_heavy(["cp", "-ralf", f"{current}/.", str(snapshot)])
    if rc != 0:
        logger.warning("Seeding %s from %s exited with %d", snapshot, current, rc)

    if mode.dry_run:
        logger.info("dry-run: find %s -type l -delete", snapshot)
    elif mode.safe_mode:
        logger.info("skip symlink cleanup (safe-mode): %s", snapshot)
    else:
        removed = delete_symlinks(snapshot)
        logger.debug("Removed %d symlink(s) from %s", removed, snapshot)
    return True


def update_current(dest: Path, label: str, mode: RunMode) -> bool:
    """Point ``dest/current`` at ``label``.

    A real directory named ``current`` is left alone. In safe mode an
    existing link is kept.

    Returns:
        True if the link now points (or would point) at ``label``
    """
    dest = Path(dest)
    link = dest / CURRENT
    exists = os.path.lexists(link)

    if exists and link.is_dir() and not link.is_symlink():
        logger.warning("skip updating current (directory exists): %s", link)
        return False

    if mode.dry_run:
        if exists:
            logger.info("dry-run: rm -f %s", link)
        logger.info("dry-run: ln -s %s %s", label, link)
        return True
    if exists and mode.safe_mode:
        logger.info("skip remove (safe-mode): %s", link)
        return False

    tmp = dest / f".{CURRENT}.{os.getpid()}"
    if os.path.lexists(tmp):
        tmp.unlink()
    os.symlink(label, tmp)
    os.replace(tmp, link)
    logger.info("current -> %s", label)
    return True
