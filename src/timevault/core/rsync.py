"""rsync invocation for one job.

The sync itself is rsync's business; this module builds the argument vector
and decides whether the run succeeded.
"""

import logging
from pathlib import Path
from typing import Sequence

from ..__util__ import AbortError, CommandRunner
from ..config.schema import RunMode

logger = logging.getLogger(__name__)

SYNC_ATTEMPTS = 3


class SyncError(AbortError):
    """rsync did not finish successfully."""


def build_rsync_command(
    source: str,
    snapshot: Path | str,
    excludes_file: Path | str,
    mode: RunMode,
    extra: Sequence[str] = (),
) -> list[str]:
    """Build the rsync argument vector mirroring ``source`` into ``snapshot``."""
    cmd = ["rsync", "-ar", "--stats", f"--exclude-from={excludes_file}"]
    if not mode.safe_mode:
        cmd += ["--delete-after", "--delete-excluded"]
    cmd += list(extra)
    cmd += [source, str(snapshot)]
    return cmd


def run_sync(
    runner: CommandRunner,
    command: Sequence[str],
    attempts: int = SYNC_ATTEMPTS,
) -> None:
    """Run rsync, retrying failed attempts up to ``attempts`` times.

    Raises:
        SyncError: Every attempt exited non-zero
    """
    rc = 1
    for attempt in range(1, attempts + 1):
        rc = runner.run_heavy(command)
        if rc == 0:
            return
        logger.warning("rsync attempt %d/%d exited with %d", attempt, attempts, rc)
    raise SyncError(f"rsync failed with exit code {rc} after {attempts} attempt(s)")
