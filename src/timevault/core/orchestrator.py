"""Run resolved backup jobs one after another.

Per job: lock, exclude file, mount, verify, rotate, seed, rsync, repoint
``current``, release. Problems with one job's media or sync skip that job
only; lock contention aborts the whole run.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Sequence

from .. import __util__
from ..__util__ import CommandRunner
from ..config.schema import Config, Job, RunMode
from . import snapshots
from .locking import LockManager
from .mount import MountController, MountError
from .rsync import SyncError, build_rsync_command, run_sync

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """Result of one job."""

    job_name: str
    status: str  # "ok" or "skipped"
    reason: str = ""
    snapshot: str = ""
    expired: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "ok"


@dataclass
class RunReport:
    """Outcome of a whole run."""

    results: list[JobOutcome] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    completed_at: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def skipped(self) -> list[JobOutcome]:
        return [r for r in self.results if not r.success]


class BackupOrchestrator:
    """Drive jobs through the mount, rotate and sync sequence."""

    def __init__(
        self,
        config: Config,
        mode: RunMode,
        runner: CommandRunner | None = None,
        controller: MountController | None = None,
        locks: LockManager | None = None,
        rsync_extra: Sequence[str] = (),
        today: date | None = None,
    ) -> None:
        self.config = config
        self.mode = mode
        self.runner = runner or CommandRunner(verbose=mode.verbose, dry_run=mode.dry_run)
        self.controller = controller or MountController(
            self.runner, mount_prefix=config.mount_prefix
        )
        self.locks = locks or LockManager(
            config.options.lock_file,
            config.options.lock_granularity,
            dry_run=mode.dry_run,
        )
        self.rsync_extra = [*config.options.rsync, *rsync_extra]
        self.today = today

    def run(self, jobs: Sequence[Job]) -> RunReport:
        """Run ``jobs`` in the given order.

        Raises:
            LockError: The run or a job lock is held by another instance
        """
        report = RunReport()
        logger.info(__util__.log_heading(f"Started at {time.ctime()}"))
        with self.locks.run_lock():
            for job in jobs:
                with self.locks.job_lock(job.name):
                    outcome = self.run_job(job)
                report.results.append(outcome)

        if not self.mode.dry_run:
            self.runner.run(["sync"])

        report.completed_at = time.time()
        for outcome in report.skipped:
            logger.warning("skipped job %s: %s", outcome.job_name, outcome.reason)
        logger.info(
            __util__.log_heading(
                f"Finished at {time.ctime()}: {report.succeeded} ok, "
                f"{len(report.skipped)} skipped"
            )
        )
        return report

    def _skip(self, job: Job, reason: str) -> JobOutcome:
        logger.error("skip job %s: %s", job.name, reason)
        return JobOutcome(job.name, "skipped", reason)

    def _describe(self, job: Job, label: str) -> None:
        logger.info(__util__.log_heading(f"Job: {job.name}"))
        if not self.mode.verbose:
            return
        logger.info("  run: %s", job.run_policy.value)
        logger.info("  source: %s", job.source)
        logger.info("  dest: %s", job.dest)
        logger.info("  mount: %s", job.mount or "<unset>")
        logger.info("  copies: %d", job.copies)
        logger.info("  excludes: %d", len(job.excludes))
        logger.info("  backup day: %s", label)

    def run_job(self, job: Job) -> JobOutcome:
        """Back up one job; never raises for media or sync problems."""
        label = snapshots.snapshot_label(self.today)
        self._describe(job, label)

        try:
            excludes_file = snapshots.write_excludes_file(job.excludes, self.mode)
        except OSError as e:
            return self._skip(job, f"cannot write excludes file: {e}")

        if not job.mount:
            return self._skip(job, "mount is required for all jobs")

        try:
            self.controller.ensure_unmounted(job.mount)
            self.controller.mount_and_verify_writable(job.mount)
        except MountError as e:
            return self._skip(job, str(e))

        try:
            self.controller.verify_destination(job)

            dest = Path(job.dest)
            expired = snapshots.rotate(dest, job.copies, self.mode)
            snapshots.seed_snapshot(dest, label, self.runner, self.mode)

            command = build_rsync_command(
                job.source, dest / label, excludes_file, self.mode, self.rsync_extra
            )
            run_sync(self.runner, command)

            if (dest / label).exists():
                snapshots.update_current(dest, label, self.mode)
            return JobOutcome(job.name, "ok", snapshot=label, expired=expired)
        except (MountError, SyncError, OSError) as e:
            return self._skip(job, str(e))
        finally:
            self.controller.release(job.mount)
