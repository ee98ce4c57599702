"""Configuration schema definitions using dataclasses.

Defines the structure of the TOML configuration with sensible defaults.
The loader produces these values already validated; the core only reads them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

DEFAULT_LOCK_FILE = "/var/run/timevault.pid"


class RunPolicy(Enum):
    """When a job is selected for a run."""

    AUTO = "auto"  # selected when no --job is given
    DEMAND = "demand"  # only when named explicitly (or needed as a dependency)
    OFF = "off"  # never, even when named

    @classmethod
    def parse(cls, value: str) -> "RunPolicy":
        """Parse a policy name case-insensitively; empty means auto."""
        normalized = (value or "").strip().lower() or "auto"
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"invalid run policy {value}; expected auto, demand, or off"
            ) from None


class LockGranularity(Enum):
    """Scope of the single-instance lock."""

    RUN = "run"
    JOB = "job"


@dataclass(frozen=True)
class RunMode:
    """Flags that change what a run is allowed to do.

    Attributes:
        dry_run: Report actions instead of changing anything on disk
        safe_mode: Never delete (no rotation, no rsync --delete, keep links)
        verbose: Echo every external command
    """

    dry_run: bool = False
    safe_mode: bool = False
    verbose: bool = False


@dataclass
class Job:
    """One configured backup task.

    Attributes:
        name: Unique job name
        source: rsync source argument
        dest: Absolute destination directory, strictly under ``mount``
        copies: Number of dated snapshots to keep
        mount: Absolute mount point of the backup media
        run_policy: Auto, Demand or Off
        excludes: Global excludes followed by the job's own
        depends_on: Names of jobs that must run first
    """

    name: str
    source: str
    dest: str
    copies: int
    mount: str = ""
    run_policy: RunPolicy = RunPolicy.AUTO
    excludes: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)


@dataclass
class Options:
    """Run-wide options.

    Attributes:
        verbose: Verbose output by default
        safe: Safe mode by default
        rsync: Extra arguments appended to every rsync invocation
        lock_granularity: One lock per run or one lock per job
        lock_file: Path of the run lock file
    """

    verbose: bool = False
    safe: bool = False
    rsync: list[str] = field(default_factory=list)
    lock_granularity: LockGranularity = LockGranularity.RUN
    lock_file: str = DEFAULT_LOCK_FILE


@dataclass
class Config:
    """Root configuration object.

    Attributes:
        jobs: Jobs in declaration order
        excludes: Global exclude patterns
        mount_prefix: Required prefix for every job mount, if set
        options: Run-wide options
    """

    jobs: list[Job] = field(default_factory=list)
    excludes: list[str] = field(default_factory=list)
    mount_prefix: Optional[str] = None
    options: Options = field(default_factory=Options)

    def get_job(self, name: str) -> Optional[Job]:
        """Return the job called ``name``, if any."""
        for job in self.jobs:
            if job.name == name:
                return job
        return None

    def get_auto_jobs(self) -> list[Job]:
        """Get list of jobs selected when none are named."""
        return [j for j in self.jobs if j.run_policy is RunPolicy.AUTO]
