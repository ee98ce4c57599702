"""Core backup operations for timevault.

Dependency resolution, locking, mount handling and the per-job backup
sequence, organized into focused modules.
"""

from .enrol import init_device
from .locking import AlreadyRunningError, LockError, LockManager, PidLock
from .mount import (
    MountController,
    MountError,
    MountTable,
    TrackedMountSet,
    install_cleanup_handlers,
)
from .orchestrator import BackupOrchestrator, JobOutcome, RunReport
from .resolver import (
    DependencyCycleError,
    DependencyNotFoundError,
    DependencyResolver,
    JobDisabledError,
    JobNotFoundError,
    ResolutionError,
)
from .rsync import SyncError

__all__ = [
    "AlreadyRunningError",
    "BackupOrchestrator",
    "DependencyCycleError",
    "DependencyNotFoundError",
    "DependencyResolver",
    "JobDisabledError",
    "JobNotFoundError",
    "JobOutcome",
    "LockError",
    "LockManager",
    "MountController",
    "MountError",
    "MountTable",
    "PidLock",
    "ResolutionError",
    "RunReport",
    "SyncError",
    "TrackedMountSet",
    "init_device",
    "install_cleanup_handlers",
]
