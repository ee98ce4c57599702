"""Mount and umount commands: read-only access to a job's snapshots."""

import argparse
import logging

from ..__logger__ import create_logger
from ..__util__ import CommandRunner
from ..config import Config, ConfigError, Job
from ..core.locking import AlreadyRunningError, LockError, LockManager
from ..core.mount import MountController, MountError, install_cleanup_handlers
from .common import EXIT_CONFIG, EXIT_OK, EXIT_RUNNING, get_log_level, load_checked_config

logger = logging.getLogger(__name__)


def _load_job(args: argparse.Namespace) -> tuple[Config, Job]:
    config = load_checked_config(args)
    job = config.get_job(args.job)
    if job is None:
        raise ConfigError(f"job not found: {args.job}")
    if not job.mount:
        raise ConfigError(f"job {job.name}: mount is required for all jobs")
    return config, job


def execute_mount(args: argparse.Namespace) -> int:
    """Mount a job's media read-only and print the mount point.

    The media stays mounted after the command exits; ``umount`` releases it.
    """
    create_logger(False, level=get_log_level(args))
    try:
        config, job = _load_job(args)
    except ConfigError as e:
        logger.error("%s", e)
        return EXIT_CONFIG

    runner = CommandRunner(verbose=getattr(args, "verbose", False))
    controller = MountController(runner, mount_prefix=config.mount_prefix)
    install_cleanup_handlers(controller)
    locks = LockManager(config.options.lock_file, config.options.lock_granularity)

    try:
        with locks.run_lock(), locks.job_lock(job.name):
            if controller.table.is_mounted(job.mount):
                raise MountError(f"mount {job.mount} is already mounted")
            if not controller.table.in_fstab(job.mount):
                raise MountError(f"mount {job.mount} not found in {controller.table.fstab}")
            controller.mount_for_restore(job.mount)
    except AlreadyRunningError as e:
        logger.error("%s", e)
        return EXIT_RUNNING
    except (LockError, MountError) as e:
        logger.error("mount failed: %s", e)
        return EXIT_CONFIG
    finally:
        controller.cleanup()

    print(job.mount)
    return EXIT_OK


def execute_umount(args: argparse.Namespace) -> int:
    """Unmount a job's media after browsing or restoring."""
    create_logger(False, level=get_log_level(args))
    try:
        config, job = _load_job(args)
    except ConfigError as e:
        logger.error("%s", e)
        return EXIT_CONFIG

    runner = CommandRunner(verbose=getattr(args, "verbose", False))
    controller = MountController(runner, mount_prefix=config.mount_prefix)
    locks = LockManager(config.options.lock_file, config.options.lock_granularity)

    try:
        with locks.run_lock(), locks.job_lock(job.name):
            controller.ensure_unmounted(job.mount)
    except AlreadyRunningError as e:
        logger.error("%s", e)
        return EXIT_RUNNING
    except (LockError, MountError) as e:
        logger.error("umount failed: %s", e)
        return EXIT_CONFIG
    return EXIT_OK
