"""Backup and order commands: resolve jobs and run (or print) them."""

import argparse
import logging

from ..__logger__ import create_logger
from ..__util__ import CommandRunner
from ..config import Config, ConfigError, Job, RunMode
from ..core.locking import AlreadyRunningError, LockError
from ..core.mount import MountController, install_cleanup_handlers
from ..core.orchestrator import BackupOrchestrator
from ..core.resolver import (
    DependencyResolver,
    JobDisabledError,
    JobNotFoundError,
    ResolutionError,
)
from .common import EXIT_CONFIG, EXIT_OK, EXIT_RUNNING, get_log_level, load_checked_config

logger = logging.getLogger(__name__)


def resolve_jobs(config: Config, names: list[str]) -> list[Job]:
    """Resolve the selected job names, logging a reason on failure.

    Raises:
        ResolutionError: Unknown, disabled or cyclic selection, or nothing selected
    """
    try:
        jobs = DependencyResolver(config).resolve(names)
    except JobNotFoundError as e:
        logger.error("%s", e)
        logger.error("no such job(s) found; aborting")
        raise
    except JobDisabledError as e:
        logger.error("%s", e)
        logger.error("requested job(s) are disabled; aborting")
        raise
    except ResolutionError as e:
        logger.error("dependency order failed: %s", e)
        raise

    if not jobs:
        if names:
            msg = "no jobs matched selection; aborting"
        else:
            msg = "no jobs matched (no auto jobs enabled); aborting"
        logger.error(msg)
        raise ResolutionError(msg)
    return jobs


def print_job_details(job: Job) -> None:
    print(f"job: {job.name}")
    print(f"  source: {job.source}")
    print(f"  dest: {job.dest}")
    print(f"  copies: {job.copies}")
    print(f"  mount: {job.mount or '<unset>'}")
    print(f"  run: {job.run_policy.value}")
    print(f"  depends_on: {', '.join(job.depends_on) or '<none>'}")
    print(f"  excludes: {', '.join(job.excludes) or '<none>'}")


def _load_and_resolve(args: argparse.Namespace) -> tuple[Config, list[Job]] | int:
    try:
        config = load_checked_config(args)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG
    try:
        jobs = resolve_jobs(config, list(getattr(args, "jobs", None) or []))
    except ResolutionError:
        return EXIT_CONFIG
    return config, jobs


def execute_order(args: argparse.Namespace) -> int:
    """Print the resolved jobs in execution order without running them."""
    create_logger(False, level=get_log_level(args))

    loaded = _load_and_resolve(args)
    if isinstance(loaded, int):
        return loaded
    _, jobs = loaded
    for job in jobs:
        print_job_details(job)
    return EXIT_OK


def execute_backup(args: argparse.Namespace) -> int:
    """Execute the backup command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 success, 2 configuration problem, 3 already running)
    """
    if getattr(args, "print_order", False):
        return execute_order(args)

    create_logger(False, level=get_log_level(args))

    loaded = _load_and_resolve(args)
    if isinstance(loaded, int):
        return loaded
    config, jobs = loaded

    mode = RunMode(
        dry_run=getattr(args, "dry_run", False),
        safe_mode=getattr(args, "safe", False) or config.options.safe,
        verbose=getattr(args, "verbose", False) or config.options.verbose,
    )
    if mode.verbose:
        logger.info("Loaded config with %d job(s) to run", len(jobs))
        if config.mount_prefix:
            logger.info("mount prefix: %s", config.mount_prefix)

    runner = CommandRunner(verbose=mode.verbose, dry_run=mode.dry_run)
    controller = MountController(runner, mount_prefix=config.mount_prefix)
    install_cleanup_handlers(controller)

    orchestrator = BackupOrchestrator(
        config,
        mode,
        runner=runner,
        controller=controller,
        rsync_extra=getattr(args, "rsync", None) or [],
    )
    try:
        orchestrator.run(jobs)
    except AlreadyRunningError as e:
        logger.error("%s", e)
        return EXIT_RUNNING
    except LockError as e:
        logger.error("%s", e)
        return EXIT_CONFIG
    finally:
        controller.cleanup()

    return EXIT_OK
