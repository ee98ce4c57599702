"""Init command: enrol a mount as a backup target."""

import argparse
import logging

from ..__logger__ import create_logger
from ..__util__ import CommandRunner
from ..config import ConfigError, RunMode, find_config_file, load_config
from ..config.schema import DEFAULT_LOCK_FILE
from ..core.enrol import init_device
from ..core.locking import AlreadyRunningError, LockError, LockManager
from ..core.mount import MountController, MountError, install_cleanup_handlers
from .common import EXIT_CONFIG, EXIT_OK, EXIT_RUNNING, get_log_level

logger = logging.getLogger(__name__)


def execute_init(args: argparse.Namespace) -> int:
    """Execute the init command.

    The config file is optional here; when present its mount prefix and lock
    file apply.
    """
    create_logger(False, level=get_log_level(args))

    mode = RunMode(
        dry_run=getattr(args, "dry_run", False),
        verbose=getattr(args, "verbose", False),
    )
    mount_prefix = None
    lock_file = None
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is not None:
            config, _ = load_config(config_path)
            mount_prefix = config.mount_prefix
            lock_file = config.options.lock_file
    except ConfigError as e:
        logger.error("failed to load config: %s", e)
        return EXIT_CONFIG

    runner = CommandRunner(verbose=mode.verbose, dry_run=mode.dry_run)
    controller = MountController(runner, mount_prefix=mount_prefix)
    install_cleanup_handlers(controller)
    locks = LockManager(lock_file or DEFAULT_LOCK_FILE, dry_run=mode.dry_run)

    try:
        with locks.exclusive():
            init_device(args.mount, controller, mode, force=args.force)
    except AlreadyRunningError as e:
        logger.error("%s", e)
        return EXIT_RUNNING
    except (LockError, MountError) as e:
        logger.error("init failed: %s", e)
        return EXIT_CONFIG
    finally:
        controller.cleanup()

    logger.info("initialized timevault at %s", args.mount)
    return EXIT_OK
