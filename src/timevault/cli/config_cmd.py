"""Config command: Configuration management."""

import argparse
import logging

from ..__logger__ import create_logger
from ..config import ConfigError
from ..config.loader import generate_example_config
from .common import EXIT_CONFIG, EXIT_OK, get_log_level, load_checked_config

logger = logging.getLogger(__name__)


def execute_config(args: argparse.Namespace) -> int:
    """Execute the config command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    log_level = get_log_level(args)
    create_logger(False, level=log_level)

    action = getattr(args, "config_action", None)

    if action == "validate":
        return _validate_config(args)
    elif action == "init":
        return _init_config(args)
    else:
        print("Usage: timevault config <validate|init>")
        return EXIT_CONFIG


def _validate_config(args: argparse.Namespace) -> int:
    """Validate configuration file, including the dependency graph."""
    try:
        config = load_checked_config(args)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return EXIT_CONFIG

    print("Configuration is valid.")
    print(f"  Jobs: {len(config.jobs)}")
    print(f"  Auto: {len(config.get_auto_jobs())}")
    if config.mount_prefix:
        print(f"  Mount prefix: {config.mount_prefix}")
    return EXIT_OK


def _init_config(args: argparse.Namespace) -> int:
    """Generate example configuration."""
    content = generate_example_config()

    output = getattr(args, "output", None)
    if output:
        try:
            with open(output, "w") as f:
                f.write(content)
            print(f"Example configuration written to: {output}")
        except OSError as e:
            print(f"Error writing file: {e}")
            return EXIT_CONFIG
    else:
        print(content)

    return EXIT_OK
