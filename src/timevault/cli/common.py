"""Shared CLI utilities and argument parsers."""

import argparse
import logging

from ..config import Config, ConfigError, find_config_file, load_config
from ..core.resolver import DependencyResolver, ResolutionError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_RUNNING = 3


def create_global_parser(subcommand: bool = False) -> argparse.ArgumentParser:
    """Create a parser with global options that can be used as a parent.

    With ``subcommand`` set the options default to ``argparse.SUPPRESS``, so a
    subcommand only overrides flags given after it and keeps the ones given
    before it.
    """
    parser = argparse.ArgumentParser(add_help=False)
    add_verbosity_args(parser, default=argparse.SUPPRESS if subcommand else False)
    return parser


def add_verbosity_args(parser: argparse.ArgumentParser, default=False) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=default,
        help="Enable verbose output and echo external commands",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=default,
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        default=default,
        help="Enable debug output",
    )


def add_job_args(parser: argparse.ArgumentParser) -> None:
    """Add the repeatable --job selector."""
    parser.add_argument(
        "-j",
        "--job",
        metavar="NAME",
        action="append",
        default=[],
        dest="jobs",
        help="Run this job and its dependencies (repeatable; default: auto jobs)",
    )


def add_dry_run_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    else:
        return "INFO"


def load_checked_config(args: argparse.Namespace) -> Config:
    """Find, load and graph-check the configuration.

    Raises:
        ConfigError: Missing file, invalid content or a dependency problem
    """
    config_path = find_config_file(getattr(args, "config", None))
    if config_path is None:
        raise ConfigError("No configuration file found")

    logger.debug("Loading configuration from: %s", config_path)
    config, warnings = load_config(config_path)
    for warning in warnings:
        logger.warning("Config: %s", warning)

    try:
        DependencyResolver(config).check_graph()
    except ResolutionError as e:
        raise ConfigError(f"failed to load config {config_path}: {e}") from e
    return config
