"""CLI dispatcher.

Builds the subcommand parser and routes to the command handlers.
"""

import argparse
import sys
from typing import Callable

from .common import EXIT_CONFIG, add_dry_run_arg, add_job_args, create_global_parser


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="timevault",
        description="Mount backup media, rsync dated snapshots, rotate and unmount",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=[create_global_parser()],
    )

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file (default: /etc/timevault.toml)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
    )
    # Output options are accepted after the subcommand as well
    common = [create_global_parser(subcommand=True)]

    # backup command
    backup_parser = subparsers.add_parser(
        "backup",
        parents=common,
        help="Run backup jobs",
        description="Mount, rotate, rsync and unmount for each selected job",
    )
    add_job_args(backup_parser)
    add_dry_run_arg(backup_parser)
    backup_parser.add_argument(
        "--safe",
        action="store_true",
        help="Never delete anything (no rotation, no rsync --delete)",
    )
    backup_parser.add_argument(
        "--print-order",
        action="store_true",
        help="Print the resolved jobs in execution order and exit",
    )
    backup_parser.add_argument(
        "--rsync",
        nargs=argparse.REMAINDER,
        default=[],
        metavar="ARGS",
        help="Pass all remaining arguments through to rsync",
    )

    # order command
    order_parser = subparsers.add_parser(
        "order",
        parents=common,
        help="Print resolved job order",
        description="Resolve job dependencies and print them without running",
    )
    add_job_args(order_parser)

    # init command
    init_parser = subparsers.add_parser(
        "init",
        parents=common,
        help="Enrol a mount as a backup target",
        description="Mount the device and write the .timevault identity marker",
    )
    init_parser.add_argument("mount", metavar="MOUNT", help="Mount point from fstab")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Enrol even if the mount root is not empty",
    )
    add_dry_run_arg(init_parser)

    # mount / umount commands
    mount_parser = subparsers.add_parser(
        "mount",
        parents=common,
        help="Mount a job's media read-only for restores",
        description="Mount the job's media read-only, check the identity marker "
        "and leave it mounted",
    )
    mount_parser.add_argument("job", metavar="JOB", help="Job whose media to mount")

    umount_parser = subparsers.add_parser(
        "umount",
        parents=common,
        aliases=["unmount"],
        help="Unmount a job's media",
        description="Unmount media mounted with the mount command",
    )
    umount_parser.add_argument("job", metavar="JOB", help="Job whose media to unmount")

    # config command with subcommands
    config_parser = subparsers.add_parser(
        "config",
        parents=common,
        help="Configuration management",
        description="Validate or generate configuration",
    )
    config_subs = config_parser.add_subparsers(dest="config_action")

    config_subs.add_parser(
        "validate",
        parents=common,
        help="Validate configuration file",
    )

    init_config_parser = config_subs.add_parser(
        "init",
        parents=common,
        help="Generate example configuration",
    )
    init_config_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output file (default: stdout)",
    )

    return parser


def run_subcommand(args: argparse.Namespace) -> int:
    """Run the specified subcommand.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    from .. import __version__

    if args.version:
        print(f"timevault {__version__}")
        return 0

    if not args.command:
        print("No command specified. Use --help for usage information.")
        return EXIT_CONFIG

    handlers: dict[str, Callable] = {
        "backup": cmd_backup,
        "order": cmd_order,
        "init": cmd_init,
        "mount": cmd_mount,
        "umount": cmd_umount,
        "unmount": cmd_umount,
        "config": cmd_config,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)
    else:
        print(f"Unknown command: {args.command}")
        return EXIT_CONFIG


def cmd_backup(args: argparse.Namespace) -> int:
    """Execute backup command."""
    from .backup import execute_backup

    return execute_backup(args)


def cmd_order(args: argparse.Namespace) -> int:
    """Execute order command."""
    from .backup import execute_order

    return execute_order(args)


def cmd_init(args: argparse.Namespace) -> int:
    """Execute init command."""
    from .init_cmd import execute_init

    return execute_init(args)


def cmd_mount(args: argparse.Namespace) -> int:
    """Execute mount command."""
    from .mount_cmd import execute_mount

    return execute_mount(args)


def cmd_umount(args: argparse.Namespace) -> int:
    """Execute umount command."""
    from .mount_cmd import execute_umount

    return execute_umount(args)


def cmd_config(args: argparse.Namespace) -> int:
    """Execute config command."""
    from .config_cmd import execute_config

    return execute_config(args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the timevault CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_subcommand_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits with 2 on usage errors, matching EXIT_CONFIG
        return int(e.code or 0)

    return run_subcommand(args)
