# pyright: standard

"""timevault: timevault/__util__.py
Common utility code shared among the modules.
"""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger(__name__)

NICE_IONICE = ["nice", "-n", "19", "ionice", "-c", "3", "-n7"]


class AbortError(Exception):
    """Base class for errors that abort an operation with a readable reason."""


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"{f'--[ {caption} ]':-<50}"


def format_command(command: Sequence[str]) -> str:
    """Return a shell-like rendering of an argument vector."""
    return " ".join(shlex.quote(str(arg)) for arg in command)


@dataclass
class CommandRunner:
    """Run argument vectors as child processes and return their exit codes.

    Commands are echoed through the logger when ``verbose`` or ``dry_run``
    is set. The runner itself never skips a command; callers decide what
    a dry run may execute.
    """

    verbose: bool = False
    dry_run: bool = False

    def echo(self, command: Sequence[str]) -> None:
        if self.verbose or self.dry_run:
            logger.info("%s", format_command(command))

    def run(self, command: Sequence[str]) -> int:
        """Run ``command`` to completion and return its exit code."""
        self.echo(command)
        try:
            completed = subprocess.run([str(arg) for arg in command], check=False)
        except OSError as e:
            logger.error("Failed to execute %s: %s", command[0], e)
            return 127
        if completed.returncode < 0:
            # Killed by a signal
            return 1
        return completed.returncode

    def run_heavy(self, command: Sequence[str]) -> int:
        """Run an I/O heavy command at idle priority; only echoed on dry runs."""
        argv = [*NICE_IONICE, *command]
        if self.dry_run:
            self.echo(argv)
            return 0
        return self.run(argv)
