# pyright: standard

"""timevault: timevault/__logger__.py
A common logger for displaying through rich.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Initialize basic console and handler
cons = Console()
rich_handler = RichHandler(console=cons, show_path=False)
# Create a logger directly
logger = logging.Logger("timevault", logging.INFO)


def create_logger(quiet_time: bool = False, level: str = "INFO") -> None:
    """Helper function to setup logging for the given level."""
    # pylint: disable=global-statement
    global cons, rich_handler, logger

    cons = Console(stderr=False)
    rich_handler = RichHandler(
        console=cons, show_time=not quiet_time, show_path=False, markup=False
    )

    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(level)
    logger.addHandler(rich_handler)

    logging.basicConfig(
        format="%(message)s",
        datefmt="%H:%M:%S",
        level=level,
        handlers=[rich_handler],
        force=True,
    )
