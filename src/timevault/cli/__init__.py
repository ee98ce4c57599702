"""Command line interface for timevault."""

from .dispatcher import main

__all__ = ["main"]
