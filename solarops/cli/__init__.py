"""Command line interface for solarops."""

from .main import main

__all__ = ["main"]
