"""
Exception types raised by solarops.
"""

from typing import List, Optional


class SolarOpsError(Exception):
    """Base class for all solarops errors."""


class CommandError(SolarOpsError):
    """An external command (terraform, kubectl, eksctl, aws) failed."""

    def __init__(self, argv: List[str], returncode: int, last_lines: Optional[List[str]] = None):
        self.argv = list(argv)
        self.returncode = returncode
        self.last_lines = last_lines or []
        super().__init__(f"Command failed ({returncode}): {' '.join(self.argv)}")


class PrerequisiteError(SolarOpsError):
    """Required tools or credentials are missing."""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__("Missing prerequisites: " + "; ".join(self.missing))
