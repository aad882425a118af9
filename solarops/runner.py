"""
Helpers for running the external CLIs (terraform, aws, kubectl, eksctl).
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from .errors import CommandError
from .state import get_commands_log

logger = logging.getLogger(__name__)

TAIL_LINES = 40


@dataclass
class CommandResult:
    """Outcome of an external command."""
    argv: List[str]
    returncode: int
    lines: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(self.lines)

    @property
    def tail(self) -> List[str]:
        return self.lines[-TAIL_LINES:]


def command_exists(name: str) -> bool:
    """Equivalent of `command -v name`."""
    return shutil.which(name) is not None


def run_command(
    argv: List[str],
    cwd: Optional[Union[str, Path]] = None,
    run_id: Optional[str] = None,
    check: bool = True,
    on_line: Optional[Callable[[str], None]] = None,
) -> CommandResult:
    """
    Run a command, streaming its combined output.

    Every line is appended to the run's commands.log (when run_id is set) and
    handed to on_line, if given.

    Args:
        argv: Command and arguments
        cwd: Working directory
        run_id: Run whose transcript receives the output
        check: Raise CommandError on a non-zero exit
        on_line: Callback for each output line

    Returns:
        CommandResult

    Raises:
        CommandError: If the command can't be started, or fails with check=True
    """
    log_path = get_commands_log(run_id)
    logger.debug(f"Running: {' '.join(argv)} (cwd={cwd})")

    try:
        process = subprocess.Popen(
            argv,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except FileNotFoundError:
        logger.error(f"Executable not found: {argv[0]}")
        raise CommandError(argv, 127, [f"{argv[0]}: command not found"])

    lines: List[str] = []
    log_file = open(log_path, "a") if log_path is not None else None
    with process:
        try:
            if log_file:
                log_file.write(f"=== {' '.join(argv)} ===\n")

            for line in process.stdout:
                line = line.rstrip("\n")
                lines.append(line)
                if log_file:
                    log_file.write(line + "\n")
                    log_file.flush()
                if on_line:
                    on_line(line)

            process.wait()
        except BaseException:
            # Callback error or Ctrl-C: don't leave the child behind
            process.kill()
            process.wait()
            raise
        finally:
            if log_file:
                log_file.close()

    result = CommandResult(argv=list(argv), returncode=process.returncode, lines=lines)

    if not result.ok:
        logger.debug(f"Command exited {result.returncode}: {' '.join(argv)}")
        if check:
            raise CommandError(argv, result.returncode, result.tail)

    return result


def command_succeeds(argv: List[str], cwd: Optional[Union[str, Path]] = None, run_id: Optional[str] = None) -> bool:
    """Run a command purely for its exit status (the `&> /dev/null` idiom)."""
    try:
        return run_command(argv, cwd=cwd, run_id=run_id, check=False).ok
    except CommandError:
        return False
