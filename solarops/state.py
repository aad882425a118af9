"""
Run directory management.

Each workflow invocation gets its own directory under SOLAROPS_HOME holding
run.json, events.ndjson and commands.log.
"""

import json
import random
import re
import string
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from .config import get_solarops_home

# r-YYYYMMDD-hhmmss-xxxx; sorts chronologically as a string
RUN_ID_PATTERN = re.compile(r"r-\d{8}-\d{6}-[a-z0-9]{4}")


def new_run_id() -> str:
    """Generate a run ID from the current time plus a short random suffix."""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"r-{datetime.now():%Y%m%d-%H%M%S}-{suffix}"


def is_valid_run_id(run_id: str) -> bool:
    return RUN_ID_PATTERN.fullmatch(run_id) is not None


def get_run_dir(run_id: str) -> Path:
    """
    Get the directory for a specific run.

    Args:
        run_id: Run ID

    Returns:
        Path: Run directory

    Raises:
        ValueError: If run ID is invalid
    """
    if not is_valid_run_id(run_id):
        raise ValueError(f"Invalid run ID: {run_id}")

    return get_solarops_home() / run_id


def create_run_dir(run_id: str) -> Path:
    """
    Create run directory and return its path.

    Args:
        run_id: Run ID

    Returns:
        Path: Created run directory
    """
    run_dir = get_run_dir(run_id)
    run_dir.mkdir(parents=True, exist_ok=True)
    return run_dir


def write_run_json(run_id: str, workflow: str, settings: Dict[str, Any]) -> None:
    """
    Record which workflow ran and with what settings.

    Args:
        run_id: Run ID
        workflow: Workflow name (deploy, destroy, cleanup, ...)
        settings: Settings snapshot
    """
    run_dir = get_run_dir(run_id)
    run_data = {
        "run_id": run_id,
        "workflow": workflow,
        "settings": settings,
        "created_at": datetime.now().isoformat()
    }

    with open(run_dir / "run.json", "w") as f:
        json.dump(run_data, f, indent=2)


def read_run_json(run_id: str) -> Dict[str, Any]:
    """
    Read run metadata from run.json.

    Raises:
        FileNotFoundError: If run.json doesn't exist
    """
    run_file = get_run_dir(run_id) / "run.json"

    if not run_file.exists():
        raise FileNotFoundError(f"Run {run_id} not found")

    with open(run_file, "r") as f:
        return json.load(f)


def get_commands_log(run_id: Optional[str]) -> Optional[Path]:
    """Path of the external command transcript for a run, if any."""
    if run_id is None:
        return None
    return get_run_dir(run_id) / "commands.log"


def list_runs() -> list[str]:
    """
    List all run IDs, most recent first.

    Returns:
        List of run IDs
    """
    home = get_solarops_home()

    if not home.exists():
        return []

    runs = []
    for item in home.iterdir():
        if item.is_dir() and is_valid_run_id(item.name):
            runs.append(item.name)

    return sorted(runs, reverse=True)


def run_exists(run_id: str) -> bool:
    """
    Check if a run exists.

    Args:
        run_id: Run ID

    Returns:
        bool: True if run exists
    """
    run_dir = get_run_dir(run_id)
    return run_dir.exists() and (run_dir / "run.json").exists()
