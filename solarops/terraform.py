"""
Terraform wrapper functions for the EKS stack.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .config import Settings
from .events import emit_event, EventTypes
from .runner import run_command, CommandResult

logger = logging.getLogger(__name__)

PLAN_FILE = "tfplan"
DESTROY_PLAN_FILE = "destroy-plan"
TFVARS_EXAMPLE = "terraform.tfvars.example"

LineCallback = Optional[Callable[[str], None]]


def _terraform(
    tf_dir: Path,
    args: list[str],
    run_id: Optional[str] = None,
    on_line: LineCallback = None,
    check: bool = True,
) -> CommandResult:
    return run_command(["terraform", *args], cwd=tf_dir, run_id=run_id, check=check, on_line=on_line)


def is_initialized(tf_dir: Path) -> bool:
    """True once `terraform init` has created the .terraform directory."""
    return (Path(tf_dir) / ".terraform").is_dir()


def has_state(tf_dir: Path) -> bool:
    """True if a local state file exists."""
    tf_dir = Path(tf_dir)
    return (tf_dir / "terraform.tfstate").exists() or (tf_dir / ".terraform" / "terraform.tfstate").exists()


def tfvars_from_settings(settings: Settings) -> Dict[str, Any]:
    """
    Terraform variables matching the operational settings.

    Args:
        settings: Operational settings

    Returns:
        Variables dictionary for terraform.tfvars.json
    """
    return {
        "aws_region": settings.region,
        "cluster_name": settings.cluster_name,
        "node_instance_type": settings.node_type,
        "node_min_size": settings.min_nodes,
        "node_max_size": settings.max_nodes,
        "node_desired_size": settings.desired_nodes,
    }


def ensure_tfvars(tf_dir: Path, settings: Settings, run_id: Optional[str] = None) -> Path:
    """
    Make sure a variables file exists, creating one if needed.

    An existing tfvars file wins. Otherwise terraform.tfvars.example is copied;
    failing that, terraform.tfvars.json is written from the settings.

    Args:
        tf_dir: Terraform directory
        settings: Operational settings
        run_id: Run receiving the TF_TFVARS event

    Returns:
        Path of the variables file to pass with -var-file
    """
    tf_dir = Path(tf_dir)
    tfvars = tf_dir / settings.tfvars_file
    example = tf_dir / TFVARS_EXAMPLE

    if tfvars.exists():
        source = "existing"
    elif example.exists():
        shutil.copy2(example, tfvars)
        source = "example"
    else:
        tfvars = tf_dir / "terraform.tfvars.json"
        with open(tfvars, "w") as f:
            json.dump(tfvars_from_settings(settings), f, indent=2)
        source = "settings"

    emit_event(run_id, EventTypes.TF_TFVARS, {"file": tfvars.name, "source": source})
    return tfvars


def init(tf_dir: Path, run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    _terraform(tf_dir, ["init", "-no-color"], run_id, on_line)
    emit_event(run_id, EventTypes.TF_INIT, {"ok": True})


def validate(tf_dir: Path, run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    _terraform(tf_dir, ["validate", "-no-color"], run_id, on_line)
    emit_event(run_id, EventTypes.TF_VALIDATE, {"ok": True})


def summarize_plan(output: str) -> Dict[str, int]:
    """
    Count resource actions in plan output.

    Args:
        output: Text output of terraform plan

    Returns:
        Dictionary with adds, changes and destroys
    """
    return {
        "adds": output.count("will be created"),
        "changes": output.count("will be updated"),
        "destroys": output.count("will be destroyed"),
    }


def plan(tf_dir: Path, var_file: str, run_id: Optional[str] = None, on_line: LineCallback = None) -> Dict[str, int]:
    """
    Run terraform plan and save it to tfplan.

    Returns:
        Plan summary counts
    """
    result = _terraform(tf_dir, ["plan", "-no-color", f"-var-file={var_file}", f"-out={PLAN_FILE}"], run_id, on_line)
    summary = summarize_plan(result.output)
    emit_event(run_id, EventTypes.TF_PLAN, {**summary, "ok": True})
    return summary


def plan_destroy(tf_dir: Path, var_file: str, run_id: Optional[str] = None, on_line: LineCallback = None) -> Dict[str, int]:
    """
    Run terraform plan -destroy and save it to destroy-plan.

    Returns:
        Plan summary counts
    """
    result = _terraform(
        tf_dir,
        ["plan", "-destroy", "-no-color", f"-var-file={var_file}", f"-out={DESTROY_PLAN_FILE}"],
        run_id,
        on_line,
    )
    summary = summarize_plan(result.output)
    emit_event(run_id, EventTypes.TF_DESTROY_PLAN, {**summary, "ok": True})
    return summary


def apply_plan(tf_dir: Path, plan_file: str, run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    """Apply a saved plan. Saved plans never prompt, so no -auto-approve."""
    _terraform(tf_dir, ["apply", "-no-color", plan_file], run_id, on_line)


def show(tf_dir: Path, max_lines: int = 20, run_id: Optional[str] = None) -> list[str]:
    """
    First lines of `terraform show`.

    Returns:
        Up to max_lines lines of state description
    """
    result = _terraform(tf_dir, ["show", "-no-color"], run_id, check=False)
    return result.lines[:max_lines]


def output_raw(tf_dir: Path, name: str, run_id: Optional[str] = None) -> Optional[str]:
    """
    Get a specific terraform output value.

    Args:
        tf_dir: Terraform directory
        name: Name of the output

    Returns:
        Output value, or None if it isn't available
    """
    result = _terraform(tf_dir, ["output", "-raw", name], run_id, check=False)
    if not result.ok:
        logger.warning(f"Terraform output '{name}' not available")
        return None

    value = result.output.strip()
    return value or None


def outputs(tf_dir: Path, run_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Get terraform outputs as plain values.

    Returns:
        Dictionary mapping output name to value
    """
    result = _terraform(tf_dir, ["output", "-json"], run_id, check=False)
    if not result.ok:
        return {}

    try:
        raw = json.loads(result.output or "{}")
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse terraform outputs: {e}")
        return {}

    values = {name: entry.get("value") for name, entry in raw.items() if isinstance(entry, dict)}
    emit_event(run_id, EventTypes.TF_OUTPUTS, {"names": sorted(values)})
    return values


def remove_plan_files(tf_dir: Path) -> list[str]:
    """
    Delete saved plan files.

    Returns:
        Names of the files removed
    """
    removed = []
    for name in (PLAN_FILE, DESTROY_PLAN_FILE):
        path = Path(tf_dir) / name
        if path.exists():
            path.unlink()
            removed.append(name)
    return removed
