"""
eksctl wrapper for creating and deleting the cluster.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from .config import Settings
from .errors import CommandError
from .events import emit_event, EventTypes
from .runner import run_command, command_succeeds

logger = logging.getLogger(__name__)


def create_cluster_args(settings: Settings, ssh_key: Optional[Path] = None) -> list[str]:
    """
    Build the `eksctl create cluster` command line.

    Args:
        settings: Operational settings
        ssh_key: Public key enabling SSH access to nodes, if present

    Returns:
        argv list
    """
    argv = [
        "eksctl", "create", "cluster",
        "--name", settings.cluster_name,
        "--region", settings.region,
        "--nodegroup-name", settings.setup_nodegroup_name,
        "--node-type", settings.node_type,
        "--nodes", str(settings.desired_nodes),
        "--nodes-min", str(settings.min_nodes),
        "--nodes-max", str(settings.max_nodes),
        "--managed",
        "--with-oidc",
    ]
    if ssh_key is not None:
        argv += ["--ssh-access", "--ssh-public-key", str(ssh_key)]
    return argv


def create_cluster(
    settings: Settings,
    ssh_key: Optional[Path] = None,
    run_id: Optional[str] = None,
    on_line: Optional[Callable[[str], None]] = None,
) -> None:
    run_command(create_cluster_args(settings, ssh_key), run_id=run_id, on_line=on_line)
    emit_event(run_id, EventTypes.CLUSTER_CREATED, {
        "cluster": settings.cluster_name,
        "region": settings.region,
        "ssh_access": ssh_key is not None,
    })


def cluster_exists(cluster_name: str, region: str, run_id: Optional[str] = None) -> bool:
    return command_succeeds(["eksctl", "get", "cluster", "--name", cluster_name, "--region", region], run_id=run_id)


def delete_cluster(
    cluster_name: str,
    region: str,
    run_id: Optional[str] = None,
    on_line: Optional[Callable[[str], None]] = None,
) -> bool:
    """
    Delete the cluster and the CloudFormation stacks eksctl created for it.

    Returns:
        True if eksctl reported success
    """
    try:
        run_command(
            ["eksctl", "delete", "cluster", "--name", cluster_name, "--region", region, "--wait"],
            run_id=run_id,
            on_line=on_line,
        )
    except CommandError as e:
        logger.warning(f"eksctl delete failed: {e}")
        emit_event(run_id, EventTypes.EKSCTL_DELETE, {"ok": False, "returncode": e.returncode})
        return False

    emit_event(run_id, EventTypes.EKSCTL_DELETE, {"ok": True})
    return True
