"""
kubectl and kubeconfig helpers.
"""

import logging
from typing import Callable, Optional

from .events import emit_event, EventTypes
from .runner import run_command, command_succeeds

logger = logging.getLogger(__name__)

LineCallback = Optional[Callable[[str], None]]


def _kubectl(args: list[str], run_id: Optional[str] = None, on_line: LineCallback = None, check: bool = True):
    return run_command(["kubectl", *args], run_id=run_id, check=check, on_line=on_line)


def update_kubeconfig(cluster_name: str, region: str, run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    """Point kubectl at the EKS cluster."""
    run_command(
        ["aws", "eks", "update-kubeconfig", "--region", region, "--name", cluster_name],
        run_id=run_id,
        on_line=on_line,
    )
    emit_event(run_id, EventTypes.KUBECONFIG_UPDATED, {"cluster": cluster_name, "region": region})


def cluster_info(run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    _kubectl(["cluster-info"], run_id, on_line)


def cluster_reachable(run_id: Optional[str] = None) -> bool:
    return command_succeeds(["kubectl", "cluster-info"], run_id=run_id)


def get_nodes(run_id: Optional[str] = None, on_line: LineCallback = None) -> list[str]:
    return _kubectl(["get", "nodes"], run_id, on_line).lines


def get_namespaces(run_id: Optional[str] = None, on_line: LineCallback = None) -> list[str]:
    return _kubectl(["get", "namespaces"], run_id, on_line).lines


def wait_for_pods(namespace: str, label: str, timeout: int, run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    """Block until pods labelled app=<label> are Ready."""
    _kubectl(
        ["wait", "--for=condition=ready", "pod", "-l", f"app={label}", "-n", namespace, f"--timeout={timeout}s"],
        run_id,
        on_line,
    )


def wait_for_load_balancer(service: str, namespace: str, timeout: int, run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    """Block until the service has a LoadBalancer ingress."""
    _kubectl(
        [
            "wait",
            "--for=jsonpath={.status.loadBalancer.ingress}",
            f"service/{service}",
            "-n", namespace,
            f"--timeout={timeout}s",
        ],
        run_id,
        on_line,
    )


def load_balancer_hostname(service: str, namespace: str, run_id: Optional[str] = None) -> Optional[str]:
    """
    Hostname of the service's LoadBalancer.

    Returns:
        Hostname, or None if not provisioned yet
    """
    result = _kubectl(
        ["get", "svc", service, "-n", namespace, "-o", "jsonpath={.status.loadBalancer.ingress[0].hostname}"],
        run_id,
        check=False,
    )
    hostname = result.output.strip()
    if not result.ok or not hostname:
        return None
    return hostname


def delete_namespace_resources(namespace: str, run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    _kubectl(["delete", "all", "--all", "-n", namespace, "--ignore-not-found=true"], run_id, on_line)


def delete_namespace(namespace: str, run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    _kubectl(["delete", "namespace", namespace, "--ignore-not-found=true"], run_id, on_line)


def delete_load_balancer_services(run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    """Delete LoadBalancer services everywhere so their ELBs don't pin the VPC."""
    _kubectl(
        ["delete", "svc", "--all-namespaces", "--field-selector", "spec.type=LoadBalancer", "--ignore-not-found=true"],
        run_id,
        on_line,
    )


def delete_ingresses(run_id: Optional[str] = None, on_line: LineCallback = None) -> None:
    _kubectl(["delete", "ingress", "--all", "--all-namespaces", "--ignore-not-found=true"], run_id, on_line)


def forget_cluster(cluster_name: str, run_id: Optional[str] = None) -> None:
    """Remove the cluster and its context from kubeconfig. Missing entries are fine."""
    for kind in ("delete-cluster", "delete-context"):
        if not command_succeeds(["kubectl", "config", kind, cluster_name], run_id=run_id):
            logger.debug(f"kubectl config {kind} {cluster_name} had nothing to remove")
    emit_event(run_id, EventTypes.KUBECONFIG_CLEANED, {"cluster": cluster_name})
