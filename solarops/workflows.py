"""
Runbooks: deploy, destroy, cleanup, quick cleanup and cluster setup.

Each workflow records a run under SOLAROPS_HOME and returns a result
dictionary whose "status" is succeeded, cancelled or failed. Confirmations
are requested through the confirm/ask callables so callers decide how to
prompt.
"""

import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from . import console, eksctl, kube, prereqs, terraform
from .cleanup import ClusterJanitor, CleanupReport
from .config import Settings
from .errors import CommandError, PrerequisiteError
from .events import emit_event, EventTypes
from .smoke import check_url
from .state import create_run_dir, new_run_id, write_run_json

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]
Ask = Callable[[str], str]
LineCallback = Optional[Callable[[str], None]]

K8S_SETTLE_SECONDS = 30

SUCCEEDED = "succeeded"
CANCELLED = "cancelled"
FAILED = "failed"


def _start_run(workflow: str, settings: Settings) -> str:
    run_id = new_run_id()
    create_run_dir(run_id)
    write_run_json(run_id, workflow, settings.to_dict())
    emit_event(run_id, EventTypes.RUN_START, {"workflow": workflow})
    return run_id


def _cancelled(run_id: str, reason: str) -> Dict[str, Any]:
    console.message(reason)
    emit_event(run_id, EventTypes.CONFIRM_DECLINED, {"reason": reason})
    emit_event(run_id, EventTypes.CANCELLED, {})
    return {"run_id": run_id, "status": CANCELLED, "reason": reason}


def _failed(run_id: str, reason: str, **data: Any) -> Dict[str, Any]:
    console.error(reason)
    emit_event(run_id, EventTypes.ERROR, {"reason": reason, **data})
    return {"run_id": run_id, "status": FAILED, "error": reason}


def _succeeded(run_id: str, **data: Any) -> Dict[str, Any]:
    emit_event(run_id, EventTypes.DONE, data)
    return {"run_id": run_id, "status": SUCCEEDED, **data}


def _run(workflow: str, settings: Settings, body: Callable[[str], Dict[str, Any]]) -> Dict[str, Any]:
    """
    Execute a workflow body inside a run, turning errors into a failed result.

    KeyboardInterrupt is recorded and re-raised for the CLI to handle.
    """
    run_id = _start_run(workflow, settings)
    logger.info(f"Starting {workflow} run {run_id}")

    try:
        return body(run_id)
    except PrerequisiteError as e:
        for item in e.missing:
            console.error(item)
        return {"run_id": run_id, "status": FAILED, "error": str(e)}
    except CommandError as e:
        for tail_line in e.last_lines[-10:]:
            console.line(f"   {tail_line}")
        return _failed(run_id, str(e), hint="Check commands.log for details", last_lines=e.last_lines)
    except (ClientError, BotoCoreError) as e:
        return _failed(run_id, f"AWS API call failed: {e}")
    except KeyboardInterrupt:
        emit_event(run_id, EventTypes.ERROR, {"reason": "Interrupted by user"})
        raise


def _require_terraform_dir(settings: Settings) -> Optional[Path]:
    tf_dir = Path(settings.terraform_dir)
    if not tf_dir.is_dir():
        return None
    return tf_dir


def _print_verification(result) -> None:
    if result.cluster_exists:
        console.warning("EKS cluster still exists!")
    else:
        console.message("EKS cluster successfully removed")

    if result.stacks:
        console.warning("Some CloudFormation stacks remain: " + " ".join(result.stacks))
        console.line("    These may still be deleting in the background")

    if result.vpcs:
        console.warning("VPC still exists: " + " ".join(result.vpcs))
    else:
        console.message("VPC successfully removed")


def deploy_terraform(
    settings: Settings,
    confirm: Confirm,
    on_line: LineCallback = console.line,
    smoke_retries: int = 12,
) -> Dict[str, Any]:
    """
    Provision the EKS stack with Terraform and wait for the app to come up.

    Args:
        settings: Operational settings
        confirm: Asked once before applying, since resources cost money
        on_line: Receives external command output
        smoke_retries: Attempts for the post-deploy HTTP check

    Returns:
        Result dictionary, with "url" once the LoadBalancer is known
    """
    def body(run_id: str) -> Dict[str, Any]:
        console.header("Solar System EKS Deployment with Terraform")

        tf_dir = _require_terraform_dir(settings)
        if tf_dir is None:
            return _failed(run_id, "Terraform directory not found. Please run this from the project root.")

        console.header("Checking Prerequisites")
        prereqs.require(settings.region, prereqs.DEPLOY_TOOLS, run_id)
        console.message("All prerequisites met")

        tfvars = terraform.ensure_tfvars(tf_dir, settings, run_id)
        console.message(f"Using variables file {tfvars.name}")

        console.header("Initializing Terraform")
        terraform.init(tf_dir, run_id, on_line)
        console.message("Terraform initialized successfully")

        console.header("Validating Terraform Configuration")
        terraform.validate(tf_dir, run_id, on_line)
        console.message("Terraform configuration is valid")

        console.header("Planning Terraform Deployment")
        summary = terraform.plan(tf_dir, tfvars.name, run_id, on_line)
        console.message(
            f"Plan: {summary['adds']} to add, {summary['changes']} to change, {summary['destroys']} to destroy"
        )

        console.header("Applying Terraform Deployment")
        console.warning("This will create AWS resources that may incur costs.")
        if not confirm("Do you want to continue?"):
            return _cancelled(run_id, "Deployment cancelled by user.")

        terraform.apply_plan(tf_dir, terraform.PLAN_FILE, run_id, on_line)
        emit_event(run_id, EventTypes.TF_APPLY_DONE, {"ok": True})
        console.message("Infrastructure deployed successfully")

        console.header("Configuring kubectl")
        cluster_name = terraform.output_raw(tf_dir, "cluster_name", run_id) or settings.cluster_name
        region = terraform.output_raw(tf_dir, "aws_region", run_id) or settings.region
        kube.update_kubeconfig(cluster_name, region, run_id, on_line)
        console.message("Verifying cluster connection...")
        kube.cluster_info(run_id, on_line)
        console.message("Cluster connection verified")

        console.header("Waiting for Application to be Ready")
        console.message("Waiting for pods to be ready...")
        kube.wait_for_pods(settings.namespace, settings.app_label, settings.wait_timeout, run_id, on_line)
        console.message("Waiting for LoadBalancer to be provisioned...")
        kube.wait_for_load_balancer(settings.service_name, settings.namespace, settings.wait_timeout, run_id, on_line)
        emit_event(run_id, EventTypes.APP_READY, {"namespace": settings.namespace})
        console.message("Application is ready")

        console.header("Application Access Information")
        url = None
        hostname = kube.load_balancer_hostname(settings.service_name, settings.namespace, run_id)
        if hostname:
            url = f"http://{hostname}"
            emit_event(run_id, EventTypes.APP_URL, {"url": url})
            console.message("Solar System Application is accessible at:")
            console.line(f"   {url}")
            console.message("Useful commands:")
            ns = settings.namespace
            console.line(f"   kubectl get pods -n {ns}")
            console.line(f"   kubectl get svc -n {ns}")
            console.line(f"   kubectl logs -f deployment/{settings.deployment_name} -n {ns}")
            console.line(f"   kubectl describe deployment {settings.deployment_name} -n {ns}")

            smoke = check_url(url, retries=smoke_retries)
            if smoke.success:
                emit_event(run_id, EventTypes.SMOKE_OK, smoke.details)
                console.message(smoke.message)
            else:
                emit_event(run_id, EventTypes.SMOKE_FAIL, smoke.details)
                console.warning(f"{smoke.message}; DNS for a new LoadBalancer can take a few minutes")
        else:
            console.warning("LoadBalancer URL not yet available. Run the following command to check:")
            console.line(f"   kubectl get svc -n {settings.namespace}")

        console.header("Terraform Outputs")
        tf_outputs = terraform.outputs(tf_dir, run_id)
        for name, value in sorted(tf_outputs.items()):
            console.line(f"{name} = {value}")

        console.header("Deployment Complete!")
        console.message("Your Solar System application is now running on AWS EKS!")
        console.message("Don't forget to run the cleanup when you're done to avoid charges.")
        return _succeeded(run_id, url=url, cluster=cluster_name, region=region)

    return _run("deploy", settings, body)


def destroy_terraform(
    settings: Settings,
    confirm: Confirm,
    ask: Ask,
    on_line: LineCallback = console.line,
    session=None,
) -> Dict[str, Any]:
    """
    Destroy everything Terraform created, then tidy kubeconfig and local files.

    Args:
        settings: Operational settings
        confirm: Yes/no questions (continue without state, remove tfvars)
        ask: Free-text question; the destroy only proceeds on "DESTROY"
        on_line: Receives external command output
        session: boto3 session used for verification

    Returns:
        Result dictionary with the verification outcome
    """
    def body(run_id: str) -> Dict[str, Any]:
        console.header("Solar System Infrastructure Cleanup")

        tf_dir = _require_terraform_dir(settings)
        if tf_dir is None:
            return _failed(run_id, "Terraform directory not found. Please run this from the project root.")

        console.header("Checking Prerequisites")
        prereqs.require(settings.region, prereqs.DESTROY_TOOLS, run_id)
        if not terraform.is_initialized(tf_dir):
            return _failed(run_id, "Terraform not initialized. Run the deploy first or run 'terraform init' manually.")
        console.message("All prerequisites met")

        console.header("Checking Current Infrastructure")
        if not terraform.has_state(tf_dir):
            console.warning("No Terraform state found. Infrastructure may already be destroyed or was created manually.")
            if not confirm("Continue anyway?"):
                return _cancelled(run_id, "Cleanup cancelled by user.")

        console.message("Current infrastructure:")
        for state_line in terraform.show(tf_dir, 20, run_id):
            console.line(state_line)
        console.line("...")

        console.header("Planning Infrastructure Destruction")
        tfvars = tf_dir / settings.tfvars_file
        if not tfvars.exists() and (tf_dir / "terraform.tfvars.json").exists():
            tfvars = tf_dir / "terraform.tfvars.json"
        terraform.plan_destroy(tf_dir, tfvars.name, run_id, on_line)
        console.message("Terraform destroy plan completed")

        console.header("Destroying Infrastructure")
        console.warning("WARNING: This will PERMANENTLY DELETE all AWS resources created by Terraform!")
        console.warning("This includes:")
        console.bullet("EKS Cluster and all workloads")
        console.bullet("VPC, subnets, and networking components")
        console.bullet("Security groups and IAM roles")
        console.bullet("Load balancers and any attached resources")
        console.bullet("All data and configurations")
        console.warning("This action CANNOT be undone!")

        reply = ask("Are you absolutely sure you want to destroy ALL resources? Type 'DESTROY' to confirm")
        if reply != "DESTROY":
            return _cancelled(run_id, "Destruction cancelled by user.")

        # Outputs vanish with the state, so read the name first
        cluster_name = terraform.output_raw(tf_dir, "cluster_name", run_id) or settings.cluster_name

        console.message("Starting infrastructure destruction...")
        terraform.apply_plan(tf_dir, terraform.DESTROY_PLAN_FILE, run_id, on_line)
        emit_event(run_id, EventTypes.TF_DESTROY_DONE, {"ok": True})
        console.message("Infrastructure destroyed successfully")

        console.header("Cleaning up kubectl Configuration")
        kube.forget_cluster(cluster_name, run_id)
        console.message("kubectl configuration cleaned up")

        console.header("Cleaning up Local Files")
        removed = terraform.remove_plan_files(tf_dir)
        tfvars_removed = False
        user_tfvars = tf_dir / settings.tfvars_file
        if user_tfvars.exists():
            if confirm(f"Remove {settings.tfvars_file} file?"):
                user_tfvars.unlink()
                tfvars_removed = True
                console.message(f"{settings.tfvars_file} removed")
            else:
                console.message(f"{settings.tfvars_file} preserved")
        emit_event(run_id, EventTypes.LOCAL_FILES_CLEANED, {"plans": removed, "tfvars_removed": tfvars_removed})
        console.message("Local cleanup completed")

        console.header("Verifying Cleanup")
        console.message("Checking for remaining AWS resources...")
        verification = None
        try:
            janitor = ClusterJanitor(replace(settings, cluster_name=cluster_name), session=session, run_id=run_id)
            verification = janitor.verify_terraform_teardown()
            _print_verification(verification)
        except (ClientError, BotoCoreError) as e:
            console.warning(f"Could not verify cleanup: {e}")
            emit_event(run_id, EventTypes.WARNING, {"reason": f"Verification failed: {e}"})

        console.header("Cleanup Summary")
        console.message("Infrastructure Cleanup Complete!")
        console.message("Your AWS account should no longer have Solar System resources.")
        console.warning("If you see any remaining resources, they may need manual cleanup.")
        return _succeeded(
            run_id,
            cluster=cluster_name,
            verification=verification.to_dict() if verification else None,
        )

    return _run("destroy", settings, body)


def _cleanup_kubernetes(settings: Settings, run_id: str, on_line: LineCallback, sleep: Callable[[float], None]) -> bool:
    """Delete in-cluster resources whose AWS counterparts block VPC deletion."""
    console.message("Cleaning up Kubernetes resources...")
    if not kube.cluster_reachable(run_id):
        console.warning("Cannot connect to cluster - it may already be deleted")
        return False

    console.message(f"Deleting all resources in {settings.namespace} namespace...")
    kube.delete_namespace_resources(settings.namespace, run_id, on_line)
    console.message(f"Deleting {settings.namespace} namespace...")
    kube.delete_namespace(settings.namespace, run_id, on_line)
    console.message("Deleting any remaining LoadBalancers...")
    kube.delete_load_balancer_services(run_id, on_line)
    console.message("Deleting any remaining ingresses...")
    kube.delete_ingresses(run_id, on_line)

    console.message(f"Waiting {K8S_SETTLE_SECONDS} seconds for LoadBalancers to be cleaned up...")
    sleep(K8S_SETTLE_SECONDS)
    emit_event(run_id, EventTypes.K8S_CLEANED, {"namespace": settings.namespace})
    console.message("Kubernetes resources cleaned up")
    return True


def cleanup_aws(
    settings: Settings,
    confirm: Confirm,
    ask: Ask,
    delete_iam: Optional[bool] = None,
    on_line: LineCallback = console.line,
    session=None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """
    Delete the cluster and every AWS resource left around it.

    eksctl gets the first attempt. Stuck stacks are then pushed through, and
    if eksctl failed the node groups and control plane are deleted directly.
    Networking and, optionally, IAM roles follow. A final verification lists
    anything that survived. Re-running is safe.

    Args:
        settings: Operational settings
        confirm: Yes/no question for the IAM step when delete_iam is None
        ask: Free-text question; nothing is deleted unless it returns "DELETE"
        delete_iam: Delete eksctl IAM roles without asking (True) or skip them (False)
        on_line: Receives external command output
        session: boto3 session
        sleep: Sleep function

    Returns:
        Result dictionary with the step report and verification
    """
    def body(run_id: str) -> Dict[str, Any]:
        console.header("AWS RESOURCE CLEANUP")
        console.line("This will DELETE the following resources:")
        console.bullet(f"EKS Cluster: {settings.cluster_name}")
        console.bullet(f"Node Groups: {settings.nodegroup_name}")
        console.bullet("VPC and networking components")
        console.bullet("Security Groups")
        console.bullet("IAM Roles (if created by eksctl)")
        console.bullet("LoadBalancers and associated resources")

        reply = ask("Are you ABSOLUTELY SURE you want to delete ALL resources? (type 'DELETE' to confirm)")
        if reply != "DELETE":
            return _cancelled(run_id, "Cleanup cancelled. No resources were deleted.")

        console.header("Checking Prerequisites")
        prereqs.require(settings.region, prereqs.CLEANUP_TOOLS, run_id)
        console.message("AWS credentials and eksctl are available")

        console.header("Kubernetes Resources")
        _cleanup_kubernetes(settings, run_id, on_line, sleep)

        console.header("Deleting Cluster with eksctl")
        eksctl_ok = False
        if eksctl.cluster_exists(settings.cluster_name, settings.region, run_id):
            console.message("Deleting cluster with eksctl (this also deletes the VPC, security groups, etc.)")
            eksctl_ok = eksctl.delete_cluster(settings.cluster_name, settings.region, run_id, on_line)
            if eksctl_ok:
                console.message("Cluster and associated resources deleted with eksctl")
            else:
                console.warning("eksctl delete failed, proceeding with manual cleanup")
        else:
            console.message("Cluster not found in eksctl, proceeding with manual cleanup")

        janitor = ClusterJanitor(settings, session=session, sleep=sleep, run_id=run_id, notify=console.message)
        report = CleanupReport()

        console.header("Stuck CloudFormation Stacks")
        report.add(janitor.recover_stuck_stacks())

        if not eksctl_ok:
            console.header("Deleting EKS Node Groups and Cluster")
            report.add(janitor.delete_node_groups())
            report.add(janitor.delete_cluster())

        console.header("Networking")
        report.add(janitor.delete_networking())

        console.header("IAM Roles")
        remove_iam = delete_iam if delete_iam is not None else confirm("Do you want to delete IAM roles created by eksctl?")
        if remove_iam:
            report.add(janitor.delete_iam_roles())
        else:
            console.message("Skipping IAM role cleanup")

        console.header("Final Verification")
        verification = None
        try:
            verification = janitor.verify()
            _print_verification(verification)
        except (ClientError, BotoCoreError) as e:
            console.warning(f"Could not verify cleanup: {e}")
            emit_event(run_id, EventTypes.WARNING, {"reason": f"Verification failed: {e}"})

        for outcome in report.outcomes:
            text = f"{outcome.name}: {outcome.status}" + (f" ({outcome.detail})" if outcome.detail else "")
            if outcome.failed:
                console.warning(text)
            else:
                console.message(text)

        data = {
            "eksctl": eksctl_ok,
            "iam": bool(remove_iam),
            "report": report.to_dict(),
            "verification": verification.to_dict() if verification else None,
        }

        if not report.ok:
            console.warning("Some steps failed. Re-running the cleanup is safe.")
            emit_event(run_id, EventTypes.ERROR, {"reason": "Cleanup steps failed",
                                                  "steps": [o.name for o in report.failures]})
            return {"run_id": run_id, "status": FAILED, "error": "Cleanup steps failed", **data}

        console.header("CLEANUP PROCESS COMPLETED!")
        console.message("Some resources may take a few more minutes to be fully removed.")
        console.message("You can re-run this cleanup to remove anything that remains.")
        return _succeeded(run_id, **data)

    return _run("cleanup", settings, body)


def quick_cleanup(
    settings: Settings,
    ask: Ask,
    on_line: LineCallback = console.line,
) -> Dict[str, Any]:
    """
    Delete LoadBalancers, ingresses and the app namespace, then the cluster via eksctl.

    Args:
        settings: Operational settings
        ask: Free-text question; proceeds only on "yes"
        on_line: Receives external command output

    Returns:
        Result dictionary
    """
    def body(run_id: str) -> Dict[str, Any]:
        console.header("QUICK AWS CLEANUP")
        console.line(f"This will delete cluster: {settings.cluster_name} in region: {settings.region}")

        if ask("Type 'yes' to confirm deletion") != "yes":
            return _cancelled(run_id, "Cancelled")

        prereqs.require(settings.region, prereqs.QUICK_CLEANUP_TOOLS, run_id)

        console.message("Deleting Kubernetes resources first...")
        kube.delete_load_balancer_services(run_id, on_line)
        kube.delete_ingresses(run_id, on_line)
        kube.delete_namespace(settings.namespace, run_id, on_line)
        emit_event(run_id, EventTypes.K8S_CLEANED, {"namespace": settings.namespace})

        console.message("Deleting EKS cluster with eksctl...")
        if not eksctl.delete_cluster(settings.cluster_name, settings.region, run_id, on_line):
            return _failed(run_id, "eksctl delete cluster failed")

        console.message("Cleanup completed! Your AWS costs should stop accumulating.")
        return _succeeded(run_id, cluster=settings.cluster_name)

    return _run("quick-cleanup", settings, body)


def setup_cluster(
    settings: Settings,
    on_line: LineCallback = console.line,
) -> Dict[str, Any]:
    """
    Create the EKS cluster with eksctl and point kubectl at it.

    SSH access to nodes is enabled when the configured public key exists.

    Returns:
        Result dictionary
    """
    def body(run_id: str) -> Dict[str, Any]:
        console.header("Setting up EKS cluster for Solar System application")
        prereqs.require(settings.region, prereqs.SETUP_TOOLS, run_id)
        console.message("Prerequisites check passed")

        console.message(f"Creating EKS cluster: {settings.cluster_name}")
        ssh_key = settings.ssh_key_path
        if ssh_key.is_file():
            console.message("SSH key found, enabling SSH access to nodes")
        else:
            console.warning(f"No SSH key found at {ssh_key}, creating cluster without SSH access")
            ssh_key = None

        eksctl.create_cluster(settings, ssh_key, run_id, on_line)
        console.message("EKS cluster created successfully!")

        console.message("Updating kubeconfig...")
        kube.update_kubeconfig(settings.cluster_name, settings.region, run_id, on_line)

        console.message("Verifying cluster setup...")
        kube.get_nodes(run_id, on_line)
        kube.get_namespaces(run_id, on_line)
        console.message("Using standard LoadBalancer service (AWS Classic ELB)")

        console.header("EKS cluster setup completed successfully!")
        console.line("Cluster Information:")
        console.line(f"  Name: {settings.cluster_name}")
        console.line(f"  Region: {settings.region}")
        console.line(
            f"  Nodes: {settings.desired_nodes} (min: {settings.min_nodes}, max: {settings.max_nodes})"
        )
        return _succeeded(
            run_id,
            cluster=settings.cluster_name,
            region=settings.region,
            ssh_access=ssh_key is not None,
        )

    return _run("setup-cluster", settings, body)
