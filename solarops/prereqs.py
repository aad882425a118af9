"""
Prerequisite checks: required CLIs and AWS credentials.
"""

import logging
from typing import Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import PrerequisiteError
from .events import emit_event, EventTypes
from .runner import command_exists

logger = logging.getLogger(__name__)

DEPLOY_TOOLS = ("terraform", "aws", "kubectl")
DESTROY_TOOLS = ("terraform", "aws")
CLEANUP_TOOLS = ("aws", "eksctl")
QUICK_CLEANUP_TOOLS = ("kubectl", "eksctl")
SETUP_TOOLS = ("eksctl", "kubectl", "aws")

INSTALL_HINTS = {
    "terraform": "Please install Terraform first.",
    "aws": "Please install AWS CLI first.",
    "kubectl": "https://kubernetes.io/docs/tasks/tools/",
    "eksctl": "https://eksctl.io/introduction/#installation",
}


def check_tools(names: Iterable[str]) -> List[str]:
    """
    Find executables that aren't on PATH.

    Args:
        names: Executable names

    Returns:
        Names of the missing executables, in the order given
    """
    return [name for name in names if not command_exists(name)]


def check_aws_credentials(region: str) -> Dict[str, str]:
    """
    Verify AWS credentials with STS.

    Args:
        region: AWS region

    Returns:
        Caller identity (Account, Arn, UserId)

    Raises:
        PrerequisiteError: If credentials are missing or rejected
    """
    try:
        sts = boto3.client('sts', region_name=region)
        identity = sts.get_caller_identity()
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"AWS credential check failed: {e}")
        raise PrerequisiteError(["AWS credentials not configured. Please run 'aws configure' first."])

    return {key: identity.get(key, "") for key in ("Account", "Arn", "UserId")}


def require(region: str, tools: Iterable[str], run_id: Optional[str] = None) -> Dict[str, str]:
    """
    Check tools and credentials, reporting every missing item at once.

    Args:
        region: AWS region for the credential check
        tools: Executables that must be installed
        run_id: Run receiving PREREQS_OK / ERROR events

    Returns:
        AWS caller identity

    Raises:
        PrerequisiteError: Listing every missing tool and/or credential problem
    """
    missing = [
        f"{name} is not installed. {INSTALL_HINTS.get(name, '')}".strip()
        for name in check_tools(tools)
    ]

    identity: Dict[str, str] = {}
    try:
        identity = check_aws_credentials(region)
    except PrerequisiteError as e:
        missing.extend(e.missing)

    if missing:
        emit_event(run_id, EventTypes.ERROR, {
            "reason": "Missing prerequisites",
            "missing": missing,
        })
        raise PrerequisiteError(missing)

    emit_event(run_id, EventTypes.PREREQS_OK, {
        "tools": list(tools),
        "account": identity.get("Account"),
    })
    return identity
