"""
Resource sweep for tearing down the EKS cluster and its eksctl leftovers.

Every step treats "already gone" as success, so a sweep can be re-run until
the account is clean.
"""

import time
import logging
from typing import Callable, List, Optional

import boto3
from botocore.exceptions import ClientError, WaiterError

from ..config import Settings
from ..events import emit_event, EventTypes
from .models import (
    FoundResource, StepOutcome, VerificationResult,
    DONE, SKIPPED, FAILED,
)

logger = logging.getLogger(__name__)

STUCK_STATUSES = ("DELETE_FAILED", "DELETE_IN_PROGRESS")
NOT_FOUND = "NOT_FOUND"

# Ten minutes, polled every 30 seconds
STACK_WAIT = {"Delay": 30, "MaxAttempts": 20}
RETRY_SETTLE_SECONDS = 10
PROPAGATION_SECONDS = 30


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _tags(item: dict) -> dict:
    return {tag['Key']: tag['Value'] for tag in item.get('Tags', [])}


class ClusterJanitor:
    """Deletes the cluster, its node groups, stuck stacks, networking and IAM roles."""

    def __init__(
        self,
        settings: Settings,
        session=None,
        sleep: Callable[[float], None] = time.sleep,
        run_id: Optional[str] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.settings = settings
        self.region = settings.region
        self.cluster_name = settings.cluster_name
        self.run_id = run_id
        self._sleep = sleep
        self._notify = notify or (lambda message: None)

        session = session or boto3.session.Session()
        self.eks = session.client('eks', region_name=self.region)
        self.ec2 = session.client('ec2', region_name=self.region)
        self.cloudformation = session.client('cloudformation', region_name=self.region)
        self.iam = session.client('iam', region_name=self.region)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record(self, outcome: StepOutcome) -> StepOutcome:
        emit_event(self.run_id, EventTypes.CLEANUP_STEP, {
            "step": outcome.name,
            "status": outcome.status,
            "detail": outcome.detail,
            "resources": [r.arn_or_id for r in outcome.resources],
        })
        log = logger.warning if outcome.failed else logger.info
        log(f"{outcome.name}: {outcome.status} {outcome.detail}".rstrip())
        return outcome

    def _api_failure(self, step: str, error: ClientError) -> StepOutcome:
        """Record an AWS API error that stopped a step."""
        return self._record(StepOutcome(step, FAILED, _error_code(error) or str(error)))

    def cluster_exists(self) -> bool:
        try:
            self.eks.describe_cluster(name=self.cluster_name)
            return True
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return False
            raise

    def find_vpc_ids(self, name_tag: str) -> List[str]:
        """IDs of VPCs whose Name tag equals name_tag."""
        response = self.ec2.describe_vpcs(Filters=[{'Name': 'tag:Name', 'Values': [name_tag]}])
        return [vpc['VpcId'] for vpc in response.get('Vpcs', [])]

    def stack_status(self, stack_name: str) -> str:
        """Current status of a stack, or NOT_FOUND once it's gone."""
        try:
            response = self.cloudformation.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if _error_code(e) == "ValidationError":
                return NOT_FOUND
            raise

        stacks = response.get('Stacks', [])
        return stacks[0]['StackStatus'] if stacks else NOT_FOUND

    def _list_eksctl_stacks(self) -> List[dict]:
        paginator = self.cloudformation.get_paginator('list_stacks')
        summaries = []
        for page in paginator.paginate():
            for summary in page.get('StackSummaries', []):
                if self.settings.stack_prefix in summary['StackName']:
                    summaries.append(summary)
        return summaries

    # ------------------------------------------------------------------
    # EKS
    # ------------------------------------------------------------------

    def delete_node_groups(self) -> StepOutcome:
        """
        Delete every node group of the cluster and wait for them to go.

        Returns:
            StepOutcome, skipped if the cluster or its node groups are gone
        """
        try:
            paginator = self.eks.get_paginator('list_nodegroups')
            nodegroups = []
            for page in paginator.paginate(clusterName=self.cluster_name):
                nodegroups.extend(page.get('nodegroups', []))
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return self._record(StepOutcome("node-groups", SKIPPED, "cluster not found"))
            return self._record(StepOutcome("node-groups", FAILED, str(e)))

        if not nodegroups:
            return self._record(StepOutcome("node-groups", SKIPPED, "no node groups found"))

        resources = [FoundResource('nodegroup', name, reason=f"node group of {self.cluster_name}") for name in nodegroups]
        errors = []

        for name in nodegroups:
            self._notify(f"Deleting node group: {name}")
            try:
                self.eks.delete_nodegroup(clusterName=self.cluster_name, nodegroupName=name)
            except ClientError as e:
                if _error_code(e) not in ("ResourceNotFoundException", "ResourceInUseException"):
                    errors.append(f"{name}: {e}")

        self._notify("Waiting for node groups to be deleted...")
        waiter = self.eks.get_waiter('nodegroup_deleted')
        for name in nodegroups:
            try:
                waiter.wait(clusterName=self.cluster_name, nodegroupName=name)
                self._notify(f"Node group {name} deleted")
            except WaiterError as e:
                errors.append(f"{name}: {e}")

        if errors:
            return self._record(StepOutcome("node-groups", FAILED, "; ".join(errors), resources))
        return self._record(StepOutcome("node-groups", DONE, f"deleted {len(nodegroups)}", resources))

    def delete_cluster(self) -> StepOutcome:
        """Delete the EKS control plane and wait until it's gone (10-15 minutes)."""
        try:
            exists = self.cluster_exists()
        except ClientError as e:
            return self._api_failure("eks-cluster", e)
        if not exists:
            return self._record(StepOutcome("eks-cluster", SKIPPED, f"{self.cluster_name} not found"))

        self._notify(f"Deleting cluster: {self.cluster_name}")
        try:
            self.eks.delete_cluster(name=self.cluster_name)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return self._record(StepOutcome("eks-cluster", SKIPPED, f"{self.cluster_name} not found"))
            return self._record(StepOutcome("eks-cluster", FAILED, str(e)))

        self._notify("Waiting for cluster to be deleted (this may take 10-15 minutes)...")
        try:
            self.eks.get_waiter('cluster_deleted').wait(name=self.cluster_name)
        except WaiterError as e:
            return self._record(StepOutcome("eks-cluster", FAILED, f"cluster still deleting: {e}"))

        return self._record(StepOutcome(
            "eks-cluster", DONE, "deleted",
            [FoundResource('eks', self.cluster_name, reason="cluster")],
        ))

    # ------------------------------------------------------------------
    # CloudFormation
    # ------------------------------------------------------------------

    def find_stuck_stacks(self) -> List[FoundResource]:
        """eksctl stacks whose deletion failed or is still in progress."""
        return [
            FoundResource('cloudformation', summary['StackName'], reason=summary['StackStatus'])
            for summary in self._list_eksctl_stacks()
            if summary['StackStatus'] in STUCK_STATUSES
        ]

    def recover_stuck_stacks(self) -> StepOutcome:
        """
        Push stuck eksctl stacks through deletion.

        DELETE_FAILED stacks get their delete retried. Stacks still deleting
        have the VPC blockers cleared, then get up to ten minutes to finish.
        A timeout is reported but doesn't abort the sweep, and an API error on
        one stack marks it failed without stopping the others.

        Returns:
            StepOutcome
        """
        try:
            stuck = self.find_stuck_stacks()
        except ClientError as e:
            return self._api_failure("stuck-stacks", e)
        if not stuck:
            return self._record(StepOutcome("stuck-stacks", SKIPPED, "no stuck CloudFormation stacks found"))

        self._notify("Found stuck CloudFormation stacks: " + " ".join(s.arn_or_id for s in stuck))
        still_deleting = []
        failed = []

        for stack in stuck:
            name = stack.arn_or_id
            try:
                result = self._recover_stack(name)
            except ClientError as e:
                logger.warning(f"Could not recover stack {name}: {e}")
                failed.append(f"{name} ({_error_code(e) or e})")
                continue

            if result == "DELETE_FAILED":
                failed.append(name)
            elif result == "DELETE_IN_PROGRESS":
                still_deleting.append(name)

        if failed:
            return self._record(StepOutcome("stuck-stacks", FAILED, "deletion failed: " + ", ".join(failed), stuck))
        if still_deleting:
            return self._record(StepOutcome("stuck-stacks", DONE, "still deleting: " + ", ".join(still_deleting), stuck))
        return self._record(StepOutcome("stuck-stacks", DONE, f"recovered {len(stuck)}", stuck))

    def _recover_stack(self, name: str) -> str:
        """Retry or wait out one stuck stack. Returns the status it was left in."""
        status = self.stack_status(name)

        if status == "DELETE_FAILED":
            self._notify(f"Stack {name} is in DELETE_FAILED state, retrying deletion...")
            self.cloudformation.delete_stack(StackName=name)
            self._sleep(RETRY_SETTLE_SECONDS)
            status = self.stack_status(name)

        if status != "DELETE_IN_PROGRESS":
            return status

        self._notify(f"Stack {name} is deleting, checking for blocking resources...")
        for vpc_id in self.find_vpc_ids(f"{name}/VPC"):
            self._notify(f"Found VPC blocking deletion: {vpc_id}")
            self.clear_vpc_blockers(vpc_id)

        self._notify("Waiting for stack deletion (max 10 minutes)...")
        try:
            self.cloudformation.get_waiter('stack_delete_complete').wait(
                StackName=name, WaiterConfig=STACK_WAIT
            )
        except WaiterError:
            final = self.stack_status(name)
            if final == "DELETE_IN_PROGRESS":
                logger.warning(f"Stack {name} deletion timed out, may still be deleting in background")
            return final

        self._notify(f"Stack {name} deleted")
        return NOT_FOUND

    def clear_vpc_blockers(self, vpc_id: str) -> List[FoundResource]:
        """
        Delete security groups and detached ENIs that keep a VPC alive.

        Individual failures are only logged: a group may still be referenced
        by something CloudFormation is about to remove.

        Args:
            vpc_id: VPC ID

        Returns:
            Resources that were deleted
        """
        removed = []
        vpc_filter = [{'Name': 'vpc-id', 'Values': [vpc_id]}]

        try:
            groups = self.ec2.describe_security_groups(Filters=vpc_filter).get('SecurityGroups', [])
        except ClientError as e:
            logger.warning(f"Could not list security groups in {vpc_id}: {e}")
            groups = []
        for group in groups:
            if group.get('GroupName') == 'default':
                continue
            group_id = group['GroupId']
            try:
                self.ec2.delete_security_group(GroupId=group_id)
                removed.append(FoundResource('sg', group_id, _tags(group), reason=f"blocking {vpc_id}"))
                self._notify(f"Deleted security group: {group_id}")
            except ClientError as e:
                logger.warning(f"Could not delete security group {group_id} (may have dependencies): {e}")

        try:
            interfaces = self.ec2.describe_network_interfaces(Filters=vpc_filter).get('NetworkInterfaces', [])
        except ClientError as e:
            logger.warning(f"Could not list network interfaces in {vpc_id}: {e}")
            interfaces = []
        for eni in interfaces:
            if eni.get('Status') != 'available':
                continue
            eni_id = eni['NetworkInterfaceId']
            try:
                self.ec2.delete_network_interface(NetworkInterfaceId=eni_id)
                removed.append(FoundResource('eni', eni_id, reason=f"blocking {vpc_id}"))
                self._notify(f"Deleted network interface: {eni_id}")
            except ClientError as e:
                logger.warning(f"Could not delete network interface {eni_id}: {e}")

        self._notify("Waiting for resource cleanup to propagate...")
        self._sleep(PROPAGATION_SECONDS)
        return removed

    # ------------------------------------------------------------------
    # Networking
    # ------------------------------------------------------------------

    def delete_networking(self) -> StepOutcome:
        """
        Delete the eksctl VPC and everything inside it, dependencies first.

        Returns:
            StepOutcome, skipped if no eksctl VPC exists
        """
        try:
            vpc_ids = self.find_vpc_ids(self.settings.eksctl_vpc_name)
        except ClientError as e:
            return self._api_failure("networking", e)
        if not vpc_ids:
            return self._record(StepOutcome("networking", SKIPPED, "no VPC found for cleanup"))

        removed: List[FoundResource] = []
        errors: List[str] = []
        for vpc_id in vpc_ids:
            self._notify(f"Found VPC: {vpc_id}")
            try:
                self._delete_vpc_contents(vpc_id, removed, errors)
            except ClientError as e:
                logger.warning(f"Could not clean up {vpc_id}: {e}")
                errors.append(f"{vpc_id}: {_error_code(e) or e}")

        if errors:
            return self._record(StepOutcome("networking", FAILED, "; ".join(errors), removed))
        return self._record(StepOutcome("networking", DONE, f"deleted {', '.join(vpc_ids)}", removed))

    def _delete_vpc_contents(self, vpc_id: str, removed: List[FoundResource], errors: List[str]) -> None:
        vpc_filter = [{'Name': 'vpc-id', 'Values': [vpc_id]}]

        def attempt(service: str, resource_id: str, call, ignore_errors: bool = False, **kwargs) -> bool:
            try:
                call(**kwargs)
            except ClientError as e:
                if _error_code(e).endswith("NotFound"):
                    return True
                if ignore_errors:
                    logger.warning(f"Could not delete {service} {resource_id}: {e}")
                else:
                    errors.append(f"{service} {resource_id}: {_error_code(e) or e}")
                return False
            removed.append(FoundResource(service, resource_id, reason=f"in {vpc_id}"))
            self._notify(f"Deleted {service}: {resource_id}")
            return True

        # NAT gateways hold Elastic IPs and subnet ENIs
        nat_ids = [
            nat['NatGatewayId']
            for nat in self.ec2.describe_nat_gateways(
                Filter=vpc_filter + [{'Name': 'state', 'Values': ['available']}]
            ).get('NatGateways', [])
        ]
        for nat_id in nat_ids:
            attempt('nat', nat_id, self.ec2.delete_nat_gateway, NatGatewayId=nat_id)
        if nat_ids:
            try:
                self.ec2.get_waiter('nat_gateway_deleted').wait(NatGatewayIds=nat_ids)
            except WaiterError as e:
                logger.warning(f"NAT gateways still deleting: {e}")

        addresses = self.ec2.describe_addresses(Filters=[{'Name': 'domain', 'Values': ['vpc']}]).get('Addresses', [])
        for address in addresses:
            if address.get('AssociationId'):
                continue
            allocation_id = address['AllocationId']
            attempt('eip', allocation_id, self.ec2.release_address, ignore_errors=True, AllocationId=allocation_id)

        gateways = self.ec2.describe_internet_gateways(
            Filters=[{'Name': 'attachment.vpc-id', 'Values': [vpc_id]}]
        ).get('InternetGateways', [])
        for gateway in gateways:
            igw_id = gateway['InternetGatewayId']
            if attempt('igw-attachment', igw_id, self.ec2.detach_internet_gateway, InternetGatewayId=igw_id, VpcId=vpc_id):
                attempt('igw', igw_id, self.ec2.delete_internet_gateway, InternetGatewayId=igw_id)

        for subnet in self.ec2.describe_subnets(Filters=vpc_filter).get('Subnets', []):
            attempt('subnet', subnet['SubnetId'], self.ec2.delete_subnet, SubnetId=subnet['SubnetId'])

        route_tables = self.ec2.describe_route_tables(
            Filters=vpc_filter + [{'Name': 'association.main', 'Values': ['false']}]
        ).get('RouteTables', [])
        for table in route_tables:
            if any(assoc.get('Main') for assoc in table.get('Associations', [])):
                continue
            attempt('rtb', table['RouteTableId'], self.ec2.delete_route_table, RouteTableId=table['RouteTableId'])

        for group in self.ec2.describe_security_groups(Filters=vpc_filter).get('SecurityGroups', []):
            if group.get('GroupName') == 'default':
                continue
            attempt('sg', group['GroupId'], self.ec2.delete_security_group, ignore_errors=True, GroupId=group['GroupId'])

        attempt('vpc', vpc_id, self.ec2.delete_vpc, VpcId=vpc_id)

    # ------------------------------------------------------------------
    # IAM
    # ------------------------------------------------------------------

    def iam_role_prefixes(self) -> List[str]:
        prefix = self.settings.stack_prefix
        return [f"{prefix}-cluster-ServiceRole", f"{prefix}-nodegroup"]

    def find_iam_roles(self) -> List[str]:
        prefixes = tuple(self.iam_role_prefixes())
        roles = []
        paginator = self.iam.get_paginator('list_roles')
        for page in paginator.paginate():
            for role in page.get('Roles', []):
                if role['RoleName'].startswith(prefixes):
                    roles.append(role['RoleName'])
        return roles

    def delete_iam_roles(self) -> StepOutcome:
        """Detach policies from, then delete, the roles eksctl created."""
        try:
            roles = self.find_iam_roles()
        except ClientError as e:
            return self._api_failure("iam-roles", e)
        if not roles:
            return self._record(StepOutcome("iam-roles", SKIPPED, "no eksctl roles found"))

        removed = []
        errors = []
        for role_name in roles:
            self._notify(f"Detaching policies from role: {role_name}")
            try:
                attached = self.iam.get_paginator('list_attached_role_policies')
                for page in attached.paginate(RoleName=role_name):
                    for policy in page.get('AttachedPolicies', []):
                        self.iam.detach_role_policy(RoleName=role_name, PolicyArn=policy['PolicyArn'])

                inline = self.iam.get_paginator('list_role_policies')
                for page in inline.paginate(RoleName=role_name):
                    for policy_name in page.get('PolicyNames', []):
                        self.iam.delete_role_policy(RoleName=role_name, PolicyName=policy_name)

                self._notify(f"Deleting role: {role_name}")
                self.iam.delete_role(RoleName=role_name)
                removed.append(FoundResource('iam', role_name, reason="eksctl role"))
            except ClientError as e:
                if _error_code(e) == "NoSuchEntity":
                    continue
                errors.append(f"{role_name}: {_error_code(e) or e}")

        if errors:
            return self._record(StepOutcome("iam-roles", FAILED, "; ".join(errors), removed))
        return self._record(StepOutcome("iam-roles", DONE, f"deleted {len(removed)}", removed))

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self) -> VerificationResult:
        """Check what survived the sweep."""
        result = VerificationResult(
            cluster_exists=self.cluster_exists(),
            stacks=[
                summary['StackName'] for summary in self._list_eksctl_stacks()
                if summary['StackStatus'] != "DELETE_COMPLETE"
            ],
            vpcs=self.find_vpc_ids(self.settings.eksctl_vpc_name),
        )
        emit_event(self.run_id, EventTypes.VERIFY, result.to_dict())
        return result

    def verify_terraform_teardown(self, vpc_name: Optional[str] = None) -> VerificationResult:
        """Check the cluster and the Terraform-named VPC are gone."""
        result = VerificationResult(
            cluster_exists=self.cluster_exists(),
            vpcs=self.find_vpc_ids(vpc_name or self.settings.vpc_name),
        )
        emit_event(self.run_id, EventTypes.VERIFY, result.to_dict())
        return result
