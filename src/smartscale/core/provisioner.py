#!/usr/bin/env python3
"""
Compute provisioner for EC2-backed k3s workers
"""

import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from smartscale.database.schemas import WorkerNode
from smartscale.exceptions import ProvisioningError
from .placement import PlacementBalancer
from .retry import RetryPolicy, NO_RETRY

logger = logging.getLogger(__name__)

WORKER_ROLE = "Worker"
LIVE_STATES = ["running", "pending"]

USER_DATA_TEMPLATE = """#!/bin/bash
# Install K3s agent and join the cluster
curl -sfL https://get.k3s.io | K3S_URL=https://{master}:6443 K3S_TOKEN={token} sh -
"""


class CapacityClass(str, Enum):
    SPOT = "spot"
    ON_DEMAND = "on-demand"


class ComputeProvisioner:
    """Lists, launches and terminates worker instances"""

    def __init__(
        self,
        ec2_client,
        cluster_id: str,
        subnet_ids: Sequence[str],
        ami_id: str,
        master_address: str,
        instance_type: str = "t3.small",
        security_group_id: Optional[str] = None,
        iam_instance_profile: Optional[str] = None,
        balancer: Optional[PlacementBalancer] = None,
        retry_policy: RetryPolicy = NO_RETRY
    ):
        """
        Initialize provisioner

        Args:
            ec2_client: boto3 EC2 client
            cluster_id: Value of the Cluster tag on workers
            subnet_ids: Worker subnets, in zone tie-break order
            ami_id: Worker image
            master_address: k3s server address workers join
            instance_type: EC2 instance type
            security_group_id: Security group for workers
            iam_instance_profile: Instance profile name for workers
            balancer: Placement balancer
            retry_policy: Policy for read calls; launches are never retried
        """
        self.ec2 = ec2_client
        self.cluster_id = cluster_id
        self.subnet_ids = list(subnet_ids)
        self.ami_id = ami_id
        self.master_address = master_address
        self.instance_type = instance_type
        self.security_group_id = security_group_id
        self.iam_instance_profile = iam_instance_profile
        self.balancer = balancer or PlacementBalancer()
        self.retry_policy = retry_policy

    def list_workers(self) -> List[WorkerNode]:
        """Running or pending instances tagged as this cluster's workers"""
        filters = [
            {"Name": "tag:Role", "Values": [WORKER_ROLE]},
            {"Name": "tag:Cluster", "Values": [self.cluster_id]},
            {"Name": "instance-state-name", "Values": LIVE_STATES}
        ]

        workers = []
        next_token = None
        while True:
            kwargs = {"Filters": filters}
            if next_token:
                kwargs["NextToken"] = next_token
            response = self.retry_policy.call(self.ec2.describe_instances, operation="describe_instances", **kwargs)

            for reservation in response.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    worker = self._to_worker(instance)
                    if worker:
                        workers.append(worker)

            next_token = response.get("NextToken")
            if not next_token:
                break

        logger.debug(f"Inventory: {[w.instance_id for w in workers]}")
        return workers

    def zones_for_subnets(self, subnet_ids: Optional[Sequence[str]] = None) -> Dict[str, List[str]]:
        """Map zone -> subnets; zones appear in the order of subnet_ids"""
        subnet_ids = list(subnet_ids if subnet_ids is not None else self.subnet_ids)
        if not subnet_ids:
            return OrderedDict()

        response = self.retry_policy.call(
            self.ec2.describe_subnets, operation="describe_subnets", SubnetIds=subnet_ids
        )
        zone_of = {
            subnet["SubnetId"]: subnet["AvailabilityZone"]
            for subnet in response.get("Subnets", [])
            if subnet.get("SubnetId") and subnet.get("AvailabilityZone")
        }

        subnets_by_zone: Dict[str, List[str]] = OrderedDict()
        for subnet_id in subnet_ids:
            zone = zone_of.get(subnet_id)
            if zone:
                subnets_by_zone.setdefault(zone, []).append(subnet_id)
        return subnets_by_zone

    def plan_placement(self, workers: Optional[List[WorkerNode]] = None) -> Tuple[str, str]:
        """
        Resolve (zone, subnet_id) for the next worker

        Read-only; lookup errors propagate unchanged.

        Raises:
            PlacementError: If no zone is available
        """
        if workers is None:
            workers = self.list_workers()
        return self.balancer.choose(self.zones_for_subnets(), workers)

    def launch(self, count: int, join_token: str, workers: Optional[List[WorkerNode]] = None) -> List[str]:
        """Plan placement, then launch count workers there"""
        zone, subnet_id = self.plan_placement(workers)
        return self.launch_in(count, join_token, zone, subnet_id)

    def launch_in(self, count: int, join_token: str, zone: str, subnet_id: str) -> List[str]:
        """
        Launch count workers into an already chosen subnet

        Spot capacity is tried first; any provisioning failure falls back to
        one on-demand attempt. Nothing is retried beyond that.

        Raises:
            ProvisioningError: If the on-demand attempt fails too
        """
        user_data = USER_DATA_TEMPLATE.format(master=self.master_address, token=join_token)

        try:
            instance_ids = self._run_instances(count, subnet_id, user_data, CapacityClass.SPOT)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Spot launch failed in {zone}, trying on-demand: {e}")
            try:
                instance_ids = self._run_instances(count, subnet_id, user_data, CapacityClass.ON_DEMAND)
            except (ClientError, BotoCoreError) as e2:
                raise ProvisioningError(f"On-demand launch failed in {zone}: {e2}") from e2

        logger.info(f"Launched {instance_ids} in {zone} ({subnet_id})")
        return instance_ids

    def terminate(self, instance_id: str) -> None:
        """Request termination; disappearance from inventory is the only confirmation"""
        self.retry_policy.call(
            self.ec2.terminate_instances,
            operation="terminate_instances",
            InstanceIds=[instance_id]
        )
        logger.info(f"Termination requested for {instance_id}")

    def _run_instances(self, count: int, subnet_id: str, user_data: str,
                       capacity: CapacityClass) -> List[str]:
        params = {
            "ImageId": self.ami_id,
            "InstanceType": self.instance_type,
            "MinCount": count,
            "MaxCount": count,
            "SubnetId": subnet_id,
            "UserData": user_data,
            "TagSpecifications": [{
                "ResourceType": "instance",
                "Tags": [
                    {"Key": "Role", "Value": WORKER_ROLE},
                    {"Key": "Name", "Value": f"k3s-worker-{int(time.time() * 1000)}"},
                    {"Key": "Cluster", "Value": self.cluster_id},
                    {"Key": "CapacityClass", "Value": capacity.value}
                ]
            }]
        }
        if self.security_group_id:
            params["SecurityGroupIds"] = [self.security_group_id]
        if self.iam_instance_profile:
            params["IamInstanceProfile"] = {"Name": self.iam_instance_profile}
        if capacity == CapacityClass.SPOT:
            params["InstanceMarketOptions"] = {
                "MarketType": "spot",
                "SpotOptions": {
                    "SpotInstanceType": "one-time",
                    "InstanceInterruptionBehavior": "terminate"
                }
            }

        response = self.retry_policy.call(
            self.ec2.run_instances, operation=f"run_instances[{capacity.value}]", idempotent=False, **params
        )
        return [i["InstanceId"] for i in response.get("Instances", []) if i.get("InstanceId")]

    @staticmethod
    def _to_worker(instance: dict) -> Optional[WorkerNode]:
        instance_id = instance.get("InstanceId")
        private_ip = instance.get("PrivateIpAddress")
        if not instance_id or not private_ip:
            return None
        return WorkerNode(
            instance_id=instance_id,
            private_address=private_ip,
            launch_time=instance.get("LaunchTime") or datetime.now(timezone.utc),
            zone=instance.get("Placement", {}).get("AvailabilityZone", ""),
            subnet_id=instance.get("SubnetId", ""),
            private_dns_name=instance.get("PrivateDnsName") or None
        )
