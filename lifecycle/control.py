"""
Control-plane access for the coordinators

Thin wrappers over the boto3 ECS, EC2, Auto Scaling and SQS clients, scoped
to one ECS cluster. Nothing is cached: every call re-reads current state.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

import boto3
from botocore.config import Config

from .events import LifecycleAction, LifecycleResult

logger = logging.getLogger(__name__)

CLIENT_CONFIG = Config(
    connect_timeout=5,
    read_timeout=20,
    retries={"max_attempts": 5, "mode": "standard"},
)

# DescribeTasks accepts at most 100 task ARNs per call
DESCRIBE_TASKS_BATCH = 100


def _client(service: str, region: Optional[str] = None):
    return boto3.client(service, region_name=region, config=CLIENT_CONFIG)


class ControlPlane:
    """Orchestrator, compute and auto-scaler calls used by the coordinators"""

    def __init__(self, ecs_cluster: str, ecs=None, ec2=None, autoscaling=None,
                 region: Optional[str] = None):
        self.ecs_cluster = ecs_cluster
        self.ecs = ecs or _client("ecs", region)
        self.ec2 = ec2 or _client("ec2", region)
        self.autoscaling = autoscaling or _client("autoscaling", region)

    # ECS container instances

    def find_container_instance(self, instance_id: str) -> Optional[str]:
        """Container-instance ARN registered for an EC2 instance, if any"""
        response = self.ecs.list_container_instances(
            cluster=self.ecs_cluster,
            filter=f"ec2InstanceId=={instance_id}",
            maxResults=1,
        )
        arns = response.get("containerInstanceArns") or []
        return arns[0] if arns else None

    def describe_container_instance(self, container_instance: str,
                                    cluster: Optional[str] = None) -> Optional[Dict[str, Any]]:
        response = self.ecs.describe_container_instances(
            cluster=cluster or self.ecs_cluster,
            containerInstances=[container_instance],
        )
        instances = response.get("containerInstances") or []
        return instances[0] if instances else None

    def set_container_instance_state(self, container_instance: str, status: str) -> None:
        logger.info("Setting %s to %s", container_instance, status)
        self.ecs.update_container_instances_state(
            cluster=self.ecs_cluster,
            containerInstances=[container_instance],
            status=status,
        )

    def put_container_instance_attribute(self, container_instance: str, name: str, value: str,
                                         cluster: Optional[str] = None) -> None:
        self.ecs.put_attributes(
            cluster=cluster or self.ecs_cluster,
            attributes=[{
                "targetType": "container-instance",
                "targetId": container_instance,
                "name": name,
                "value": value,
            }],
        )

    # ECS tasks and services

    def list_task_arns(self, container_instance: str, desired_status: str) -> List[str]:
        arns: List[str] = []
        params = {
            "cluster": self.ecs_cluster,
            "containerInstance": container_instance,
            "desiredStatus": desired_status,
        }
        while True:
            response = self.ecs.list_tasks(**params)
            arns.extend(response.get("taskArns") or [])
            next_token = response.get("nextToken")
            if not next_token:
                return arns
            params["nextToken"] = next_token

    def describe_tasks(self, task_arns: Iterable[str],
                       cluster: Optional[str] = None) -> List[Dict[str, Any]]:
        task_arns = list(task_arns)
        tasks: List[Dict[str, Any]] = []
        for start in range(0, len(task_arns), DESCRIBE_TASKS_BATCH):
            response = self.ecs.describe_tasks(
                cluster=cluster or self.ecs_cluster,
                tasks=task_arns[start:start + DESCRIBE_TASKS_BATCH],
            )
            tasks.extend(response.get("tasks") or [])
        return tasks

    def service_exists(self, service_name: str) -> bool:
        response = self.ecs.describe_services(
            cluster=self.ecs_cluster,
            services=[service_name],
        )
        services = [
            service for service in response.get("services") or []
            if service.get("status") != "INACTIVE"
        ]
        return len(services) > 0

    def update_service_maximum_percent(self, service_name: str, maximum_percent: int) -> None:
        logger.info("Setting maximumPercent=%d for %s", maximum_percent, service_name)
        self.ecs.update_service(
            cluster=self.ecs_cluster,
            service=service_name,
            deploymentConfiguration={"maximumPercent": maximum_percent},
        )

    # EC2

    def private_address(self, instance_id: str) -> Optional[str]:
        """Private DNS name of an EC2 instance, if it still exists"""
        response = self.ec2.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get("Reservations") or []:
            for instance in reservation.get("Instances") or []:
                if instance.get("PrivateDnsName"):
                    return instance["PrivateDnsName"]
        return None

    # Auto Scaling

    def complete_lifecycle_action(self, action: LifecycleAction, result: LifecycleResult) -> None:
        self.autoscaling.complete_lifecycle_action(
            LifecycleActionResult=result.value,
            **action.to_api_params(),
        )

    def record_lifecycle_action_heartbeat(self, action: LifecycleAction) -> None:
        self.autoscaling.record_lifecycle_action_heartbeat(**action.to_api_params())

    def terminate_instance(self, instance_id: str, decrement_capacity: bool = False) -> None:
        logger.info("Terminating %s (decrement capacity: %s)", instance_id, decrement_capacity)
        self.autoscaling.terminate_instance_in_auto_scaling_group(
            InstanceId=instance_id,
            ShouldDecrementDesiredCapacity=decrement_capacity,
        )

    def group_instances(self, group_name: str) -> List[Dict[str, Any]]:
        response = self.autoscaling.describe_auto_scaling_groups(
            AutoScalingGroupNames=[group_name],
            MaxRecords=1,
        )
        groups = response.get("AutoScalingGroups") or []
        if not groups:
            return []
        return groups[0].get("Instances") or []


class DrainQueue:
    """SQS queue the task drain coordinator polls itself through"""

    def __init__(self, queue_url: str, sqs=None, region: Optional[str] = None):
        self.queue_url = queue_url
        self.sqs = sqs or _client("sqs", region)

    def send(self, body: Mapping[str, Any], delay_seconds: int) -> str:
        response = self.sqs.send_message(
            QueueUrl=self.queue_url,
            MessageBody=json.dumps(body),
            DelaySeconds=delay_seconds,
        )
        return response.get("MessageId", "")
