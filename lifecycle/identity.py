"""
Instance identity resolution

Maps an EC2 instance (or an ECS task) to its container instance and private
address. Resolved fresh for every event; a stale mapping would point the
database commands at the wrong node.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .control import ControlPlane

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstanceIdentity:
    instance_id: str
    container_instance_arn: str
    private_address: str


def resolve_instance_identity(control: ControlPlane, instance_id: str) -> Optional[InstanceIdentity]:
    """
    Resolve an EC2 instance to its container instance and private address

    Returns:
        The identity, or None when either lookup misses
    """
    container_instance = control.find_container_instance(instance_id)
    if container_instance is None:
        logger.warning("Could not find a container instance for %s", instance_id)
        return None

    logger.info("Found container instance: %s", container_instance)

    address = control.private_address(instance_id)
    if address is None:
        logger.warning("Could not retrieve the private address of %s", instance_id)
        return None

    return InstanceIdentity(
        instance_id=instance_id,
        container_instance_arn=container_instance,
        private_address=address,
    )


def resolve_task_instance(control: ControlPlane, task_arn: str,
                          cluster: Optional[str] = None) -> Optional[InstanceIdentity]:
    """Resolve the instance an ECS task was placed on"""
    container_instance = task_container_instance(control, task_arn, cluster)
    if container_instance is None:
        return None

    record = control.describe_container_instance(container_instance, cluster=cluster)
    instance_id = (record or {}).get("ec2InstanceId")
    if not instance_id:
        logger.warning("Could not get the EC2 instance id of %s", container_instance)
        return None

    return resolve_instance_identity(control, instance_id)


def task_container_instance(control: ControlPlane, task_arn: str,
                            cluster: Optional[str] = None) -> Optional[str]:
    tasks = control.describe_tasks([task_arn], cluster=cluster)
    task = tasks[0] if tasks else None
    if task is None or not task.get("containerInstanceArn"):
        logger.warning("Could not find a container instance for task %s", task_arn)
        return None
    return task["containerInstanceArn"]
