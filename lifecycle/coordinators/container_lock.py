"""
Container instance lock

Marks a container instance LOCKED for a task family while one of its tasks
should be running there, and OPEN once it is stopped. Placement constraints on
the lock attribute keep a second task of the family off the instance.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from ..control import ControlPlane
from ..events import TaskStateChange
from ..identity import task_container_instance

logger = logging.getLogger(__name__)

LOCKED = "LOCKED"
OPEN = "OPEN"


def lock_name(task_family: str) -> str:
    return hashlib.sha1(task_family.encode("utf-8")).hexdigest() + ".lock"


@dataclass(frozen=True)
class LockResult:
    task_arn: str
    container_instance_arn: Optional[str]
    state: Optional[str]


class ContainerInstanceLock:
    def __init__(self, control: ControlPlane):
        self.control = control

    def handle(self, event: TaskStateChange) -> LockResult:
        states = {"RUNNING": LOCKED, "STOPPED": OPEN}
        state = states.get(event.desired_status)
        if state is None:
            return LockResult(task_arn=event.task_arn, container_instance_arn=None, state=None)

        container_instance = task_container_instance(self.control, event.task_arn, event.cluster_arn)
        if container_instance is None:
            return LockResult(task_arn=event.task_arn, container_instance_arn=None, state=None)

        logger.info("Setting %s to %s for %s", container_instance, state, event.task_family)
        self.control.put_container_instance_attribute(
            container_instance, lock_name(event.task_family), state, cluster=event.cluster_arn
        )
        return LockResult(task_arn=event.task_arn, container_instance_arn=container_instance, state=state)
