"""
Load balancer deregistration coordinator

Reacts to tasks stopping outside the auto-scaler's termination path (manual
task replacement, deployments) and retires the node the task ran, so target
health and cluster membership follow actual task placement.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..cockroach import CockroachAdmin, NodeStopOutcome, stop_node
from ..control import ControlPlane
from ..events import TaskStateChange
from ..identity import InstanceIdentity, resolve_task_instance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeregisterResult:
    task_arn: str
    identity: Optional[InstanceIdentity]
    node: Optional[NodeStopOutcome] = None


class DeregisterCoordinator:
    def __init__(self, control: ControlPlane, admin: CockroachAdmin, decommission: bool = True):
        self.control = control
        self.admin = admin
        self.decommission = decommission

    def handle(self, event: TaskStateChange) -> DeregisterResult:
        if event.desired_status != "STOPPED":
            logger.info("Task %s is not stopping (desired %s), ignoring",
                        event.task_arn, event.desired_status)
            return DeregisterResult(task_arn=event.task_arn, identity=None)

        logger.info("Handling stopped task %s", event.task_arn)
        identity = resolve_task_instance(self.control, event.task_arn, cluster=event.cluster_arn)
        if identity is None:
            return DeregisterResult(task_arn=event.task_arn, identity=None)

        node = stop_node(self.admin, identity.private_address, decommission=self.decommission)
        return DeregisterResult(task_arn=event.task_arn, identity=identity, node=node)
