"""
Decommission coordinator

Reacts to instance-terminating lifecycle actions: decommissions and drains the
CockroachDB node on the instance, then always lets termination continue.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..cockroach import CockroachAdmin, NodeStopOutcome, stop_node
from ..control import ControlPlane
from ..events import InstanceTerminating, LifecycleActionHandle, LifecycleResult
from ..identity import InstanceIdentity, resolve_instance_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecommissionResult:
    instance_id: str
    identity: Optional[InstanceIdentity]
    node: Optional[NodeStopOutcome]
    lifecycle_result: LifecycleResult


class DecommissionCoordinator:
    def __init__(self, control: ControlPlane, admin: CockroachAdmin):
        self.control = control
        self.admin = admin

    def handle(self, event: InstanceTerminating) -> DecommissionResult:
        action = event.action
        handle = LifecycleActionHandle(action, self.control)
        logger.info("Handling termination of %s in %s", action.instance_id, action.group_name)

        identity = resolve_instance_identity(self.control, action.instance_id)
        node = None
        if identity is None:
            logger.info("Nothing to decommission on %s", action.instance_id)
        else:
            node = stop_node(self.admin, identity.private_address)

        handle.complete(LifecycleResult.CONTINUE)
        return DecommissionResult(
            instance_id=action.instance_id,
            identity=identity,
            node=node,
            lifecycle_result=LifecycleResult.CONTINUE,
        )
