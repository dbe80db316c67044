"""
Rebalance coordinator

Reacts to spot rebalance recommendations by retiring the node ahead of
reclamation and asking the auto-scaler for a replacement instance.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..cockroach import CockroachAdmin, NodeStopOutcome, Outcome, absorb, stop_node
from ..control import ControlPlane
from ..events import RebalanceRecommendation
from ..identity import InstanceIdentity, resolve_instance_identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RebalanceResult:
    instance_id: str
    identity: Optional[InstanceIdentity]
    node: Optional[NodeStopOutcome] = None
    draining: Optional[Outcome] = None
    replacement_requested: bool = False


class RebalanceCoordinator:
    def __init__(self, control: ControlPlane, admin: CockroachAdmin):
        self.control = control
        self.admin = admin

    def handle(self, event: RebalanceRecommendation) -> RebalanceResult:
        logger.info("Handling rebalance recommendation for %s", event.instance_id)

        identity = resolve_instance_identity(self.control, event.instance_id)
        if identity is None:
            logger.info("%s is not part of the cluster, ignoring", event.instance_id)
            return RebalanceResult(instance_id=event.instance_id, identity=None)

        node = stop_node(self.admin, identity.private_address)
        draining = absorb(
            "set container instance draining",
            self.control.set_container_instance_state,
            identity.container_instance_arn, "DRAINING",
        )
        # Keeping desired capacity makes the auto-scaler launch a replacement
        self.control.terminate_instance(event.instance_id, decrement_capacity=False)

        return RebalanceResult(
            instance_id=event.instance_id,
            identity=identity,
            node=node,
            draining=draining,
            replacement_requested=True,
        )
