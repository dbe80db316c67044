"""
Node lifecycle coordinators, one per infrastructure event category
"""

from .container_lock import ContainerInstanceLock
from .decommission import DecommissionCoordinator
from .deployment import ServiceDeploymentLimiter
from .deregister import DeregisterCoordinator
from .rebalance import RebalanceCoordinator
from .startup import HealthCheckPolicy, StartupAdmissionGate
from .task_drain import DrainState, TaskDrainCoordinator
from .termination_wait import StartupTerminationWaitGate

__all__ = [
    "ContainerInstanceLock",
    "DecommissionCoordinator",
    "DeregisterCoordinator",
    "DrainState",
    "HealthCheckPolicy",
    "RebalanceCoordinator",
    "ServiceDeploymentLimiter",
    "StartupAdmissionGate",
    "StartupTerminationWaitGate",
    "TaskDrainCoordinator",
]
