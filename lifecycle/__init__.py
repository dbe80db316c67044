"""
CockroachDB node lifecycle coordination for ECS on EC2 Auto Scaling

Event-driven handlers that retire a database node before its instance is
terminated and gate new instances until the cluster can take them.
"""

from .events import (
    InstanceLaunching,
    InstanceTerminating,
    LifecycleAction,
    LifecycleResult,
    RebalanceRecommendation,
    ServiceDeploymentChange,
    TaskStateChange,
    dispatch,
    parse_event,
)
from .exceptions import LifecycleError
from .settings import Settings

__version__ = "0.1.0"

__all__ = [
    "InstanceLaunching",
    "InstanceTerminating",
    "LifecycleAction",
    "LifecycleError",
    "LifecycleResult",
    "RebalanceRecommendation",
    "ServiceDeploymentChange",
    "Settings",
    "TaskStateChange",
    "dispatch",
    "parse_event",
]
