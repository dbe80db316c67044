"""
Event model for the lifecycle coordinators

EventBridge delivers infrastructure events as loosely-typed JSON keyed by
``detail-type``. They are parsed once into frozen dataclasses and routed
from a single dispatch point.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Type, Union

from .exceptions import LifecycleActionAlreadyResolved, UnsupportedEvent

logger = logging.getLogger(__name__)

TERMINATING_TRANSITION = "autoscaling:EC2_INSTANCE_TERMINATING"
LAUNCHING_TRANSITION = "autoscaling:EC2_INSTANCE_LAUNCHING"

TERMINATE_DETAIL_TYPE = "EC2 Instance-terminate Lifecycle Action"
LAUNCH_DETAIL_TYPE = "EC2 Instance-launch Lifecycle Action"
REBALANCE_DETAIL_TYPE = "EC2 Instance Rebalance Recommendation"
TASK_STATE_DETAIL_TYPE = "ECS Task State Change"
DEPLOYMENT_STATE_DETAIL_TYPE = "ECS Deployment State Change"


class LifecycleResult(str, Enum):
    CONTINUE = "CONTINUE"
    ABANDON = "ABANDON"


@dataclass(frozen=True)
class LifecycleAction:
    """One pending lifecycle decision issued by the auto-scaler"""

    group_name: str
    hook_name: str
    instance_id: str
    token: str
    transition: str = ""

    @classmethod
    def from_detail(cls, detail: Mapping[str, Any]) -> "LifecycleAction":
        """Build from an EventBridge detail or an SQS lifecycle notification body"""
        try:
            return cls(
                group_name=detail["AutoScalingGroupName"],
                hook_name=detail["LifecycleHookName"],
                instance_id=detail["EC2InstanceId"],
                token=detail["LifecycleActionToken"],
                transition=detail.get("LifecycleTransition", ""),
            )
        except KeyError as e:
            raise UnsupportedEvent(f"Lifecycle detail is missing {e.args[0]}") from None

    def to_api_params(self) -> Dict[str, str]:
        return {
            "AutoScalingGroupName": self.group_name,
            "LifecycleHookName": self.hook_name,
            "InstanceId": self.instance_id,
            "LifecycleActionToken": self.token,
        }


@dataclass(frozen=True)
class InstanceTerminating:
    action: LifecycleAction


@dataclass(frozen=True)
class InstanceLaunching:
    action: LifecycleAction


@dataclass(frozen=True)
class RebalanceRecommendation:
    instance_id: str


@dataclass(frozen=True)
class TaskStateChange:
    cluster_arn: str
    task_arn: str
    desired_status: str
    last_status: str
    group: str = ""

    @property
    def task_family(self) -> str:
        # group is "family:<name>" for standalone tasks, "service:<name>" for services
        _, _, name = self.group.partition(":")
        return name or self.group


@dataclass(frozen=True)
class ServiceDeploymentChange:
    service_arn: str
    event_name: str

    @property
    def in_progress(self) -> bool:
        return self.event_name == "SERVICE_DEPLOYMENT_IN_PROGRESS"


Event = Union[
    InstanceTerminating,
    InstanceLaunching,
    RebalanceRecommendation,
    TaskStateChange,
    ServiceDeploymentChange,
]

EVENT_TYPES = (
    InstanceTerminating,
    InstanceLaunching,
    RebalanceRecommendation,
    TaskStateChange,
    ServiceDeploymentChange,
)


def _parse_task_state_change(raw: Mapping[str, Any]) -> TaskStateChange:
    detail = raw.get("detail") or {}
    try:
        return TaskStateChange(
            cluster_arn=detail["clusterArn"],
            task_arn=detail["taskArn"],
            desired_status=detail.get("desiredStatus", ""),
            last_status=detail.get("lastStatus", ""),
            group=detail.get("group", ""),
        )
    except KeyError as e:
        raise UnsupportedEvent(f"Task state change is missing {e.args[0]}") from None


def _parse_rebalance(raw: Mapping[str, Any]) -> RebalanceRecommendation:
    detail = raw.get("detail") or {}
    instance_id = detail.get("instance-id")
    if not instance_id:
        raise UnsupportedEvent("Rebalance recommendation is missing instance-id")
    return RebalanceRecommendation(instance_id=instance_id)


def _parse_deployment(raw: Mapping[str, Any]) -> ServiceDeploymentChange:
    resources = raw.get("resources") or []
    detail = raw.get("detail") or {}
    if not resources or "eventName" not in detail:
        raise UnsupportedEvent("Deployment state change is missing resources or eventName")
    return ServiceDeploymentChange(service_arn=resources[0], event_name=detail["eventName"])


def parse_event(raw: Mapping[str, Any]) -> Event:
    """Parse a raw EventBridge event into one of the known event shapes"""
    detail_type = raw.get("detail-type")

    if detail_type == TERMINATE_DETAIL_TYPE:
        return InstanceTerminating(action=LifecycleAction.from_detail(raw.get("detail") or {}))
    if detail_type == LAUNCH_DETAIL_TYPE:
        return InstanceLaunching(action=LifecycleAction.from_detail(raw.get("detail") or {}))
    if detail_type == REBALANCE_DETAIL_TYPE:
        return _parse_rebalance(raw)
    if detail_type == TASK_STATE_DETAIL_TYPE:
        return _parse_task_state_change(raw)
    if detail_type == DEPLOYMENT_STATE_DETAIL_TYPE:
        return _parse_deployment(raw)

    raise UnsupportedEvent(f"Unsupported event detail-type: {detail_type!r}")


def dispatch(event: Event, routes: Mapping[Type, Callable[[Any], Any]]) -> Any:
    """
    Route an event to the handler registered for its type

    Args:
        event: Parsed event
        routes: Mapping of event class to handler

    Returns:
        Whatever the handler returns

    Raises:
        UnsupportedEvent: if a route names an unknown type or the event type is unrouted
    """
    unknown = [route for route in routes if route not in EVENT_TYPES]
    if unknown:
        raise UnsupportedEvent(f"Routes registered for unknown event types: {unknown}")

    handler = routes.get(type(event))
    if handler is None:
        raise UnsupportedEvent(f"No route registered for {type(event).__name__}")
    return handler(event)


class LifecycleActionHandle:
    """
    Resolves one lifecycle action at most once per invocation

    Wraps the auto-scaler calls so a coordinator cannot complete the same
    token twice, and records the result it resolved with.
    """

    def __init__(self, action: LifecycleAction, control):
        self.action = action
        self.control = control
        self.result: Optional[LifecycleResult] = None
        self.heartbeats = 0

    @property
    def resolved(self) -> bool:
        return self.result is not None

    def complete(self, result: LifecycleResult) -> None:
        if self.result is not None:
            raise LifecycleActionAlreadyResolved(
                self.action.instance_id, self.action.hook_name, self.result.value
            )
        # Mark first so a failed call is never retried from this handle
        self.result = result
        logger.info(
            "Completing lifecycle action %s for %s on %s",
            result.value, self.action.instance_id, self.action.hook_name,
        )
        self.control.complete_lifecycle_action(self.action, result)

    def heartbeat(self) -> None:
        if self.result is not None:
            raise LifecycleActionAlreadyResolved(
                self.action.instance_id, self.action.hook_name, self.result.value
            )
        self.heartbeats += 1
        logger.info(
            "Recording heartbeat %d for %s on %s",
            self.heartbeats, self.action.instance_id, self.action.hook_name,
        )
        self.control.record_lifecycle_action_heartbeat(self.action)
