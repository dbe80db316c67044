"""
Startup termination-conflict gate

Holds an instance-launching lifecycle action while any sibling instance in the
group is terminating, so at most one membership change is in flight. Every
poll that finds a terminating sibling renews the lifecycle heartbeat.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List

from ..control import ControlPlane
from ..events import InstanceLaunching, LifecycleActionHandle, LifecycleResult
from ..exceptions import TerminationInProgress
from ..retry import retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TerminationWaitResult:
    instance_id: str
    lifecycle_result: LifecycleResult
    polls: int
    heartbeats: int


def terminating_instances(instances: List[dict], exclude: str = "") -> List[str]:
    return [
        instance.get("InstanceId", "")
        for instance in instances
        if "Terminating" in instance.get("LifecycleState", "")
        and instance.get("InstanceId") != exclude
    ]


class StartupTerminationWaitGate:
    def __init__(self, control: ControlPlane, attempts: int = 150, delay: float = 5,
                 sleep: Callable[[float], None] = time.sleep):
        self.control = control
        self.attempts = attempts
        self.delay = delay
        self.sleep = sleep

    def handle(self, event: InstanceLaunching) -> TerminationWaitResult:
        """
        Poll the group until no sibling is terminating, then CONTINUE

        Raises:
            TerminationInProgress: when siblings are still terminating after
                every attempt; the action stays open (heartbeat renewed) and
                the event bus redelivers the event
        """
        action = event.action
        handle = LifecycleActionHandle(action, self.control)
        polls = 0

        def poll():
            nonlocal polls
            polls += 1
            instances = self.control.group_instances(action.group_name)
            terminating = terminating_instances(instances, exclude=action.instance_id)
            if terminating:
                raise TerminationInProgress(action.group_name, terminating)

        try:
            retry_with_backoff(poll,
                               max_attempts=self.attempts,
                               constant_delay=self.delay,
                               on_retry=lambda attempt, error: handle.heartbeat(),
                               sleep=self.sleep)
        except TerminationInProgress:
            handle.heartbeat()
            raise

        handle.complete(LifecycleResult.CONTINUE)
        return TerminationWaitResult(
            instance_id=action.instance_id,
            lifecycle_result=LifecycleResult.CONTINUE,
            polls=polls,
            heartbeats=handle.heartbeats,
        )
