"""
Task drain coordinator

Holds an instance-terminating lifecycle action until every ECS task on the
instance has stopped. Instead of looping inside one invocation it requeues
the lifecycle notification with a delay; the message body is the only state
carried between polls, so any worker can pick up the next attempt.

    RECEIVED -> (no container instance) -> COMPLETE
    RECEIVED -> DRAINING -> (task not STOPPED) -> REQUEUED
                         -> (all STOPPED / none) -> COMPLETE
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from botocore.exceptions import ClientError

from ..control import ControlPlane, DrainQueue
from ..events import TERMINATING_TRANSITION, LifecycleAction, LifecycleResult
from ..exceptions import UnsupportedEvent

logger = logging.getLogger(__name__)

ATTEMPT_KEY = "DrainAttempt"


class DrainState(str, Enum):
    RECEIVED = "RECEIVED"
    DRAINING = "DRAINING"
    REQUEUED = "REQUEUED"
    COMPLETE = "COMPLETE"
    SKIPPED = "SKIPPED"


@dataclass
class DrainProgress:
    instance_id: str
    attempt: int
    state: DrainState = DrainState.RECEIVED
    container_instance_arn: Optional[str] = None
    pending_tasks: List[str] = field(default_factory=list)


class TaskDrainCoordinator:
    def __init__(self, control: ControlPlane, queue: DrainQueue, retry_delay_seconds: int = 30):
        self.control = control
        self.queue = queue
        self.retry_delay_seconds = retry_delay_seconds

    def handle_batch(self, records: List[Mapping[str, Any]]) -> Dict[str, List[Dict[str, str]]]:
        """
        Process an SQS batch, isolating failures per message

        Returns:
            SQS partial batch response naming the messages to redeliver
        """
        failures = []
        for record in records:
            message_id = record.get("messageId", "")
            try:
                self.handle_message(record.get("body") or "")
            except Exception:
                logger.exception("Failed to process drain message %s", message_id)
                failures.append({"itemIdentifier": message_id})

        return {"batchItemFailures": failures}

    def handle_message(self, body: str) -> DrainProgress:
        try:
            detail = json.loads(body)
        except ValueError:
            raise UnsupportedEvent(f"Drain message body is not JSON: {body[:200]!r}") from None

        if not isinstance(detail, dict) or detail.get("LifecycleTransition") != TERMINATING_TRANSITION:
            # Includes the autoscaling:TEST_NOTIFICATION sent when the hook is created
            logger.info("Skipping non-terminating notification: %s", body[:200])
            return DrainProgress(instance_id="", attempt=0, state=DrainState.SKIPPED)

        return self.advance(detail)

    def advance(self, detail: Dict[str, Any]) -> DrainProgress:
        """Run one poll of the drain state machine for a lifecycle notification"""
        action = LifecycleAction.from_detail(detail)
        progress = DrainProgress(instance_id=action.instance_id, attempt=int(detail.get(ATTEMPT_KEY, 0)))

        progress.container_instance_arn = self.control.find_container_instance(action.instance_id)
        if progress.container_instance_arn is None:
            logger.info("No container instance found for %s", action.instance_id)
            self._complete(action)
            progress.state = DrainState.COMPLETE
            return progress

        progress.state = DrainState.DRAINING
        progress.pending_tasks = self._pending_tasks(progress.container_instance_arn)

        if progress.pending_tasks:
            logger.info("Drain incomplete for %s (attempt %d, %d task(s) pending), requeueing",
                        progress.container_instance_arn, progress.attempt, len(progress.pending_tasks))
            self.queue.send(dict(detail, **{ATTEMPT_KEY: progress.attempt + 1}),
                            self.retry_delay_seconds)
            progress.state = DrainState.REQUEUED
            return progress

        logger.info("Drain complete for %s : %s", action.instance_id, progress.container_instance_arn)
        self._complete(action)
        progress.state = DrainState.COMPLETE
        return progress

    def _complete(self, action: LifecycleAction) -> None:
        # A redelivered message may find the action already resolved or expired
        try:
            self.control.complete_lifecycle_action(action, LifecycleResult.CONTINUE)
        except ClientError as e:
            logger.warning("Could not complete lifecycle action for %s: %s", action.instance_id, e)

    def _pending_tasks(self, container_instance: str) -> List[str]:
        record = self.control.describe_container_instance(container_instance)
        if record is None:
            return []

        if record.get("status") == "ACTIVE":
            logger.info("Starting drain of %s", container_instance)
            self.control.set_container_instance_state(container_instance, "DRAINING")

        task_arns = (
            self.control.list_task_arns(container_instance, "RUNNING")
            + self.control.list_task_arns(container_instance, "STOPPED")
        )
        if not task_arns:
            return []

        tasks = self.control.describe_tasks(task_arns)
        pending = [task.get("taskArn", "") for task in tasks if task.get("lastStatus") != "STOPPED"]
        if pending:
            logger.info("Container %s still has running tasks: %s", container_instance, pending)
        else:
            logger.info("Container %s has no running tasks", container_instance)
        return pending
