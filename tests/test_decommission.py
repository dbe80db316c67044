"""
Unit tests for the node retirement coordinators
"""

import sys
import os
import unittest
from unittest.mock import Mock

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lifecycle.coordinators import DecommissionCoordinator, DeregisterCoordinator, RebalanceCoordinator
from lifecycle.events import (
    InstanceTerminating,
    LifecycleAction,
    LifecycleResult,
    RebalanceRecommendation,
    TaskStateChange,
)
from lifecycle.exceptions import CockroachCommandError


def resolved_control(instance_id="i-abc", container_instance="ci-1", address="10.0.0.1"):
    control = Mock()
    control.find_container_instance.return_value = container_instance
    control.private_address.return_value = address
    control.describe_tasks.return_value = [{"taskArn": "t1", "containerInstanceArn": container_instance}]
    control.describe_container_instance.return_value = {"ec2InstanceId": instance_id}
    return control


def terminating(instance_id="i-abc"):
    return InstanceTerminating(action=LifecycleAction(
        group_name="asg", hook_name="termination-hook", instance_id=instance_id, token="token-1"
    ))


class TestDecommissionCoordinator(unittest.TestCase):
    """Test instance-terminating lifecycle handling"""

    def test_decommissions_drains_and_continues(self):
        control = resolved_control()
        admin = Mock()

        result = DecommissionCoordinator(control, admin).handle(terminating())

        admin.decommission.assert_called_once_with("10.0.0.1", True, "none")
        admin.drain.assert_called_once_with("10.0.0.1")
        control.complete_lifecycle_action.assert_called_once_with(
            terminating().action, LifecycleResult.CONTINUE
        )
        self.assertEqual(result.lifecycle_result, LifecycleResult.CONTINUE)

    def test_command_failures_never_block_termination(self):
        control = resolved_control()
        admin = Mock()
        admin.decommission.side_effect = CockroachCommandError(["cockroach", "node", "decommission"], 1)
        admin.drain.side_effect = CockroachCommandError(["cockroach", "node", "drain"], 1)

        result = DecommissionCoordinator(control, admin).handle(terminating())

        self.assertEqual(control.complete_lifecycle_action.call_count, 1)
        self.assertEqual(len(result.node.absorbed), 2)

    def test_unresolved_instance_still_continues(self):
        control = resolved_control(container_instance=None)
        admin = Mock()

        result = DecommissionCoordinator(control, admin).handle(terminating())

        admin.decommission.assert_not_called()
        admin.drain.assert_not_called()
        control.complete_lifecycle_action.assert_called_once()
        self.assertIsNone(result.identity)


class TestRebalanceCoordinator(unittest.TestCase):
    """Test spot rebalance recommendation handling"""

    def test_retires_node_and_requests_replacement(self):
        control = resolved_control()
        admin = Mock()

        result = RebalanceCoordinator(control, admin).handle(RebalanceRecommendation("i-abc"))

        admin.drain.assert_called_once_with("10.0.0.1")
        control.set_container_instance_state.assert_called_once_with("ci-1", "DRAINING")
        control.terminate_instance.assert_called_once_with("i-abc", decrement_capacity=False)
        self.assertTrue(result.replacement_requested)

    def test_draining_failure_is_absorbed(self):
        control = resolved_control()
        control.set_container_instance_state.side_effect = RuntimeError("throttled")

        result = RebalanceCoordinator(control, Mock()).handle(RebalanceRecommendation("i-abc"))

        self.assertFalse(result.draining.ok)
        control.terminate_instance.assert_called_once()

    def test_terminate_failure_propagates(self):
        control = resolved_control()
        control.terminate_instance.side_effect = RuntimeError("denied")

        with self.assertRaises(RuntimeError):
            RebalanceCoordinator(control, Mock()).handle(RebalanceRecommendation("i-abc"))

    def test_instance_outside_cluster(self):
        control = resolved_control(container_instance=None)
        admin = Mock()

        result = RebalanceCoordinator(control, admin).handle(RebalanceRecommendation("i-other"))

        admin.decommission.assert_not_called()
        control.terminate_instance.assert_not_called()
        self.assertFalse(result.replacement_requested)


class TestDeregisterCoordinator(unittest.TestCase):
    """Test stopped-task handling"""

    def task_event(self, desired_status="STOPPED"):
        return TaskStateChange(
            cluster_arn="arn:aws:ecs:us-east-1:123:cluster/db",
            task_arn="t1",
            desired_status=desired_status,
            last_status="DEACTIVATING",
        )

    def test_stopped_task_retires_node(self):
        control = resolved_control()
        admin = Mock()

        result = DeregisterCoordinator(control, admin).handle(self.task_event())

        admin.decommission.assert_called_once_with("10.0.0.1", True, "none")
        admin.drain.assert_called_once_with("10.0.0.1")
        control.describe_tasks.assert_called_once_with(
            ["t1"], cluster="arn:aws:ecs:us-east-1:123:cluster/db"
        )
        self.assertEqual(result.identity.instance_id, "i-abc")

    def test_drain_only(self):
        control = resolved_control()
        admin = Mock()

        DeregisterCoordinator(control, admin, decommission=False).handle(self.task_event())

        admin.decommission.assert_not_called()
        admin.drain.assert_called_once_with("10.0.0.1")

    def test_running_task_is_ignored(self):
        control = resolved_control()
        admin = Mock()

        result = DeregisterCoordinator(control, admin).handle(self.task_event("RUNNING"))

        control.describe_tasks.assert_not_called()
        admin.drain.assert_not_called()
        self.assertIsNone(result.identity)

    def test_unresolved_task(self):
        control = resolved_control()
        control.describe_tasks.return_value = []
        admin = Mock()

        result = DeregisterCoordinator(control, admin).handle(self.task_event())

        admin.drain.assert_not_called()
        self.assertIsNone(result.node)


if __name__ == "__main__":
    unittest.main()
