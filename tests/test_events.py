"""
Unit tests for event parsing, dispatch and lifecycle action handles
"""

import unittest
from unittest.mock import Mock
import sys
import os

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lifecycle.events import (
    InstanceLaunching,
    InstanceTerminating,
    LifecycleAction,
    LifecycleActionHandle,
    LifecycleResult,
    RebalanceRecommendation,
    ServiceDeploymentChange,
    TaskStateChange,
    dispatch,
    parse_event,
)
from lifecycle.exceptions import LifecycleActionAlreadyResolved, UnsupportedEvent


def lifecycle_detail(instance_id="i-abc", transition="autoscaling:EC2_INSTANCE_TERMINATING"):
    return {
        "AutoScalingGroupName": "cockroach-asg",
        "LifecycleHookName": "cockroach-termination-hook",
        "EC2InstanceId": instance_id,
        "LifecycleActionToken": "token-1",
        "LifecycleTransition": transition,
    }


class TestParseEvent(unittest.TestCase):
    """Test parsing of raw EventBridge events"""

    def test_terminate_lifecycle_action(self):
        event = parse_event({
            "detail-type": "EC2 Instance-terminate Lifecycle Action",
            "detail": lifecycle_detail(),
        })

        self.assertIsInstance(event, InstanceTerminating)
        self.assertEqual(event.action.instance_id, "i-abc")
        self.assertEqual(event.action.group_name, "cockroach-asg")
        self.assertEqual(event.action.token, "token-1")

    def test_launch_lifecycle_action(self):
        event = parse_event({
            "detail-type": "EC2 Instance-launch Lifecycle Action",
            "detail": lifecycle_detail(transition="autoscaling:EC2_INSTANCE_LAUNCHING"),
        })

        self.assertIsInstance(event, InstanceLaunching)
        self.assertEqual(event.action.transition, "autoscaling:EC2_INSTANCE_LAUNCHING")

    def test_rebalance_recommendation(self):
        event = parse_event({
            "detail-type": "EC2 Instance Rebalance Recommendation",
            "detail": {"instance-id": "i-spot"},
        })

        self.assertEqual(event, RebalanceRecommendation(instance_id="i-spot"))

    def test_task_state_change(self):
        event = parse_event({
            "detail-type": "ECS Task State Change",
            "detail": {
                "clusterArn": "arn:aws:ecs:us-east-1:123:cluster/db",
                "taskArn": "arn:aws:ecs:us-east-1:123:task/db/t1",
                "desiredStatus": "STOPPED",
                "lastStatus": "DEACTIVATING",
                "group": "family:cockroach",
            },
        })

        self.assertIsInstance(event, TaskStateChange)
        self.assertEqual(event.desired_status, "STOPPED")
        self.assertEqual(event.task_family, "cockroach")

    def test_deployment_state_change(self):
        event = parse_event({
            "detail-type": "ECS Deployment State Change",
            "resources": ["arn:aws:ecs:us-east-1:123:service/db/cockroach"],
            "detail": {"eventName": "SERVICE_DEPLOYMENT_IN_PROGRESS"},
        })

        self.assertIsInstance(event, ServiceDeploymentChange)
        self.assertTrue(event.in_progress)

    def test_unknown_detail_type(self):
        with self.assertRaises(UnsupportedEvent):
            parse_event({"detail-type": "Scheduled Event", "detail": {}})

    def test_missing_lifecycle_field(self):
        detail = lifecycle_detail()
        del detail["LifecycleActionToken"]

        with self.assertRaises(UnsupportedEvent):
            parse_event({"detail-type": "EC2 Instance-terminate Lifecycle Action", "detail": detail})


class TestDispatch(unittest.TestCase):
    """Test routing of parsed events"""

    def test_routes_to_registered_handler(self):
        handler = Mock(return_value="handled")
        event = RebalanceRecommendation(instance_id="i-spot")

        result = dispatch(event, {RebalanceRecommendation: handler})

        self.assertEqual(result, "handled")
        handler.assert_called_once_with(event)

    def test_unrouted_event(self):
        with self.assertRaises(UnsupportedEvent):
            dispatch(RebalanceRecommendation(instance_id="i-spot"), {InstanceTerminating: Mock()})

    def test_route_for_unknown_type(self):
        with self.assertRaises(UnsupportedEvent):
            dispatch(RebalanceRecommendation(instance_id="i-spot"), {dict: Mock()})


class TestLifecycleActionHandle(unittest.TestCase):
    """Test at-most-once resolution of a lifecycle action"""

    def setUp(self):
        self.action = LifecycleAction.from_detail(lifecycle_detail())
        self.control = Mock()

    def test_complete_once(self):
        handle = LifecycleActionHandle(self.action, self.control)

        handle.complete(LifecycleResult.CONTINUE)

        self.control.complete_lifecycle_action.assert_called_once_with(
            self.action, LifecycleResult.CONTINUE
        )
        self.assertEqual(handle.result, LifecycleResult.CONTINUE)

    def test_second_completion_is_rejected(self):
        handle = LifecycleActionHandle(self.action, self.control)
        handle.complete(LifecycleResult.CONTINUE)

        with self.assertRaises(LifecycleActionAlreadyResolved):
            handle.complete(LifecycleResult.ABANDON)
        self.assertEqual(self.control.complete_lifecycle_action.call_count, 1)

    def test_heartbeat_after_completion_is_rejected(self):
        handle = LifecycleActionHandle(self.action, self.control)
        handle.heartbeat()
        handle.complete(LifecycleResult.CONTINUE)

        with self.assertRaises(LifecycleActionAlreadyResolved):
            handle.heartbeat()
        self.assertEqual(handle.heartbeats, 1)

    def test_failed_completion_is_not_retried(self):
        self.control.complete_lifecycle_action.side_effect = RuntimeError("throttled")
        handle = LifecycleActionHandle(self.action, self.control)

        with self.assertRaises(RuntimeError):
            handle.complete(LifecycleResult.CONTINUE)
        with self.assertRaises(LifecycleActionAlreadyResolved):
            handle.complete(LifecycleResult.CONTINUE)

    def test_api_params(self):
        self.assertEqual(self.action.to_api_params(), {
            "AutoScalingGroupName": "cockroach-asg",
            "LifecycleHookName": "cockroach-termination-hook",
            "InstanceId": "i-abc",
            "LifecycleActionToken": "token-1",
        })


if __name__ == "__main__":
    unittest.main()
