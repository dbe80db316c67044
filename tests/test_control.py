"""
Unit tests for control-plane wrappers and instance resolution
"""

import json
import sys
import os
import unittest
from unittest.mock import Mock

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lifecycle.control import ControlPlane, DrainQueue
from lifecycle.events import LifecycleAction, LifecycleResult
from lifecycle.identity import resolve_instance_identity, resolve_task_instance


def control_plane(ecs=None, ec2=None, autoscaling=None):
    return ControlPlane("db", ecs=ecs or Mock(), ec2=ec2 or Mock(), autoscaling=autoscaling or Mock())


def ec2_with_address(address="ip-10-0-0-1.ec2.internal"):
    ec2 = Mock()
    ec2.describe_instances.return_value = {
        "Reservations": [{"Instances": [{"InstanceId": "i-abc", "PrivateDnsName": address}]}]
    }
    return ec2


class TestControlPlane(unittest.TestCase):
    """Test the boto3 call shapes"""

    def test_find_container_instance(self):
        ecs = Mock()
        ecs.list_container_instances.return_value = {"containerInstanceArns": ["ci-1"]}

        self.assertEqual(control_plane(ecs=ecs).find_container_instance("i-abc"), "ci-1")
        ecs.list_container_instances.assert_called_once_with(
            cluster="db", filter="ec2InstanceId==i-abc", maxResults=1
        )

    def test_find_container_instance_miss(self):
        ecs = Mock()
        ecs.list_container_instances.return_value = {"containerInstanceArns": []}

        self.assertIsNone(control_plane(ecs=ecs).find_container_instance("i-abc"))

    def test_list_task_arns_follows_pages(self):
        ecs = Mock()
        ecs.list_tasks.side_effect = [
            {"taskArns": ["t1"], "nextToken": "page-2"},
            {"taskArns": ["t2"]},
        ]

        arns = control_plane(ecs=ecs).list_task_arns("ci-1", "RUNNING")

        self.assertEqual(arns, ["t1", "t2"])
        self.assertEqual(ecs.list_tasks.call_args_list[1].kwargs["nextToken"], "page-2")

    def test_describe_tasks_in_batches(self):
        ecs = Mock()
        ecs.describe_tasks.return_value = {"tasks": [{"taskArn": "t"}]}

        tasks = control_plane(ecs=ecs).describe_tasks([f"t{i}" for i in range(150)])

        self.assertEqual(ecs.describe_tasks.call_count, 2)
        self.assertEqual(len(ecs.describe_tasks.call_args_list[0].kwargs["tasks"]), 100)
        self.assertEqual(len(tasks), 2)

    def test_service_exists_ignores_inactive(self):
        ecs = Mock()
        ecs.describe_services.return_value = {"services": [{"serviceName": "cockroach", "status": "INACTIVE"}]}

        self.assertFalse(control_plane(ecs=ecs).service_exists("cockroach"))

    def test_private_address(self):
        self.assertEqual(
            control_plane(ec2=ec2_with_address()).private_address("i-abc"),
            "ip-10-0-0-1.ec2.internal",
        )

    def test_complete_lifecycle_action(self):
        autoscaling = Mock()
        action = LifecycleAction("asg", "hook", "i-abc", "token")

        control_plane(autoscaling=autoscaling).complete_lifecycle_action(action, LifecycleResult.ABANDON)

        autoscaling.complete_lifecycle_action.assert_called_once_with(
            LifecycleActionResult="ABANDON",
            AutoScalingGroupName="asg",
            LifecycleHookName="hook",
            InstanceId="i-abc",
            LifecycleActionToken="token",
        )

    def test_terminate_keeps_capacity(self):
        autoscaling = Mock()

        control_plane(autoscaling=autoscaling).terminate_instance("i-abc")

        autoscaling.terminate_instance_in_auto_scaling_group.assert_called_once_with(
            InstanceId="i-abc", ShouldDecrementDesiredCapacity=False
        )

    def test_group_instances(self):
        autoscaling = Mock()
        autoscaling.describe_auto_scaling_groups.return_value = {
            "AutoScalingGroups": [{"Instances": [{"InstanceId": "i-1", "LifecycleState": "InService"}]}]
        }

        instances = control_plane(autoscaling=autoscaling).group_instances("asg")

        self.assertEqual(instances, [{"InstanceId": "i-1", "LifecycleState": "InService"}])


class TestDrainQueue(unittest.TestCase):
    """Test requeueing of drain notifications"""

    def test_send_with_delay(self):
        sqs = Mock()
        sqs.send_message.return_value = {"MessageId": "m-2"}

        message_id = DrainQueue("https://queue", sqs=sqs).send({"EC2InstanceId": "i-abc"}, 30)

        self.assertEqual(message_id, "m-2")
        kwargs = sqs.send_message.call_args.kwargs
        self.assertEqual(kwargs["DelaySeconds"], 30)
        self.assertEqual(json.loads(kwargs["MessageBody"]), {"EC2InstanceId": "i-abc"})


class TestIdentity(unittest.TestCase):
    """Test instance and task resolution"""

    def test_resolves_instance(self):
        control = Mock()
        control.find_container_instance.return_value = "ci-1"
        control.private_address.return_value = "10.0.0.1"

        identity = resolve_instance_identity(control, "i-abc")

        self.assertEqual(identity.container_instance_arn, "ci-1")
        self.assertEqual(identity.private_address, "10.0.0.1")

    def test_container_instance_miss(self):
        control = Mock()
        control.find_container_instance.return_value = None

        self.assertIsNone(resolve_instance_identity(control, "i-abc"))
        control.private_address.assert_not_called()

    def test_address_miss(self):
        control = Mock()
        control.find_container_instance.return_value = "ci-1"
        control.private_address.return_value = None

        self.assertIsNone(resolve_instance_identity(control, "i-abc"))

    def test_resolves_task(self):
        control = Mock()
        control.describe_tasks.return_value = [{"taskArn": "t1", "containerInstanceArn": "ci-1"}]
        control.describe_container_instance.return_value = {"ec2InstanceId": "i-abc"}
        control.find_container_instance.return_value = "ci-1"
        control.private_address.return_value = "10.0.0.1"

        identity = resolve_task_instance(control, "t1", cluster="arn:cluster/db")

        self.assertEqual(identity.instance_id, "i-abc")
        control.describe_tasks.assert_called_once_with(["t1"], cluster="arn:cluster/db")

    def test_task_without_container_instance(self):
        control = Mock()
        control.describe_tasks.return_value = []

        self.assertIsNone(resolve_task_instance(control, "t1"))


if __name__ == "__main__":
    unittest.main()
