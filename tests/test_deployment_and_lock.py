"""
Unit tests for the deployment limiter and container instance lock
"""

import hashlib
import sys
import os
import unittest
from unittest.mock import Mock

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from lifecycle.coordinators import ContainerInstanceLock, ServiceDeploymentLimiter
from lifecycle.coordinators.container_lock import LOCKED, OPEN, lock_name
from lifecycle.events import ServiceDeploymentChange, TaskStateChange

SERVICE_ARN = "arn:aws:ecs:us-east-1:123:service/db/cockroach"
CLUSTER_ARN = "arn:aws:ecs:us-east-1:123:cluster/db"


class TestServiceDeploymentLimiter(unittest.TestCase):
    """Test maximumPercent changes around deployments"""

    def test_limits_during_deployment(self):
        control = Mock()

        result = ServiceDeploymentLimiter(control, "cockroach").handle(
            ServiceDeploymentChange(SERVICE_ARN, "SERVICE_DEPLOYMENT_IN_PROGRESS")
        )

        control.update_service_maximum_percent.assert_called_once_with("cockroach", 100)
        self.assertEqual(result.maximum_percent, 100)

    def test_unlimits_after_deployment(self):
        control = Mock()

        ServiceDeploymentLimiter(control, "cockroach").handle(
            ServiceDeploymentChange(SERVICE_ARN, "SERVICE_DEPLOYMENT_COMPLETED")
        )

        control.update_service_maximum_percent.assert_called_once_with("cockroach", 200)

    def test_other_service_is_ignored(self):
        control = Mock()

        result = ServiceDeploymentLimiter(control, "cockroach").handle(
            ServiceDeploymentChange("arn:aws:ecs:us-east-1:123:service/db/other",
                                    "SERVICE_DEPLOYMENT_IN_PROGRESS")
        )

        control.update_service_maximum_percent.assert_not_called()
        self.assertIsNone(result.maximum_percent)


class TestContainerInstanceLock(unittest.TestCase):
    """Test the per-family lock attribute"""

    def task_event(self, desired_status):
        return TaskStateChange(
            cluster_arn=CLUSTER_ARN,
            task_arn="t1",
            desired_status=desired_status,
            last_status="PENDING",
            group="family:cockroach",
        )

    def control(self):
        control = Mock()
        control.describe_tasks.return_value = [{"taskArn": "t1", "containerInstanceArn": "ci-1"}]
        return control

    def test_lock_name(self):
        expected = hashlib.sha1(b"cockroach").hexdigest() + ".lock"
        self.assertEqual(lock_name("cockroach"), expected)

    def test_running_task_locks(self):
        control = self.control()

        result = ContainerInstanceLock(control).handle(self.task_event("RUNNING"))

        control.put_container_instance_attribute.assert_called_once_with(
            "ci-1", lock_name("cockroach"), LOCKED, cluster=CLUSTER_ARN
        )
        self.assertEqual(result.state, LOCKED)

    def test_stopped_task_opens(self):
        control = self.control()

        result = ContainerInstanceLock(control).handle(self.task_event("STOPPED"))

        self.assertEqual(result.state, OPEN)

    def test_other_status_is_ignored(self):
        control = self.control()

        result = ContainerInstanceLock(control).handle(self.task_event("PENDING"))

        control.describe_tasks.assert_not_called()
        self.assertIsNone(result.state)


if __name__ == "__main__":
    unittest.main()
