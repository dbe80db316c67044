"""
Service deployment limiter

Caps the database service's maximumPercent while a deployment is in progress
so tasks are replaced one node at a time, and lifts the cap afterwards.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..control import ControlPlane
from ..events import ServiceDeploymentChange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeploymentLimitResult:
    service_arn: str
    maximum_percent: Optional[int]


class ServiceDeploymentLimiter:
    def __init__(self, control: ControlPlane, service_name: str,
                 limited_percent: int = 100, unlimited_percent: int = 200):
        self.control = control
        self.service_name = service_name
        self.limited_percent = limited_percent
        self.unlimited_percent = unlimited_percent

    def handle(self, event: ServiceDeploymentChange) -> DeploymentLimitResult:
        # Service ARNs end with "/<service name>"
        if event.service_arn.rsplit("/", 1)[-1] != self.service_name:
            logger.info("Not updating max health for: %s", event.service_arn)
            return DeploymentLimitResult(service_arn=event.service_arn, maximum_percent=None)

        if event.in_progress:
            logger.info("Limiting max health for %s", self.service_name)
            percent = self.limited_percent
        else:
            logger.info("Unlimiting max health for %s after %s", self.service_name, event.event_name)
            percent = self.unlimited_percent

        self.control.update_service_maximum_percent(self.service_name, percent)
        return DeploymentLimitResult(service_arn=event.service_arn, maximum_percent=percent)
