"""
Startup admission gate

Holds an instance-launching lifecycle action until the new node's health
endpoint answers, abandoning the launch if it never does.
"""

import functools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..control import ControlPlane
from ..events import InstanceLaunching, LifecycleActionHandle, LifecycleResult
from ..exceptions import HealthCheckFailed
from ..health import check_health
from ..retry import retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthCheckPolicy:
    port: int = 8080
    path: str = "/health"
    scheme: str = "http"
    timeout: float = 5
    attempts: int = 500
    delay: float = 0.5


@dataclass(frozen=True)
class AdmissionResult:
    instance_id: str
    lifecycle_result: LifecycleResult
    reason: str
    address: Optional[str] = None


class StartupAdmissionGate:
    def __init__(self, control: ControlPlane, service_name: str,
                 policy: Optional[HealthCheckPolicy] = None,
                 admit_unresolved: bool = True,
                 probe: Callable[..., None] = check_health,
                 sleep: Callable[[float], None] = time.sleep):
        self.control = control
        self.service_name = service_name
        self.policy = policy or HealthCheckPolicy()
        self.admit_unresolved = admit_unresolved
        self.probe = probe
        self.sleep = sleep

    def handle(self, event: InstanceLaunching) -> AdmissionResult:
        action = event.action
        handle = LifecycleActionHandle(action, self.control)

        if not self.control.service_exists(self.service_name):
            logger.info("Service is not yet created, continue instance creation")
            return self._resolve(handle, LifecycleResult.CONTINUE, "service not created")

        address = self.control.private_address(action.instance_id)
        if address is None:
            result = LifecycleResult.CONTINUE if self.admit_unresolved else LifecycleResult.ABANDON
            logger.warning("Could not resolve %s, resolving %s", action.instance_id, result.value)
            return self._resolve(handle, result, "instance unresolved")

        probe = functools.partial(
            self.probe, address,
            port=self.policy.port,
            path=self.policy.path,
            scheme=self.policy.scheme,
            timeout=self.policy.timeout,
        )
        try:
            retry_with_backoff(probe,
                               max_attempts=self.policy.attempts,
                               constant_delay=self.policy.delay,
                               sleep=self.sleep)
        except HealthCheckFailed as e:
            logger.warning("Node on %s never became healthy: %s", action.instance_id, e)
            return self._resolve(handle, LifecycleResult.ABANDON, "unhealthy", address)

        return self._resolve(handle, LifecycleResult.CONTINUE, "healthy", address)

    @staticmethod
    def _resolve(handle: LifecycleActionHandle, result: LifecycleResult, reason: str,
                 address: Optional[str] = None) -> AdmissionResult:
        handle.complete(result)
        return AdmissionResult(
            instance_id=handle.action.instance_id,
            lifecycle_result=result,
            reason=reason,
            address=address,
        )
