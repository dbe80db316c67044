"""
AWS Lambda entrypoints

Each function deployed by the Pulumi program points its handler at one of
the functions below. Clients, settings and TLS material are created lazily
once per warm container and reused across invocations.
"""

import dataclasses
import json
import logging
from typing import Any, Dict, Optional

from .cockroach import CockroachAdmin, TlsMaterial
from .control import ControlPlane, DrainQueue
from .coordinators import (
    ContainerInstanceLock,
    DecommissionCoordinator,
    DeregisterCoordinator,
    HealthCheckPolicy,
    RebalanceCoordinator,
    ServiceDeploymentLimiter,
    StartupAdmissionGate,
    StartupTerminationWaitGate,
    TaskDrainCoordinator,
)
from .events import (
    InstanceLaunching,
    InstanceTerminating,
    RebalanceRecommendation,
    ServiceDeploymentChange,
    TaskStateChange,
    dispatch,
    parse_event,
)
from .settings import Settings

logger = logging.getLogger()
logger.setLevel(logging.INFO)


class Runtime:
    """Per-container wiring of settings, AWS clients and coordinators"""

    def __init__(self, settings: Settings, control: Optional[ControlPlane] = None,
                 admin: Optional[CockroachAdmin] = None, queue: Optional[DrainQueue] = None):
        self.settings = settings
        self._control = control
        self._admin = admin
        self._queue = queue

    @property
    def control(self) -> ControlPlane:
        if self._control is None:
            self._control = ControlPlane(self.settings.ecs_cluster, region=self.settings.region)
        return self._control

    @property
    def admin(self) -> CockroachAdmin:
        if self._admin is None:
            tls = TlsMaterial(
                self.settings.ca_crt_param,
                self.settings.root_crt_param,
                self.settings.root_key_param,
                certs_dir=self.settings.resolve_certs_dir(),
            )
            self._admin = CockroachAdmin(
                self.settings.cluster_name,
                tls,
                port=self.settings.admin_port,
                decommission_timeout=self.settings.decommission_timeout_seconds,
                drain_timeout=self.settings.drain_timeout_seconds,
            )
        return self._admin

    @property
    def queue(self) -> DrainQueue:
        if self._queue is None:
            self._queue = DrainQueue(self.settings.queue_url, region=self.settings.region)
        return self._queue

    def decommission_routes(self) -> Dict[type, Any]:
        decommission = DecommissionCoordinator(self.control, self.admin)
        rebalance = RebalanceCoordinator(self.control, self.admin)
        deregister = DeregisterCoordinator(self.control, self.admin,
                                           decommission=self.settings.task_stop_decommission)
        return {
            InstanceTerminating: decommission.handle,
            RebalanceRecommendation: rebalance.handle,
            TaskStateChange: deregister.handle,
        }

    def task_drain(self) -> TaskDrainCoordinator:
        return TaskDrainCoordinator(self.control, self.queue, self.settings.retry_delay_seconds)

    def admission_gate(self) -> StartupAdmissionGate:
        policy = HealthCheckPolicy(
            port=self.settings.health_port,
            path=self.settings.health_path,
            scheme=self.settings.health_scheme,
            timeout=self.settings.health_timeout_seconds,
            attempts=self.settings.health_check_attempts,
            delay=self.settings.health_check_delay_seconds,
        )
        return StartupAdmissionGate(self.control, self.settings.service_name, policy,
                                    admit_unresolved=self.settings.admit_unresolved_instances)

    def termination_wait_gate(self) -> StartupTerminationWaitGate:
        return StartupTerminationWaitGate(self.control,
                                          attempts=self.settings.termination_wait_attempts,
                                          delay=self.settings.termination_wait_delay_seconds)

    def deployment_limiter(self) -> ServiceDeploymentLimiter:
        return ServiceDeploymentLimiter(self.control, self.settings.service_name,
                                        limited_percent=self.settings.limited_maximum_percent,
                                        unlimited_percent=self.settings.unlimited_maximum_percent)

    def container_lock(self) -> ContainerInstanceLock:
        return ContainerInstanceLock(self.control)


_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        settings = Settings.from_env()
        logging.getLogger().setLevel(settings.log_level)
        _runtime = Runtime(settings)
    return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    """Replace the cached runtime (None forces a rebuild from the environment)"""
    global _runtime
    _runtime = runtime


def _log_event(event: Any) -> None:
    logger.info(json.dumps(event, default=str))


def decommission(event, context):
    """Terminating lifecycle actions, rebalance recommendations and stopped tasks"""
    _log_event(event)
    runtime = get_runtime()
    return _summary(dispatch(parse_event(event), runtime.decommission_routes()))


def drain(event, context):
    """SQS batch of terminating lifecycle notifications"""
    _log_event(event)
    return get_runtime().task_drain().handle_batch(event.get("Records") or [])


def startup(event, context):
    _log_event(event)
    gate = get_runtime().admission_gate()
    return _summary(dispatch(parse_event(event), {InstanceLaunching: gate.handle}))


def startup_wait(event, context):
    _log_event(event)
    gate = get_runtime().termination_wait_gate()
    return _summary(dispatch(parse_event(event), {InstanceLaunching: gate.handle}))


def service_deployment(event, context):
    _log_event(event)
    limiter = get_runtime().deployment_limiter()
    return _summary(dispatch(parse_event(event), {ServiceDeploymentChange: limiter.handle}))


def container_lock(event, context):
    _log_event(event)
    lock = get_runtime().container_lock()
    return _summary(dispatch(parse_event(event), {TaskStateChange: lock.handle}))


def _summary(result: Any) -> Dict[str, Any]:
    """JSON-safe summary of a coordinator result for the invocation log"""
    summary = json.loads(json.dumps(result, default=_jsonable))
    logger.info("Result: %s", summary)
    return summary


def _jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    return str(value)
