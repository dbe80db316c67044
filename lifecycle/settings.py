"""
Runtime settings for the lifecycle Lambda functions

Values come from the function environment set by the deployment layer.
"""

import os
import tempfile
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .exceptions import ConfigurationError

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _get_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _get_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Immutable view of one Lambda function's environment"""

    cluster_name: str = "cockroach"
    ecs_cluster: str = ""
    service_name: str = ""
    queue_url: str = ""
    retry_delay_seconds: int = 30

    # SSM parameter names holding the TLS material
    ca_crt_param: str = ""
    root_crt_param: str = ""
    root_key_param: str = ""
    certs_dir: Optional[str] = None

    admin_port: int = 26258
    decommission_timeout_seconds: float = 20
    drain_timeout_seconds: float = 45

    health_port: int = 8080
    health_path: str = "/health"
    health_scheme: str = "http"
    health_timeout_seconds: float = 5
    # 500 probes 0.5 s apart fill the 5 minute startup function timeout
    health_check_attempts: int = 500
    health_check_delay_seconds: float = 0.5
    admit_unresolved_instances: bool = True

    termination_wait_attempts: int = 150
    termination_wait_delay_seconds: float = 5

    task_stop_decommission: bool = True

    limited_maximum_percent: int = 100
    unlimited_maximum_percent: int = 200

    log_level: str = "INFO"
    region: Optional[str] = field(default=None)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from an environment mapping (defaults to os.environ)"""
        environ = os.environ if environ is None else environ

        health_scheme = environ.get("HEALTH_SCHEME", "http").lower()
        if health_scheme not in ("http", "https"):
            raise ConfigurationError(f"HEALTH_SCHEME must be http or https, got {health_scheme!r}")

        settings = cls(
            cluster_name=environ.get("CLUSTER_NAME") or "cockroach",
            ecs_cluster=environ.get("ECS_CLUSTER", ""),
            service_name=environ.get("SERVICE_NAME", ""),
            queue_url=environ.get("QUEUE_URL", ""),
            retry_delay_seconds=_get_int(environ, "RETRY_DELAY_SECONDS", 30),
            ca_crt_param=environ.get("COCKROACH_CA_CRT_PARAM", ""),
            root_crt_param=environ.get("COCKROACH_ROOT_CRT_PARAM", ""),
            root_key_param=environ.get("COCKROACH_ROOT_KEY_PARAM", ""),
            certs_dir=environ.get("COCKROACH_CERTS_DIR") or None,
            admin_port=_get_int(environ, "ADMIN_PORT", 26258),
            decommission_timeout_seconds=_get_float(environ, "DECOMMISSION_TIMEOUT_SECONDS", 20),
            drain_timeout_seconds=_get_float(environ, "DRAIN_TIMEOUT_SECONDS", 45),
            health_port=_get_int(environ, "HEALTH_PORT", 8080),
            health_path=environ.get("HEALTH_PATH") or "/health",
            health_scheme=health_scheme,
            health_timeout_seconds=_get_float(environ, "HEALTH_TIMEOUT_SECONDS", 5),
            health_check_attempts=_get_int(environ, "HEALTH_CHECK_ATTEMPTS", 500),
            health_check_delay_seconds=_get_float(environ, "HEALTH_CHECK_DELAY_SECONDS", 0.5),
            admit_unresolved_instances=_get_bool(environ, "ADMIT_UNRESOLVED_INSTANCES", True),
            termination_wait_attempts=_get_int(environ, "TERMINATION_WAIT_ATTEMPTS", 150),
            termination_wait_delay_seconds=_get_float(environ, "TERMINATION_WAIT_DELAY_SECONDS", 5),
            task_stop_decommission=_get_bool(environ, "TASK_STOP_DECOMMISSION", True),
            limited_maximum_percent=_get_int(environ, "LIMITED_MAXIMUM_PERCENT", 100),
            unlimited_maximum_percent=_get_int(environ, "UNLIMITED_MAXIMUM_PERCENT", 200),
            log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
            region=environ.get("AWS_REGION") or None,
        )

        # SQS caps message delay at 15 minutes
        if not 0 <= settings.retry_delay_seconds <= 900:
            raise ConfigurationError("RETRY_DELAY_SECONDS must be between 0 and 900")
        if settings.health_check_attempts < 1 or settings.termination_wait_attempts < 1:
            raise ConfigurationError("Attempt counts must be at least 1")
        return settings

    def resolve_certs_dir(self) -> str:
        """Directory the TLS material is written to"""
        if self.certs_dir:
            return self.certs_dir
        return tempfile.mkdtemp(prefix="cockroach-certs-")
