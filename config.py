"""
Configuration management for the CockroachDB node lifecycle deployment
"""

import pulumi
from typing import Any, Dict, List


def _value_or(value: Any, default: Any) -> Any:
    """Config value, or the default when unset (0 and False are kept)"""
    return default if value is None else value


class Config:
    """Centralized configuration for the lifecycle handlers of one database cluster"""

    def __init__(self):
        self.config = pulumi.Config()

        # AWS Configuration
        self.aws_region = pulumi.Config("aws").get("region") or "us-east-1"

        # Naming
        self.name_prefix = self.config.get("name_prefix") or "cockroach"

        # Compute the handlers coordinate
        self.ecs_cluster_name = self.config.get("ecs_cluster_name") or "cockroach"
        self.ecs_cluster_arn = self.config.get("ecs_cluster_arn") or ""
        self.service_name = self.config.get("service_name") or "cockroach"
        self.service_arn = self.config.get("service_arn") or ""
        self.autoscaling_group_name = self.config.require("autoscaling_group_name")

        # Network access to the database nodes
        self.subnet_ids = self.config.get_object("subnet_ids") or []
        self.security_group_ids = self.config.get_object("security_group_ids") or []

        # Database admin access
        self.cockroach_cluster_name = self.config.get("cockroach_cluster_name") or "cockroach"
        self.ca_crt_param = self.config.get("ca_crt_param") or "/cockroach/ca.crt"
        self.root_crt_param = self.config.get("root_crt_param") or "/cockroach/client.root.crt"
        self.root_key_param = self.config.get("root_key_param") or "/cockroach/client.root.key"

        # Artifacts
        self.cli_layer_path = self.config.get("cli_layer_path") or "./build/cockroach-cli"
        self.handler_package_path = self.config.get("handler_package_path") or "./build/handlers"

        # Lifecycle timing
        self.drain_retry_delay_seconds = _value_or(self.config.get_int("drain_retry_delay_seconds"), 30)
        self.termination_heartbeat_timeout = self.config.get_int("termination_heartbeat_timeout") or 300
        self.drain_heartbeat_timeout = self.config.get_int("drain_heartbeat_timeout") or 3600
        self.startup_heartbeat_timeout = self.config.get_int("startup_heartbeat_timeout") or 360
        self.startup_wait_heartbeat_timeout = self.config.get_int("startup_wait_heartbeat_timeout") or 900

        # Startup admission
        self.health_check_attempts = _value_or(self.config.get_int("health_check_attempts"), 500)
        self.health_check_delay_seconds = _value_or(self.config.get_float("health_check_delay_seconds"), 0.5)
        self.health_check_scheme = self.config.get("health_check_scheme") or "http"
        self.admit_unresolved_instances = _value_or(self.config.get_bool("admit_unresolved_instances"), True)

        # Stopped tasks decommission their node as well as draining it
        self.task_stop_decommission = _value_or(self.config.get_bool("task_stop_decommission"), True)

        # Logging Configuration
        self.log_retention_days = self.config.get_int("log_retention_days") or 30

        # Additional tags
        self.additional_tags = self.config.get_object("tags") or {}

        if self.health_check_scheme not in ("http", "https"):
            raise ValueError(f"health_check_scheme must be http or https, got {self.health_check_scheme}")

    @property
    def common_tags(self) -> Dict[str, str]:
        """Get common tags for all resources"""
        base_tags = {
            "Project": "cockroach-ecs-lifecycle",
            "CockroachCluster": self.cockroach_cluster_name,
            "ManagedBy": "pulumi"
        }
        base_tags.update(self.additional_tags)
        return base_tags

    @property
    def tls_parameters(self) -> Dict[str, str]:
        """SSM parameter names of the root client TLS material"""
        return {
            "ca_crt": self.ca_crt_param,
            "root_crt": self.root_crt_param,
            "root_key": self.root_key_param
        }

    @property
    def heartbeat_timeouts(self) -> Dict[str, int]:
        return {
            "termination": self.termination_heartbeat_timeout,
            "drain": self.drain_heartbeat_timeout,
            "startup": self.startup_heartbeat_timeout,
            "startup_wait": self.startup_wait_heartbeat_timeout
        }

    def resolved_cluster_arn(self, account_id: str) -> str:
        return self.ecs_cluster_arn or (
            f"arn:aws:ecs:{self.aws_region}:{account_id}:cluster/{self.ecs_cluster_name}"
        )

    def resolved_service_arn(self, account_id: str) -> str:
        return self.service_arn or (
            f"arn:aws:ecs:{self.aws_region}:{account_id}:service/{self.ecs_cluster_name}/{self.service_name}"
        )


def get_config() -> Config:
    """Get the global configuration instance"""
    return Config()
