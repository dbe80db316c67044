"""
CockroachDB on ECS - node lifecycle coordination
Declares the Lambda handlers and hooks that remove nodes safely before
their instances terminate and gate new instances until they are healthy
"""
import pulumi
import pulumi_aws as aws
from config import get_config
from modules import LayerBuildCache, create_cli_layer, create_lifecycle_hooks

config = get_config()
account_id = aws.get_caller_identity().account_id

# 1. Cockroach CLI layer, built once per deployment
layer_cache = LayerBuildCache(config.cli_layer_path)
cli_layer = create_cli_layer(config.name_prefix, layer_cache)

# 2. Lifecycle coordinators
hooks = create_lifecycle_hooks(
    config.name_prefix,
    asg_name=config.autoscaling_group_name,
    ecs_cluster_name=config.ecs_cluster_name,
    ecs_cluster_arn=config.resolved_cluster_arn(account_id),
    service_name=config.service_name,
    service_arn=config.resolved_service_arn(account_id),
    code=pulumi.FileArchive(config.handler_package_path),
    layer_arn=cli_layer["layer_arn"],
    cockroach_cluster_name=config.cockroach_cluster_name,
    tls_parameters=config.tls_parameters,
    subnet_ids=config.subnet_ids,
    security_group_ids=config.security_group_ids,
    timeouts=config.heartbeat_timeouts,
    drain_retry_delay_seconds=config.drain_retry_delay_seconds,
    health_check_attempts=config.health_check_attempts,
    health_check_delay_seconds=config.health_check_delay_seconds,
    health_check_scheme=config.health_check_scheme,
    admit_unresolved_instances=config.admit_unresolved_instances,
    task_stop_decommission=config.task_stop_decommission,
    log_retention_days=config.log_retention_days,
    tags=config.common_tags,
)

# Exports
pulumi.export("cli_layer_arn", cli_layer["layer_arn"])
pulumi.export("drain_queue_url", hooks["task_drain"]["queue_url"])
pulumi.export("lifecycle_hooks", {
    key: resources["hook_name"] for key, resources in hooks.items() if "hook_name" in resources
})
pulumi.export("handler_functions", {
    key: resources["function_name"] for key, resources in hooks.items()
})
