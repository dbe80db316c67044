"""
Lifecycle Hook Module Functions
Declares the Lambda functions, IAM roles, lifecycle hooks, EventBridge rules
and SQS queue behind each node lifecycle coordinator
"""

import json
import pulumi
import pulumi_aws as aws
from typing import Dict, List, Optional

RUNTIME = "python3.12"
TERMINATING = "autoscaling:EC2_INSTANCE_TERMINATING"
LAUNCHING = "autoscaling:EC2_INSTANCE_LAUNCHING"

# Actions per coordinator, least privilege
DECOMMISSION_ACTIONS = [
    "autoscaling:CompleteLifecycleAction",
    "ecs:DescribeContainerInstances",
    "ecs:DescribeTasks",
    "ecs:ListContainerInstances",
    "ec2:DescribeInstances",
]

REBALANCE_ACTIONS = [
    "ecs:DescribeContainerInstances",
    "ecs:ListContainerInstances",
    "ecs:UpdateContainerInstancesState",
    "autoscaling:TerminateInstanceInAutoScalingGroup",
    "ec2:DescribeInstances",
]

DEREGISTER_ACTIONS = [
    "ecs:DescribeContainerInstances",
    "ecs:ListContainerInstances",
    "ecs:DescribeTasks",
    "ec2:DescribeInstances",
]

DRAIN_ACTIONS = [
    "autoscaling:CompleteLifecycleAction",
    "ecs:DescribeContainerInstances",
    "ecs:DescribeTasks",
    "ecs:ListContainerInstances",
    "ecs:ListTasks",
    "ecs:UpdateContainerInstancesState",
]

STARTUP_ACTIONS = [
    "ecs:DescribeServices",
    "ec2:DescribeInstances",
    "autoscaling:CompleteLifecycleAction",
]

STARTUP_WAIT_ACTIONS = [
    "autoscaling:CompleteLifecycleAction",
    "autoscaling:DescribeAutoScalingGroups",
    "autoscaling:RecordLifecycleActionHeartbeat",
]

DEPLOYMENT_LIMIT_ACTIONS = [
    "ecs:UpdateService",
]

CONTAINER_LOCK_ACTIONS = [
    "ecs:DescribeTasks",
    "ecs:PutAttributes",
]


def ssm_parameter_arn(parameter_name: str) -> str:
    """ARN pattern for an SSM parameter name in any region of this account"""
    return f"arn:aws:ssm:*:*:parameter/{parameter_name.lstrip('/')}"


def create_handler_role(name: str, actions: List[str], vpc: bool = False,
                        ssm_parameters: List[str] = None,
                        tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create IAM role for a lifecycle handler function

    Args:
        name: Role name prefix
        actions: Control-plane actions the handler calls
        vpc: Whether the function runs inside the VPC
        ssm_parameters: SSM parameter names the handler reads
        tags: Additional tags

    Returns:
        Dict with role resource and outputs
    """
    tags = tags or {}
    ssm_parameters = ssm_parameters or []

    role = aws.iam.Role(
        f"{name}-role",
        assume_role_policy=json.dumps({
            "Version": "2012-10-17",
            "Statement": [{
                "Action": "sts:AssumeRole",
                "Effect": "Allow",
                "Principal": {"Service": "lambda.amazonaws.com"}
            }]
        }),
        tags={
            **tags,
            "Name": f"{name}-role",
            "Module": "hooks"
        }
    )

    execution_policy = (
        "arn:aws:iam::aws:policy/service-role/AWSLambdaVPCAccessExecutionRole" if vpc
        else "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
    )
    aws.iam.RolePolicyAttachment(
        f"{name}-execution-policy",
        role=role.name,
        policy_arn=execution_policy
    )

    statements = [{
        "Effect": "Allow",
        "Action": actions,
        "Resource": "*"
    }]
    if ssm_parameters:
        statements.append({
            "Effect": "Allow",
            "Action": ["ssm:GetParameter"],
            "Resource": [ssm_parameter_arn(p) for p in ssm_parameters]
        })

    policy = aws.iam.RolePolicy(
        f"{name}-policy",
        role=role.id,
        policy=json.dumps({
            "Version": "2012-10-17",
            "Statement": statements
        })
    )

    return {
        "role": role,
        "policy": policy,
        "role_arn": role.arn,
        "role_name": role.name
    }


def create_handler_function(name: str, handler: str, role_arn: pulumi.Output[str],
                            code: pulumi.Archive, environment: Dict[str, str],
                            timeout: int = 60, memory_size: int = 512,
                            layers: List[pulumi.Output[str]] = None,
                            subnet_ids: List[str] = None,
                            security_group_ids: List[str] = None,
                            log_retention_days: int = 30,
                            tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create a Lambda function for one coordinator, with its log group

    Args:
        name: Function name
        handler: Entrypoint in the lifecycle.handlers module
        role_arn: Execution role ARN
        code: Handler package archive
        environment: Environment variables
        timeout: Timeout in seconds
        memory_size: Memory in MB
        layers: Layer ARNs
        subnet_ids: Subnets, when the function must reach the database nodes
        security_group_ids: Security groups for the VPC attachment
        log_retention_days: Log retention in days
        tags: Additional tags

    Returns:
        Dict with function resources and outputs
    """
    tags = tags or {}

    vpc_config = None
    if subnet_ids:
        vpc_config = aws.lambda_.FunctionVpcConfigArgs(
            subnet_ids=subnet_ids,
            security_group_ids=security_group_ids or []
        )

    log_group = aws.cloudwatch.LogGroup(
        f"{name}-log-group",
        name=f"/aws/lambda/{name}",
        retention_in_days=log_retention_days,
        tags={
            **tags,
            "Name": f"{name}-log-group",
            "Module": "hooks"
        }
    )

    function = aws.lambda_.Function(
        name,
        name=name,
        role=role_arn,
        runtime=RUNTIME,
        handler=f"lifecycle.handlers.{handler}",
        code=code,
        timeout=timeout,
        memory_size=memory_size,
        layers=layers or [],
        vpc_config=vpc_config,
        environment=aws.lambda_.FunctionEnvironmentArgs(variables=environment),
        tags={
            **tags,
            "Name": name,
            "Module": "hooks"
        },
        opts=pulumi.ResourceOptions(depends_on=[log_group])
    )

    return {
        "function": function,
        "log_group": log_group,
        "function_arn": function.arn,
        "function_name": function.name
    }


def create_lifecycle_hook(name: str, asg_name: str, transition: str, default_result: str,
                          heartbeat_timeout: int, notification_target_arn=None,
                          role_arn=None) -> Dict[str, any]:
    """
    Create an Auto Scaling lifecycle hook

    Args:
        name: Hook name, also matched by the EventBridge rules
        asg_name: Auto Scaling group name
        transition: Lifecycle transition
        default_result: Result applied when the heartbeat times out
        heartbeat_timeout: Heartbeat timeout in seconds
        notification_target_arn: Optional SQS target for the notification
        role_arn: Role the auto-scaler assumes to publish to the target

    Returns:
        Dict with hook resource and outputs
    """
    hook = aws.autoscaling.LifecycleHook(
        name,
        name=name,
        autoscaling_group_name=asg_name,
        lifecycle_transition=transition,
        default_result=default_result,
        heartbeat_timeout=heartbeat_timeout,
        notification_target_arn=notification_target_arn,
        role_arn=role_arn
    )

    return {
        "hook": hook,
        "hook_name": name
    }


def create_event_rule(name: str, event_pattern: Dict[str, any], function: aws.lambda_.Function,
                      retry_attempts: Optional[int] = None,
                      max_event_age: Optional[int] = None,
                      tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create an EventBridge rule invoking a handler function

    Args:
        name: Rule name prefix
        event_pattern: EventBridge event pattern
        function: Target function
        retry_attempts: Delivery retry attempts
        max_event_age: Maximum event age in seconds
        tags: Additional tags

    Returns:
        Dict with rule, target and permission resources
    """
    tags = tags or {}

    rule = aws.cloudwatch.EventRule(
        f"{name}-rule",
        event_pattern=json.dumps(event_pattern),
        tags={
            **tags,
            "Name": f"{name}-rule",
            "Module": "hooks"
        }
    )

    retry_policy = None
    if retry_attempts is not None or max_event_age is not None:
        retry_policy = aws.cloudwatch.EventTargetRetryPolicyArgs(
            maximum_retry_attempts=retry_attempts,
            maximum_event_age_in_seconds=max_event_age
        )

    target = aws.cloudwatch.EventTarget(
        f"{name}-target",
        rule=rule.name,
        arn=function.arn,
        retry_policy=retry_policy
    )

    permission = aws.lambda_.Permission(
        f"{name}-permission",
        action="lambda:InvokeFunction",
        function=function.name,
        principal="events.amazonaws.com",
        source_arn=rule.arn
    )

    return {
        "rule": rule,
        "target": target,
        "permission": permission
    }


def _database_handler(name: str, handler: str, actions: List[str], shared: Dict[str, any],
                      timeout: int, environment: Dict[str, str] = None) -> Dict[str, any]:
    """Function that reaches the database admin endpoint: VPC, CLI layer and TLS parameters"""
    role = create_handler_role(
        name,
        actions,
        vpc=True,
        ssm_parameters=shared["ssm_parameters"],
        tags=shared["tags"]
    )
    return create_handler_function(
        name,
        handler,
        role["role_arn"],
        shared["code"],
        {**shared["database_environment"], **(environment or {})},
        timeout=timeout,
        memory_size=shared.get("memory_size", 1024),
        layers=[shared["layer_arn"]],
        subnet_ids=shared["subnet_ids"],
        security_group_ids=shared["security_group_ids"],
        log_retention_days=shared["log_retention_days"],
        tags=shared["tags"]
    )


def create_decommission_hook(name: str, asg_name: str, shared: Dict[str, any],
                             heartbeat_timeout: int = 300) -> Dict[str, any]:
    """
    Termination hook whose handler decommissions and drains the node

    Args:
        name: Resource name prefix
        asg_name: Auto Scaling group name
        shared: Shared handler settings (code, layer, network, environment)
        heartbeat_timeout: Heartbeat timeout in seconds

    Returns:
        Dict with hook, function and rule resources
    """
    hook = create_lifecycle_hook(
        f"{name}-termination-hook", asg_name, TERMINATING, "CONTINUE", heartbeat_timeout
    )
    function = _database_handler(
        f"{name}-decommission", "decommission", DECOMMISSION_ACTIONS, shared, timeout=120
    )
    rule = create_event_rule(
        f"{name}-decommission",
        {
            "source": ["aws.autoscaling"],
            "detail-type": ["EC2 Instance-terminate Lifecycle Action"],
            "detail": {"LifecycleHookName": [hook["hook_name"]]}
        },
        function["function"],
        tags=shared["tags"]
    )
    return {**hook, **function, **rule}


def create_rebalance_hook(name: str, shared: Dict[str, any]) -> Dict[str, any]:
    """Rule on spot rebalance recommendations"""
    function = _database_handler(
        f"{name}-rebalance", "decommission", REBALANCE_ACTIONS, shared, timeout=300
    )
    rule = create_event_rule(
        f"{name}-rebalance",
        {
            "source": ["aws.ec2"],
            "detail-type": ["EC2 Instance Rebalance Recommendation"]
        },
        function["function"],
        tags=shared["tags"]
    )
    return {**function, **rule}


def create_deregister_hook(name: str, ecs_cluster_arn: str, shared: Dict[str, any],
                           decommission: bool = True) -> Dict[str, any]:
    """Rule on tasks stopping on EC2 container instances of this cluster"""
    function = _database_handler(
        f"{name}-deregister", "decommission", DEREGISTER_ACTIONS, shared, timeout=120,
        environment={"TASK_STOP_DECOMMISSION": str(decommission).lower()}
    )
    rule = create_event_rule(
        f"{name}-deregister",
        {
            "source": ["aws.ecs"],
            "detail-type": ["ECS Task State Change"],
            "detail": {
                "launchType": ["EC2"],
                "lastStatus": ["DEACTIVATING"],
                "desiredStatus": ["STOPPED"],
                "clusterArn": [ecs_cluster_arn]
            }
        },
        function["function"],
        retry_attempts=3,
        tags=shared["tags"]
    )
    return {**function, **rule}


def create_task_drain_hook(name: str, asg_name: str, shared: Dict[str, any],
                           retry_delay_seconds: int = 30,
                           heartbeat_timeout: int = 3600) -> Dict[str, any]:
    """
    Termination hook notifying an SQS queue polled by the drain handler

    Args:
        name: Resource name prefix
        asg_name: Auto Scaling group name
        shared: Shared handler settings
        retry_delay_seconds: Delay before a requeued drain check
        heartbeat_timeout: Heartbeat timeout in seconds, bounds the total wait

    Returns:
        Dict with queue, hook, function and event source mapping resources
    """
    tags = shared["tags"]

    dead_letter_queue = aws.sqs.Queue(
        f"{name}-drain-dlq",
        message_retention_seconds=1209600,
        tags={**tags, "Name": f"{name}-drain-dlq", "Module": "hooks"}
    )

    queue = aws.sqs.Queue(
        f"{name}-drain-queue",
        visibility_timeout_seconds=120,
        redrive_policy=dead_letter_queue.arn.apply(lambda arn: json.dumps({
            "deadLetterTargetArn": arn,
            "maxReceiveCount": 5
        })),
        tags={**tags, "Name": f"{name}-drain-queue", "Module": "hooks"}
    )

    # Role the auto-scaler assumes to publish lifecycle notifications
    notification_role = aws.iam.Role(
        f"{name}-drain-notification-role",
        assume_role_policy=json.dumps({
            "Version": "2012-10-17",
            "Statement": [{
                "Action": "sts:AssumeRole",
                "Effect": "Allow",
                "Principal": {"Service": "autoscaling.amazonaws.com"}
            }]
        }),
        tags={**tags, "Name": f"{name}-drain-notification-role", "Module": "hooks"}
    )
    aws.iam.RolePolicyAttachment(
        f"{name}-drain-notification-policy",
        role=notification_role.name,
        policy_arn="arn:aws:iam::aws:policy/service-role/AutoScalingNotificationAccessRole"
    )

    hook = create_lifecycle_hook(
        f"{name}-drain-hook", asg_name, TERMINATING, "CONTINUE", heartbeat_timeout,
        notification_target_arn=queue.arn,
        role_arn=notification_role.arn
    )

    role = create_handler_role(f"{name}-drain", DRAIN_ACTIONS, tags=tags)
    aws.iam.RolePolicy(
        f"{name}-drain-queue-policy",
        role=role["role"].id,
        policy=queue.arn.apply(lambda arn: json.dumps({
            "Version": "2012-10-17",
            "Statement": [{
                "Effect": "Allow",
                "Action": [
                    "sqs:SendMessage",
                    "sqs:ReceiveMessage",
                    "sqs:DeleteMessage",
                    "sqs:GetQueueAttributes"
                ],
                "Resource": arn
            }]
        }))
    )

    function = create_handler_function(
        f"{name}-drain",
        "drain",
        role["role_arn"],
        shared["code"],
        {
            **shared["environment"],
            "QUEUE_URL": queue.url,
            "RETRY_DELAY_SECONDS": str(retry_delay_seconds)
        },
        timeout=60,
        log_retention_days=shared["log_retention_days"],
        tags=tags
    )

    mapping = aws.lambda_.EventSourceMapping(
        f"{name}-drain-source",
        event_source_arn=queue.arn,
        function_name=function["function_arn"],
        batch_size=10,
        function_response_types=["ReportBatchItemFailures"]
    )

    return {
        **hook,
        **function,
        "queue": queue,
        "dead_letter_queue": dead_letter_queue,
        "queue_url": queue.url,
        "event_source_mapping": mapping
    }


def create_startup_hook(name: str, asg_name: str, service_name: str, shared: Dict[str, any],
                        health_check: Dict[str, any] = None,
                        heartbeat_timeout: int = 360) -> Dict[str, any]:
    """
    Launch hook whose handler waits for the new node's health endpoint

    Args:
        name: Resource name prefix
        asg_name: Auto Scaling group name
        service_name: ECS service running the database
        shared: Shared handler settings
        health_check: Health check environment variables
        heartbeat_timeout: Heartbeat timeout in seconds; the launch is abandoned on timeout

    Returns:
        Dict with hook, function and rule resources
    """
    tags = shared["tags"]
    hook = create_lifecycle_hook(
        f"{name}-startup-hook", asg_name, LAUNCHING, "ABANDON", heartbeat_timeout
    )
    role = create_handler_role(f"{name}-startup", STARTUP_ACTIONS, vpc=True, tags=tags)
    function = create_handler_function(
        f"{name}-startup",
        "startup",
        role["role_arn"],
        shared["code"],
        {
            **shared["environment"],
            "SERVICE_NAME": service_name,
            **(health_check or {})
        },
        timeout=300,
        subnet_ids=shared["subnet_ids"],
        security_group_ids=shared["security_group_ids"],
        log_retention_days=shared["log_retention_days"],
        tags=tags
    )
    rule = create_event_rule(
        f"{name}-startup",
        {
            "source": ["aws.autoscaling"],
            "detail-type": ["EC2 Instance-launch Lifecycle Action"],
            "detail": {"LifecycleHookName": [hook["hook_name"]]}
        },
        function["function"],
        tags=tags
    )
    return {**hook, **function, **rule}


def create_startup_wait_hook(name: str, asg_name: str, shared: Dict[str, any],
                             heartbeat_timeout: int = 900) -> Dict[str, any]:
    """Launch hook whose handler waits for sibling terminations to finish"""
    tags = shared["tags"]
    hook = create_lifecycle_hook(
        f"{name}-startup-wait-hook", asg_name, LAUNCHING, "CONTINUE", heartbeat_timeout
    )
    role = create_handler_role(f"{name}-startup-wait", STARTUP_WAIT_ACTIONS, tags=tags)
    function = create_handler_function(
        f"{name}-startup-wait",
        "startup_wait",
        role["role_arn"],
        shared["code"],
        shared["environment"],
        timeout=900,
        log_retention_days=shared["log_retention_days"],
        tags=tags
    )
    rule = create_event_rule(
        f"{name}-startup-wait",
        {
            "source": ["aws.autoscaling"],
            "detail-type": ["EC2 Instance-launch Lifecycle Action"],
            "detail": {"LifecycleHookName": [hook["hook_name"]]}
        },
        function["function"],
        retry_attempts=180,
        max_event_age=3600,
        tags=tags
    )
    return {**hook, **function, **rule}


def create_deployment_limit_hook(name: str, service_arn: str, service_name: str,
                              shared: Dict[str, any]) -> Dict[str, any]:
    """Rule on ECS deployment state changes of the database service"""
    tags = shared["tags"]
    role = create_handler_role(f"{name}-deployment-limit", DEPLOYMENT_LIMIT_ACTIONS, tags=tags)
    function = create_handler_function(
        f"{name}-deployment-limit",
        "service_deployment",
        role["role_arn"],
        shared["code"],
        {**shared["environment"], "SERVICE_NAME": service_name},
        timeout=30,
        log_retention_days=shared["log_retention_days"],
        tags=tags
    )
    rule = create_event_rule(
        f"{name}-deployment-limit",
        {
            "source": ["aws.ecs"],
            "detail-type": ["ECS Deployment State Change"],
            "resources": [service_arn]
        },
        function["function"],
        tags=tags
    )
    return {**function, **rule}


def create_container_lock_hook(name: str, ecs_cluster_arn: str,
                               shared: Dict[str, any]) -> Dict[str, any]:
    """Rule on task state changes that keeps the per-family instance lock attribute"""
    tags = shared["tags"]
    role = create_handler_role(f"{name}-container-lock", CONTAINER_LOCK_ACTIONS, tags=tags)
    function = create_handler_function(
        f"{name}-container-lock",
        "container_lock",
        role["role_arn"],
        shared["code"],
        shared["environment"],
        timeout=30,
        log_retention_days=shared["log_retention_days"],
        tags=tags
    )
    rule = create_event_rule(
        f"{name}-container-lock",
        {
            "source": ["aws.ecs"],
            "detail-type": ["ECS Task State Change"],
            "detail": {
                "launchType": ["EC2"],
                "clusterArn": [ecs_cluster_arn]
            }
        },
        function["function"],
        retry_attempts=3,
        tags=tags
    )
    return {**function, **rule}


def create_lifecycle_hooks(name: str,
                           asg_name: str,
                           ecs_cluster_name: str,
                           ecs_cluster_arn: str,
                           service_name: str,
                           service_arn: str,
                           code: pulumi.Archive,
                           layer_arn: pulumi.Output[str],
                           cockroach_cluster_name: str,
                           tls_parameters: Dict[str, str],
                           subnet_ids: List[str],
                           security_group_ids: List[str],
                           timeouts: Dict[str, int] = None,
                           drain_retry_delay_seconds: int = 30,
                           health_check_attempts: int = 500,
                           health_check_delay_seconds: float = 0.5,
                           health_check_scheme: str = "http",
                           admit_unresolved_instances: bool = True,
                           task_stop_decommission: bool = True,
                           log_retention_days: int = 30,
                           tags: Dict[str, str] = None) -> Dict[str, any]:
    """
    Create every node lifecycle coordinator for one database cluster

    Args:
        name: Resource name prefix
        asg_name: Auto Scaling group running the container instances
        ecs_cluster_name: ECS cluster name
        ecs_cluster_arn: ECS cluster ARN
        service_name: ECS service running the database
        service_arn: ECS service ARN
        code: Handler package archive
        layer_arn: Cockroach CLI layer ARN
        cockroach_cluster_name: Database cluster name passed to --cluster-name
        tls_parameters: SSM parameter names with keys ca_crt, root_crt, root_key
        subnet_ids: Subnets able to reach the database nodes
        security_group_ids: Security groups allowed into the nodes' admin and HTTP ports
        timeouts: Heartbeat timeouts keyed termination, drain, startup, startup_wait
        drain_retry_delay_seconds: Delay before a requeued drain check
        health_check_attempts: Health probes before a launch is abandoned
        health_check_delay_seconds: Delay between health probes
        health_check_scheme: http or https
        admit_unresolved_instances: Admit a launch whose address cannot be resolved
        task_stop_decommission: Whether a stopped task also decommissions its node
        log_retention_days: Log retention in days
        tags: Additional tags

    Returns:
        Dict of coordinator name to its resources
    """
    tags = tags or {}
    timeouts = {
        "termination": 300,
        "drain": 3600,
        "startup": 360,
        "startup_wait": 900,
        **(timeouts or {})
    }

    environment = {
        "ECS_CLUSTER": ecs_cluster_name,
        "LOG_LEVEL": "INFO"
    }
    shared = {
        "code": code,
        "layer_arn": layer_arn,
        "subnet_ids": subnet_ids,
        "security_group_ids": security_group_ids,
        "ssm_parameters": [
            tls_parameters["ca_crt"],
            tls_parameters["root_crt"],
            tls_parameters["root_key"]
        ],
        "environment": environment,
        "database_environment": {
            **environment,
            "CLUSTER_NAME": cockroach_cluster_name,
            "COCKROACH_CA_CRT_PARAM": tls_parameters["ca_crt"],
            "COCKROACH_ROOT_CRT_PARAM": tls_parameters["root_crt"],
            "COCKROACH_ROOT_KEY_PARAM": tls_parameters["root_key"]
        },
        "log_retention_days": log_retention_days,
        "tags": tags
    }

    health_environment = {
        "HEALTH_CHECK_ATTEMPTS": str(health_check_attempts),
        "HEALTH_CHECK_DELAY_SECONDS": str(health_check_delay_seconds),
        "HEALTH_SCHEME": health_check_scheme,
        "ADMIT_UNRESOLVED_INSTANCES": str(admit_unresolved_instances).lower()
    }

    pulumi.log.info(f"Declaring lifecycle coordinators for {asg_name}")

    return {
        "decommission": create_decommission_hook(name, asg_name, shared, timeouts["termination"]),
        "rebalance": create_rebalance_hook(name, shared),
        "deregister": create_deregister_hook(name, ecs_cluster_arn, shared, task_stop_decommission),
        "task_drain": create_task_drain_hook(
            name, asg_name, shared, drain_retry_delay_seconds, timeouts["drain"]
        ),
        "startup": create_startup_hook(
            name, asg_name, service_name, shared, health_environment, timeouts["startup"]
        ),
        "startup_wait": create_startup_wait_hook(name, asg_name, shared, timeouts["startup_wait"]),
        "deployment_limit": create_deployment_limit_hook(name, service_arn, service_name, shared),
        "container_lock": create_container_lock_hook(name, ecs_cluster_arn, shared)
    }
