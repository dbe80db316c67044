"""
Lifecycle Hook Module
Auto Scaling hooks, EventBridge rules and handler functions per coordinator
"""

from .functions import (
    create_container_lock_hook,
    create_decommission_hook,
    create_deployment_limit_hook,
    create_deregister_hook,
    create_event_rule,
    create_handler_function,
    create_handler_role,
    create_lifecycle_hook,
    create_lifecycle_hooks,
    create_rebalance_hook,
    create_startup_hook,
    create_startup_wait_hook,
    create_task_drain_hook,
)

__all__ = [
    "create_container_lock_hook",
    "create_decommission_hook",
    "create_deployment_limit_hook",
    "create_deregister_hook",
    "create_event_rule",
    "create_handler_function",
    "create_handler_role",
    "create_lifecycle_hook",
    "create_lifecycle_hooks",
    "create_rebalance_hook",
    "create_startup_hook",
    "create_startup_wait_hook",
    "create_task_drain_hook",
]
