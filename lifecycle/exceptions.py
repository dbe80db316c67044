"""
Exceptions raised by the node lifecycle coordinators
"""

from typing import Optional, Sequence


class LifecycleError(Exception):
    """Base class for lifecycle coordination errors"""


class ConfigurationError(LifecycleError):
    """Raised when the Lambda environment is missing or malformed"""


class UnsupportedEvent(LifecycleError):
    """Raised when an event has no known shape or no registered route"""


class LifecycleActionAlreadyResolved(LifecycleError):
    """Raised when a handle is asked to resolve a lifecycle action twice"""

    def __init__(self, instance_id: str, hook_name: str, result: str):
        super().__init__(
            f"Lifecycle action for {instance_id} on {hook_name} was already resolved with {result}"
        )
        self.instance_id = instance_id
        self.hook_name = hook_name
        self.result = result


class CockroachCommandError(LifecycleError):
    """Raised when a cockroach CLI command exits non-zero, times out or cannot start"""

    def __init__(self, command: Sequence[str], returncode: Optional[int] = None,
                 stderr: str = "", reason: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        detail = reason or f"exit code {returncode}"
        message = f"cockroach {' '.join(self.command[1:3])} failed: {detail}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)


class HealthCheckFailed(LifecycleError):
    """Raised when a node health endpoint does not answer 200"""

    def __init__(self, url: str, status_code: Optional[int] = None, reason: str = ""):
        self.url = url
        self.status_code = status_code
        if status_code is not None:
            message = f"Health endpoint {url} responded with: {status_code}"
        else:
            message = f"Health endpoint {url} unreachable: {reason}"
        super().__init__(message)


class TerminationInProgress(LifecycleError):
    """Raised while sibling instances in the group are still terminating"""

    def __init__(self, group_name: str, instance_ids: Sequence[str]):
        self.group_name = group_name
        self.instance_ids = list(instance_ids)
        super().__init__(
            f"Waiting for instance termination in {group_name}: {', '.join(self.instance_ids)}"
        )
