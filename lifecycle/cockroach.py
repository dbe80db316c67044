"""
CockroachDB node administration

Runs ``cockroach node decommission`` and ``cockroach node drain`` against a
node's admin endpoint, authenticated with root client certificates pulled
from SSM Parameter Store.
"""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import boto3

from .exceptions import CockroachCommandError, ConfigurationError

logger = logging.getLogger(__name__)

CA_CRT = "ca.crt"
ROOT_CRT = "client.root.crt"
ROOT_KEY = "client.root.key"


@dataclass(frozen=True)
class Outcome:
    """Result of an operation run under the absorb policy"""

    action: str
    ok: bool
    error: Optional[Exception] = None

    @property
    def absorbed(self) -> bool:
        return not self.ok


def absorb(action: str, func: Callable[..., Any], *args, **kwargs) -> Outcome:
    """
    Run func and absorb any failure

    Used where a failure must never block an instance lifecycle transition.
    The failure is logged with its traceback and returned in the Outcome.
    """
    try:
        func(*args, **kwargs)
    except Exception as e:
        logger.exception("Absorbed failure during %s", action)
        return Outcome(action=action, ok=False, error=e)
    return Outcome(action=action, ok=True)


class TlsMaterial:
    """
    CA certificate and root client certificate/key for the admin connection

    Pulled from SSM once per process and written to a private certs
    directory the cockroach CLI reads with --certs-dir.
    """

    def __init__(self, ca_crt_param: str, root_crt_param: str, root_key_param: str,
                 certs_dir: str, ssm=None):
        self.params = {
            CA_CRT: ca_crt_param,
            ROOT_CRT: root_crt_param,
            ROOT_KEY: root_key_param,
        }
        self.certs_dir = certs_dir
        self._ssm = ssm
        self._lock = threading.Lock()
        self._written = False

    @property
    def ssm(self):
        if self._ssm is None:
            self._ssm = boto3.client("ssm")
        return self._ssm

    def materialize(self) -> str:
        """Write the material to disk if not done yet and return the certs directory"""
        with self._lock:
            if self._written:
                return self.certs_dir

            missing = [name for name, param in self.params.items() if not param]
            if missing:
                raise ConfigurationError(f"No SSM parameter configured for {', '.join(missing)}")

            os.makedirs(self.certs_dir, mode=0o700, exist_ok=True)
            for file_name, param in self.params.items():
                value = self._fetch(param)
                self._write(os.path.join(self.certs_dir, file_name), value)

            self._written = True
            logger.info("TLS material written to %s", self.certs_dir)
            return self.certs_dir

    def _fetch(self, name: str) -> str:
        response = self.ssm.get_parameter(Name=name, WithDecryption=True)
        return response.get("Parameter", {}).get("Value", "")

    @staticmethod
    def _write(path: str, value: str) -> None:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(value)
        # the cockroach CLI refuses keys readable by others
        os.chmod(path, 0o600)


class CockroachAdmin:
    """Node administration commands over the cockroach CLI"""

    def __init__(self, cluster_name: str, tls: TlsMaterial, port: int = 26258,
                 decommission_timeout: float = 20, drain_timeout: float = 45,
                 executable: str = "cockroach",
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.cluster_name = cluster_name
        self.tls = tls
        self.port = port
        self.decommission_timeout = decommission_timeout
        self.drain_timeout = drain_timeout
        self.executable = executable
        self.runner = runner

    def decommission_command(self, address: str, self_flag: bool = True,
                             wait: str = "none") -> List[str]:
        command = [
            self.executable, "node", "decommission",
            f"--host={address}:{self.port}",
        ]
        if self_flag:
            command.append("--self")
        command.extend([
            f"--cluster-name={self.cluster_name}",
            f"--certs-dir={self.tls.certs_dir}",
            f"--wait={wait}",
        ])
        return command

    def drain_command(self, address: str) -> List[str]:
        return [
            self.executable, "node", "drain",
            f"--host={address}:{self.port}",
            f"--cluster-name={self.cluster_name}",
            f"--certs-dir={self.tls.certs_dir}",
        ]

    def decommission(self, address: str, self_flag: bool = True, wait: str = "none") -> str:
        """Start decommissioning the node; with wait=none data moves in the background"""
        self.tls.materialize()
        return self._run(self.decommission_command(address, self_flag, wait),
                         self.decommission_timeout)

    def drain(self, address: str) -> str:
        """Stop the node accepting SQL clients and wait for in-flight work"""
        self.tls.materialize()
        return self._run(self.drain_command(address), self.drain_timeout)

    def _run(self, command: List[str], timeout: float) -> str:
        logger.info("Running %s", " ".join(command))
        try:
            result = self.runner(command, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            raise CockroachCommandError(command, reason=f"timed out after {timeout}s") from None
        except OSError as e:
            raise CockroachCommandError(command, reason=str(e)) from e

        if result.returncode != 0:
            raise CockroachCommandError(command, returncode=result.returncode,
                                        stderr=result.stderr or "")
        if result.stdout:
            logger.info(result.stdout)
        return result.stdout or ""


@dataclass(frozen=True)
class NodeStopOutcome:
    address: str
    decommission: Optional[Outcome] = None
    drain: Optional[Outcome] = None

    @property
    def absorbed(self) -> List[Outcome]:
        return [o for o in (self.decommission, self.drain) if o is not None and o.absorbed]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "decommission": None if self.decommission is None else self.decommission.ok,
            "drain": None if self.drain is None else self.drain.ok,
        }


def stop_node(admin: CockroachAdmin, address: str, decommission: bool = True,
              drain: bool = True) -> NodeStopOutcome:
    """
    Decommission then drain a node, absorbing every failure

    The decommission is issued without waiting so range rebalancing happens
    in the background; the drain waits up to the admin's drain timeout.
    """
    decommission_outcome = None
    drain_outcome = None

    if decommission:
        decommission_outcome = absorb("decommission", admin.decommission, address, True, "none")
    if drain:
        drain_outcome = absorb("drain", admin.drain, address)

    return NodeStopOutcome(address=address, decommission=decommission_outcome, drain=drain_outcome)
