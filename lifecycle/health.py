"""
Node health probe used by the startup admission gate
"""

import logging
import warnings
from typing import Optional

import requests
from urllib3.exceptions import InsecureRequestWarning

from .exceptions import HealthCheckFailed

logger = logging.getLogger(__name__)


def health_url(address: str, port: int = 8080, path: str = "/health", scheme: str = "http") -> str:
    if not path.startswith("/"):
        path = f"/{path}"
    return f"{scheme}://{address}:{port}{path}"


def check_health(address: str, port: int = 8080, path: str = "/health", scheme: str = "http",
                 timeout: float = 5, session: Optional[requests.Session] = None) -> None:
    """
    GET the node health endpoint

    Raises:
        HealthCheckFailed: on any status other than 200 or a connection failure
    """
    url = health_url(address, port, path, scheme)
    http = session or requests
    try:
        # Nodes serve their own CA's certificate on the HTTP port in secure mode
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", InsecureRequestWarning)
            response = http.get(url, timeout=timeout, verify=False, allow_redirects=False)
    except requests.RequestException as e:
        raise HealthCheckFailed(url, reason=str(e)) from e

    if response.status_code != 200:
        raise HealthCheckFailed(url, status_code=response.status_code)

    logger.info("Health endpoint %s responded with 200", url)
