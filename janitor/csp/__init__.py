"""CSP reboot actuators."""

from janitor.csp.base import CSPClient
from janitor.csp.kind import KindCSPClient
from janitor.csp.registry import (
    create_csp_client,
    get_csp_client,
    list_csp_clients,
    register_csp_client,
    reset_csp_client,
)
from janitor.csp.timeouts import CSP_OPERATION_TIMEOUT, call_with_timeout

__all__ = [
    # Base classes
    "CSPClient",
    # Provider implementations
    "KindCSPClient",
    # Registry
    "create_csp_client",
    "get_csp_client",
    "list_csp_clients",
    "register_csp_client",
    "reset_csp_client",
    # Deadline handling
    "CSP_OPERATION_TIMEOUT",
    "call_with_timeout",
]
