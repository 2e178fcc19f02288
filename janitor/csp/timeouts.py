"""Deadline wrapper for CSP actuator calls.

Every actuator call is bounded so a stalled provider cannot hold a work
queue slot indefinitely. Deadline expiry is reported as CSPTimeoutError
(retryable); any other failure is reported as CSPError (terminal for the
record).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from janitor.errors import CSPError, CSPTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Maximum time allowed for a single CSP operation
CSP_OPERATION_TIMEOUT = 120.0


async def call_with_timeout(
    coro: Awaitable[T],
    *,
    operation: str,
    node_name: str,
    timeout: float = CSP_OPERATION_TIMEOUT,
) -> T:
    """Await a CSP call under a deadline, translating failures to CSP errors.

    Args:
        coro: Awaitable actuator call
        operation: Operation name for errors and logs (e.g. "IsNodeReady")
        node_name: Target node for errors and logs
        timeout: Deadline in seconds

    Returns:
        Result of the actuator call

    Raises:
        CSPTimeoutError: The call exceeded the deadline
        CSPError: The call failed for any other reason
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except CSPError:
        raise
    except (asyncio.TimeoutError, TimeoutError) as e:
        logger.info(
            f"CSP operation timed out after {timeout}s: {operation} on {node_name}",
            extra={"node": node_name, "operation": operation, "timeout": timeout},
        )
        raise CSPTimeoutError(
            f"{operation} timed out after {timeout}s",
            operation=operation,
            node_name=node_name,
            timeout=timeout,
        ) from e
    except Exception as e:
        raise CSPError(str(e), operation=operation, node_name=node_name) from e
