"""Error taxonomy for the reboot controller.

Every failure the reconciler reacts to carries an explicit ErrorKind so
callers branch on the kind rather than on message text:

- TRANSIENT: retry through normal redelivery (store failures, conflicts)
- NOT_FOUND: the record or node vanished; treated as cancellation
- TIMEOUT: an actuator call exceeded its deadline; retried with backoff
- PERMANENT: the actuator rejected the operation; terminal for the record
"""
from __future__ import annotations

import asyncio
from enum import Enum


class ErrorKind(str, Enum):
    """Classification of controller errors."""

    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    PERMANENT = "permanent"


class JanitorError(Exception):
    """Base class for controller errors."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str = "", kind: ErrorKind | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class RecordNotFoundError(JanitorError):
    """The RebootNode record does not exist (or no longer exists)."""

    kind = ErrorKind.NOT_FOUND


class NodeNotFoundError(JanitorError):
    """The cluster node targeted by a record does not exist."""

    kind = ErrorKind.NOT_FOUND


class StoreError(JanitorError):
    """Reading or writing the resource store failed."""

    kind = ErrorKind.TRANSIENT


class ConflictError(StoreError):
    """The store rejected a write made against a stale resource version."""


class CSPError(JanitorError):
    """A CSP actuator call failed for a reason other than its deadline."""

    kind = ErrorKind.PERMANENT

    def __init__(self, message: str = "", operation: str = "", node_name: str = ""):
        super().__init__(message)
        self.operation = operation
        self.node_name = node_name


class CSPTimeoutError(CSPError):
    """A CSP actuator call exceeded its deadline."""

    kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str = "",
        operation: str = "",
        node_name: str = "",
        timeout: float | None = None,
    ):
        super().__init__(message, operation=operation, node_name=node_name)
        self.timeout = timeout


def error_kind(exc: BaseException) -> ErrorKind:
    """Classify an arbitrary exception."""
    if isinstance(exc, JanitorError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    return ErrorKind.TRANSIENT
