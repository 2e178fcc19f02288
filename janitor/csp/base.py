"""Base CSP client interface for reboot actuators."""

from __future__ import annotations

from abc import ABC, abstractmethod

from janitor.models import Node


class CSPClient(ABC):
    """Abstract base class for cloud service provider reboot actuators.

    Implementations must stay cancellable: the reconciler bounds every call
    with a deadline and cancels the coroutine when it expires. A provider
    that detects its own deadline expiry should raise ``TimeoutError`` so
    the call is treated as retryable.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'kind')."""
        ...

    @abstractmethod
    async def send_reboot_signal(self, node: Node) -> str:
        """Initiate a reboot of the node.

        Args:
            node: The node to reboot

        Returns:
            Opaque provider reference for the reboot request (e.g. a
            request or ticket ID), recorded for later correlation
        """
        ...

    @abstractmethod
    async def is_node_ready(self, node: Node, request_ref: str) -> bool:
        """Check whether the provider considers the reboot complete.

        Args:
            node: The node being rebooted
            request_ref: Reference returned by send_reboot_signal

        Returns:
            True once the provider reports the node healthy again
        """
        ...
