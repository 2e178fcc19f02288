"""Local development actuator for kind clusters.

Each kind node is a Docker container named after the node, so a reboot is
a container restart and provider-side readiness is the container state.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import docker
from docker.errors import APIError, NotFound

from janitor.csp.base import CSPClient
from janitor.errors import CSPError
from janitor.models import Node

logger = logging.getLogger(__name__)


class KindCSPClient(CSPClient):
    """Reboot kind nodes by restarting their backing containers."""

    def __init__(self, docker_client: docker.DockerClient | None = None, stop_timeout: int = 10):
        self._docker = docker_client
        self.stop_timeout = stop_timeout

    @property
    def name(self) -> str:
        return "kind"

    @property
    def docker(self) -> docker.DockerClient:
        """Lazy-initialize the Docker client."""
        if self._docker is None:
            self._docker = docker.from_env()
        return self._docker

    async def _get_container(self, node: Node):
        try:
            return await asyncio.to_thread(self.docker.containers.get, node.name)
        except NotFound as e:
            raise CSPError(
                f"No container backs node {node.name}",
                operation="GetContainer",
                node_name=node.name,
            ) from e

    async def send_reboot_signal(self, node: Node) -> str:
        container = await self._get_container(node)
        requested_at = datetime.now(timezone.utc)
        logger.info(f"Restarting kind node container {node.name}")
        try:
            await asyncio.to_thread(container.restart, timeout=self.stop_timeout)
        except APIError as e:
            raise CSPError(
                f"Container restart failed: {e}",
                operation="SendRebootSignal",
                node_name=node.name,
            ) from e
        return f"{container.short_id}@{requested_at.strftime('%Y-%m-%dT%H:%M:%SZ')}"

    async def is_node_ready(self, node: Node, request_ref: str) -> bool:
        container = await self._get_container(node)
        await asyncio.to_thread(container.reload)
        running = container.status == "running"
        logger.debug(f"kind node {node.name} container status={container.status} ref={request_ref}")
        return running
