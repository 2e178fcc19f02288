"""Resource store and node readiness source interfaces.

The reconciler only talks to these two seams:

- RecordStore persists RebootNode records. Writes carry the record's
  resource_version as an optimistic-concurrency precondition; a stale
  version raises ConflictError.
- NodeSource reports the cluster's own view of a node (read-only).

The in-memory implementations back unit tests and local runs; the
Kubernetes implementations live in janitor.kube.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from janitor.errors import ConflictError, NodeNotFoundError, RecordNotFoundError
from janitor.models import Node, RebootNode, utcnow

logger = logging.getLogger(__name__)


class RecordStore(ABC):
    """Persistence for RebootNode records."""

    @abstractmethod
    async def get(self, name: str) -> RebootNode:
        """Fetch a record.

        Raises:
            RecordNotFoundError: If the record does not exist
            StoreError: On any other store failure
        """
        ...

    @abstractmethod
    async def list(self) -> list[RebootNode]:
        """List all records."""
        ...

    @abstractmethod
    async def update(self, record: RebootNode) -> RebootNode:
        """Write metadata and spec. The status sub-object is ignored.

        Returns:
            The stored record with its new resource version
        """
        ...

    @abstractmethod
    async def update_status(self, record: RebootNode) -> RebootNode:
        """Write only the status sub-object.

        Returns:
            The stored record with its new resource version
        """
        ...


class NodeSource(ABC):
    """Read-only access to cluster nodes."""

    @abstractmethod
    async def get_node(self, name: str) -> Node:
        """Fetch a node.

        Raises:
            NodeNotFoundError: If the node does not exist
        """
        ...


class InMemoryRecordStore(RecordStore):
    """Dict-backed RecordStore with API-server-like semantics.

    Records are copied on the way in and out, resource versions increase on
    every write, and deletion is deferred while finalizers remain.
    """

    def __init__(self) -> None:
        self._records: dict[str, RebootNode] = {}
        self._version = 0
        self.update_calls = 0
        self.status_update_calls = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _stored(self, name: str) -> RebootNode:
        stored = self._records.get(name)
        if stored is None:
            raise RecordNotFoundError(f"rebootnode {name} not found")
        return stored

    def _check_version(self, stored: RebootNode, record: RebootNode) -> None:
        if record.metadata.resource_version != stored.metadata.resource_version:
            raise ConflictError(
                f"rebootnode {record.name}: resource version "
                f"{record.metadata.resource_version} is stale "
                f"(current {stored.metadata.resource_version})"
            )

    def create(self, record: RebootNode) -> RebootNode:
        if record.name in self._records:
            raise ConflictError(f"rebootnode {record.name} already exists")
        stored = record.model_copy(deep=True)
        stored.metadata.resource_version = self._next_version()
        self._records[record.name] = stored
        return stored.model_copy(deep=True)

    def delete(self, name: str) -> None:
        """Request deletion; the record lingers until its finalizers are removed."""
        stored = self._stored(name)
        if not stored.metadata.finalizers:
            del self._records[name]
            return
        if stored.metadata.deletion_timestamp is None:
            stored.metadata.deletion_timestamp = utcnow()
            stored.metadata.resource_version = self._next_version()

    def contains(self, name: str) -> bool:
        return name in self._records

    async def get(self, name: str) -> RebootNode:
        return self._stored(name).model_copy(deep=True)

    async def list(self) -> list[RebootNode]:
        return [record.model_copy(deep=True) for record in self._records.values()]

    async def update(self, record: RebootNode) -> RebootNode:
        stored = self._stored(record.name)
        self._check_version(stored, record)
        self.update_calls += 1

        # Deletion is requested through delete(), never through update
        deletion_timestamp = stored.metadata.deletion_timestamp
        stored.metadata = record.metadata.model_copy(deep=True)
        stored.metadata.deletion_timestamp = deletion_timestamp
        stored.metadata.resource_version = self._next_version()

        if stored.deletion_requested and not stored.metadata.finalizers:
            del self._records[record.name]
            logger.debug(f"rebootnode {record.name} finalized and removed")
        return stored.model_copy(deep=True)

    async def update_status(self, record: RebootNode) -> RebootNode:
        stored = self._stored(record.name)
        self._check_version(stored, record)
        self.status_update_calls += 1

        stored.status = record.status.model_copy(deep=True)
        stored.metadata.resource_version = self._next_version()
        return stored.model_copy(deep=True)


class InMemoryNodeSource(NodeSource):
    """Dict-backed NodeSource."""

    def __init__(self, nodes: list[Node] | None = None) -> None:
        self._nodes: dict[str, Node] = {node.name: node for node in nodes or []}

    def set_node(self, node: Node) -> None:
        self._nodes[node.name] = node

    def set_ready(self, name: str, ready: bool) -> None:
        node = self._nodes.get(name) or Node(name=name)
        self._nodes[name] = Node(
            name=name, ready=ready, provider_id=node.provider_id, labels=dict(node.labels)
        )

    def remove_node(self, name: str) -> None:
        self._nodes.pop(name, None)

    async def get_node(self, name: str) -> Node:
        node = self._nodes.get(name)
        if node is None:
            raise NodeNotFoundError(f"node {name} not found")
        return node
