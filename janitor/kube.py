"""Kubernetes-backed record store and node source.

RebootNode records are cluster-scoped custom resources. The kubernetes
client is synchronous, so every API call runs in a worker thread to keep
the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from janitor.config import Settings, settings
from janitor.errors import ConflictError, NodeNotFoundError, RecordNotFoundError, StoreError
from janitor.models import Node, RebootNode
from janitor.store import NodeSource, RecordStore

logger = logging.getLogger(__name__)


def load_kube_config(kubeconfig_path: str = "") -> None:
    """Load kubeconfig from a path, in-cluster config, or the default location."""
    try:
        if kubeconfig_path:
            config.load_kube_config(kubeconfig_path)
        else:
            config.load_incluster_config()
    except config.ConfigException:
        logger.warning("Failed to load in-cluster config, trying kubeconfig")
        config.load_kube_config()


def _store_error(e: ApiException, action: str, name: str) -> Exception:
    if e.status == 404:
        return RecordNotFoundError(f"rebootnode {name} not found")
    if e.status == 409:
        return ConflictError(f"conflict on {action} of rebootnode {name}: {e.reason}")
    return StoreError(f"failed to {action} rebootnode {name}: {e.status} {e.reason}")


class KubernetesRecordStore(RecordStore):
    """RecordStore over the RebootNode custom resource."""

    def __init__(
        self,
        api: client.CustomObjectsApi | None = None,
        *,
        group: str | None = None,
        version: str | None = None,
        plural: str | None = None,
        source: Settings = settings,
    ):
        self.api = api or client.CustomObjectsApi()
        self.group = group or source.crd_group
        self.version = version or source.crd_version
        self.plural = plural or source.crd_plural

    def _coords(self) -> dict[str, str]:
        return {"group": self.group, "version": self.version, "plural": self.plural}

    async def get(self, name: str) -> RebootNode:
        try:
            obj = await asyncio.to_thread(
                self.api.get_cluster_custom_object, name=name, **self._coords()
            )
        except ApiException as e:
            raise _store_error(e, "get", name) from e
        return RebootNode.from_resource(obj)

    async def list(self) -> list[RebootNode]:
        try:
            resp: dict[str, Any] = await asyncio.to_thread(
                self.api.list_cluster_custom_object, **self._coords()
            )
        except ApiException as e:
            raise StoreError(f"failed to list rebootnodes: {e.status} {e.reason}") from e
        records: list[RebootNode] = []
        for item in resp.get("items", []):
            try:
                records.append(RebootNode.from_resource(item))
            except ValidationError as e:
                name = (item.get("metadata") or {}).get("name", "<unnamed>")
                logger.error(f"Skipping malformed rebootnode {name}: {e}")
        return records

    async def update(self, record: RebootNode) -> RebootNode:
        try:
            obj = await asyncio.to_thread(
                self.api.replace_cluster_custom_object,
                name=record.name,
                body=record.to_resource(),
                **self._coords(),
            )
        except ApiException as e:
            raise _store_error(e, "update", record.name) from e
        return RebootNode.from_resource(obj)

    async def update_status(self, record: RebootNode) -> RebootNode:
        try:
            obj = await asyncio.to_thread(
                self.api.replace_cluster_custom_object_status,
                name=record.name,
                body=record.to_resource(),
                **self._coords(),
            )
        except ApiException as e:
            raise _store_error(e, "update status of", record.name) from e
        return RebootNode.from_resource(obj)


class KubernetesNodeSource(NodeSource):
    """NodeSource over the core Node API."""

    def __init__(self, api: client.CoreV1Api | None = None):
        self.api = api or client.CoreV1Api()

    async def get_node(self, name: str) -> Node:
        try:
            node = await asyncio.to_thread(self.api.read_node, name)
        except ApiException as e:
            if e.status == 404:
                raise NodeNotFoundError(f"node {name} not found") from e
            raise StoreError(f"failed to read node {name}: {e.status} {e.reason}") from e

        ready = False
        for condition in (node.status.conditions or []) if node.status else []:
            if condition.type == "Ready":
                ready = condition.status == "True"
        return Node(
            name=node.metadata.name,
            ready=ready,
            provider_id=(node.spec.provider_id or "") if node.spec else "",
            labels=dict(node.metadata.labels or {}),
        )
