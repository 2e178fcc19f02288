"""Deletion-blocking finalizer for RebootNode records.

The finalizer is added the first time a live record is seen and removed
only after cleanup has run during deletion, so cleanup happens exactly
once before the API server removes the record.
"""
from __future__ import annotations

import logging

from janitor.models import RebootNode
from janitor.store import RecordStore

logger = logging.getLogger(__name__)

REBOOT_NODE_FINALIZER = "janitor.dgxc.nvidia.com/rebootnode-finalizer"


class LifecycleGuard:
    """Adds and removes the RebootNode finalizer."""

    def __init__(self, store: RecordStore, finalizer: str = REBOOT_NODE_FINALIZER):
        self.store = store
        self.finalizer = finalizer

    def is_guarded(self, record: RebootNode) -> bool:
        return record.has_finalizer(self.finalizer)

    async def ensure(self, record: RebootNode) -> RebootNode:
        """Add the finalizer and persist it if missing.

        Returns the stored record (with its new resource version) when a
        write happened, otherwise the record unchanged.
        """
        if record.deletion_requested or not record.add_finalizer(self.finalizer):
            return record
        logger.debug(f"Adding finalizer to rebootnode {record.name}")
        stored = await self.store.update(record)
        # Keep working on the caller's view of status; update() never writes it.
        stored.status = record.status
        return stored

    async def release(self, record: RebootNode) -> bool:
        """Run deletion cleanup and remove the finalizer.

        Returns True if the finalizer was present and has been removed.
        """
        if not self.is_guarded(record):
            return False

        # Best effort audit trail; nothing to cancel on the provider side.
        logger.info(
            f"rebootnode deletion requested, performing cleanup for node {record.node_name}",
            extra={
                "node": record.node_name,
                "conditions": [
                    c.model_dump(mode="json", by_alias=True)
                    for c in record.status.conditions.values()
                ],
                "csp_ref": record.get_csp_req_ref(),
            },
        )
        record.remove_finalizer(self.finalizer)
        await self.store.update(record)
        return True
