"""Persist RebootNode status changes.

The status is written onto a freshly fetched copy of the record so that
concurrent edits to the spec or metadata are never overwritten and the
write carries a current resource version.

Single-writer assumption: only one controller instance modifies a given
record's status. Two instances writing concurrently can still lose an
update; that would need conflict-aware retries, which this controller does
not implement.
"""
from __future__ import annotations

import logging

from janitor.errors import RecordNotFoundError
from janitor.models import RebootNode, RebootNodeStatus
from janitor.store import RecordStore

logger = logging.getLogger(__name__)


class StatusWriter:
    """Writes status diffs using refresh-then-write."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def write(self, original: RebootNodeStatus, updated: RebootNode) -> bool:
        """Persist updated.status if it differs from the original snapshot.

        Returns:
            True if a write was made

        Raises:
            StoreError: If the refresh or the write fails for any reason
                other than the record having been deleted
        """
        if original == updated.status:
            return False

        try:
            fresh = await self.store.get(updated.name)
        except RecordNotFoundError:
            logger.info(
                f"post-reconciliation status update: rebootnode {updated.name} not found, assumed deleted"
            )
            return False

        fresh.status = updated.status.model_copy(deep=True)
        try:
            await self.store.update_status(fresh)
        except RecordNotFoundError:
            logger.info(f"rebootnode {updated.name} deleted during status update")
            return False
        except Exception as e:
            logger.error(f"Failed to update rebootnode status for node {updated.node_name}: {e}")
            raise

        logger.info(
            f"rebootnode status updated for node {updated.node_name}",
            extra={
                "node": updated.node_name,
                "retry_count": updated.status.retry_count,
                "consecutive_failures": updated.status.consecutive_failures,
            },
        )
        return True
