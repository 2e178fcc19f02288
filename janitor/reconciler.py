"""RebootNode reconciler.

Drives a RebootNode record from creation to a terminal outcome:

    created -> signal pending -> monitoring -> succeeded | failed | timed out
                                                | max retries exceeded

In manual mode the controller never sends the reboot signal itself; it
marks the record with a ManualMode condition and waits for an outside actor.

reconcile() is idempotent and may be called any number of times for the
same record, in any order and across controller restarts. Each call
re-reads the persisted record first, so progress is never lost and the
reboot signal is only sent while no SignalSent=True condition exists.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from janitor.backoff import next_requeue_delay
from janitor.config import RebootNodeControllerConfig
from janitor.csp.base import CSPClient
from janitor.csp.timeouts import CSP_OPERATION_TIMEOUT, call_with_timeout
from janitor.errors import CSPError, CSPTimeoutError, NodeNotFoundError, RecordNotFoundError
from janitor.finalizer import LifecycleGuard
from janitor.metrics import (
    ACTION_TYPE_REBOOT,
    GLOBAL_METRICS,
    STATUS_FAILED,
    STATUS_STARTED,
    STATUS_SUCCEEDED,
    ActionMetrics,
)
from janitor.models import (
    Condition,
    ConditionStatus,
    ConditionType,
    Node,
    RebootNode,
    utcnow,
)
from janitor.status_writer import StatusWriter
from janitor.store import NodeSource, RecordStore

logger = logging.getLogger(__name__)

# Maximum monitoring passes before giving up (10 minutes at 30s base intervals)
MAX_REBOOT_RETRIES = 20

# Delay before the first monitoring pass after the signal was sent
SIGNAL_SENT_REQUEUE = 30.0


@dataclass(frozen=True)
class ReconcileResult:
    """What the work queue should do with the key next."""

    requeue_after: float | None = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


def _format_duration(seconds: float) -> str:
    return str(timedelta(seconds=int(seconds)))


class RebootNodeReconciler:
    """Reconciles RebootNode records.

    All collaborators are injected at construction and never replaced.
    """

    def __init__(
        self,
        store: RecordStore,
        nodes: NodeSource,
        csp_client: CSPClient,
        config: RebootNodeControllerConfig | None = None,
        *,
        metrics: ActionMetrics = GLOBAL_METRICS,
        csp_timeout: float = CSP_OPERATION_TIMEOUT,
        max_retries: int = MAX_REBOOT_RETRIES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.nodes = nodes
        self.csp_client = csp_client
        self.config = config or RebootNodeControllerConfig()
        self.metrics = metrics
        self.csp_timeout = csp_timeout
        self.max_retries = max_retries
        self.clock = clock
        self.guard = LifecycleGuard(store)
        self.status_writer = StatusWriter(store)

    @property
    def reboot_timeout(self) -> float:
        return self.config.reboot_timeout

    def _elapsed(self, record: RebootNode) -> float:
        if record.status.start_time is None:
            return 0.0
        return (self.clock() - record.status.start_time).total_seconds()

    def _set_condition(
        self,
        record: RebootNode,
        condition_type: ConditionType,
        status: ConditionStatus,
        reason: str,
        message: str,
    ) -> None:
        record.set_condition(Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            last_transition_time=self.clock(),
        ))

    async def reconcile(self, name: str) -> ReconcileResult:
        """Move one RebootNode record a step closer to a terminal outcome."""
        try:
            record = await self.store.get(name)
        except RecordNotFoundError:
            logger.debug(f"rebootnode {name} not found, assumed deleted")
            return ReconcileResult()

        if record.deletion_requested:
            await self.guard.release(record)
            return ReconcileResult()

        record = await self.guard.ensure(record)

        if record.status.completion_time is not None:
            logger.debug(f"rebootnode {name} has completion time set, skipping reconcile")
            return ReconcileResult()

        original = record.status.snapshot()
        now = self.clock()
        record.set_initial_conditions(now)
        record.set_start_time(now)

        if record.status.retry_count >= self.max_retries:
            result = self._max_retries_exceeded(record)
            await self.status_writer.write(original, record)
            return result

        try:
            node = await self.nodes.get_node(record.node_name)
        except NodeNotFoundError:
            logger.info(f"node {record.node_name} for rebootnode {name} not found, nothing to do")
            return ReconcileResult()

        if record.is_reboot_in_progress():
            result = await self._monitor(record, node)
        else:
            result = await self._start(record, node)

        await self.status_writer.write(original, record)
        return result

    def _retry_after_timeout(self, record: RebootNode) -> ReconcileResult:
        """Count an actuator timeout and back off; never terminal."""
        # The delay is taken before counting this failure: the first
        # retry after a failure waits 30s.
        delay = next_requeue_delay(record.status.consecutive_failures)
        record.status.consecutive_failures += 1
        return ReconcileResult(delay)

    def _max_retries_exceeded(self, record: RebootNode) -> ReconcileResult:
        logger.info(
            f"max retries exceeded for node {record.node_name}, marking as failed",
            extra={
                "node": record.node_name,
                "retries": record.status.retry_count,
                "max_retries": self.max_retries,
            },
        )
        record.set_completion_time(self.clock())
        self._set_condition(
            record,
            ConditionType.NODE_READY,
            ConditionStatus.FALSE,
            "MaxRetriesExceeded",
            f"Node failed to reach ready state after {self.max_retries} retries "
            f"over {_format_duration(self.reboot_timeout)}",
        )
        self.metrics.inc_action_count(ACTION_TYPE_REBOOT, STATUS_FAILED, record.node_name)
        return ReconcileResult()

    async def _monitor(self, record: RebootNode, node: Node) -> ReconcileResult:
        """Check whether a node that was signalled has come back."""
        status = record.status
        status.retry_count += 1

        csp_ready = False
        csp_error: CSPError | None = None
        if self.config.manual_mode:
            csp_ready = True
        else:
            try:
                csp_ready = await call_with_timeout(
                    self.csp_client.is_node_ready(node, record.get_csp_req_ref()),
                    operation="IsNodeReady",
                    node_name=node.name,
                    timeout=self.csp_timeout,
                )
            except CSPTimeoutError:
                logger.info(f"CSP readiness check for node {node.name} timed out, will retry")
                return self._retry_after_timeout(record)
            except CSPError as e:
                csp_error = e

        if csp_error is not None:
            logger.error(f"node ready status check failed for node {node.name}: {csp_error}")
            status.consecutive_failures += 1
            record.set_completion_time(self.clock())
            self._set_condition(
                record,
                ConditionType.NODE_READY,
                ConditionStatus.FALSE,
                "Failed",
                f"Node status could not be checked from CSP: {csp_error}",
            )
            self.metrics.inc_action_count(ACTION_TYPE_REBOOT, STATUS_FAILED, node.name)
            return ReconcileResult()

        elapsed = self._elapsed(record)

        if csp_ready and node.ready:
            logger.info(
                f"node {node.name} reached ready state post-reboot",
                extra={"node": node.name, "duration_seconds": elapsed},
            )
            status.consecutive_failures = 0
            record.set_completion_time(self.clock())
            self._set_condition(
                record,
                ConditionType.NODE_READY,
                ConditionStatus.TRUE,
                "Succeeded",
                "Node reached ready state post-reboot",
            )
            self.metrics.inc_action_count(ACTION_TYPE_REBOOT, STATUS_SUCCEEDED, node.name)
            self.metrics.record_action_mttr(ACTION_TYPE_REBOOT, elapsed)
            return ReconcileResult()

        if elapsed > self.reboot_timeout:
            logger.error(
                f"node {node.name} reboot timed out after {_format_duration(elapsed)}",
                extra={"node": node.name, "timeout": self.reboot_timeout, "elapsed": elapsed},
            )
            record.set_completion_time(self.clock())
            self._set_condition(
                record,
                ConditionType.NODE_READY,
                ConditionStatus.FALSE,
                "Timeout",
                "Node failed to return to ready state after timeout duration",
            )
            self.metrics.inc_action_count(ACTION_TYPE_REBOOT, STATUS_FAILED, node.name)
            return ReconcileResult()

        return ReconcileResult(next_requeue_delay(status.consecutive_failures))

    async def _start(self, record: RebootNode, node: Node) -> ReconcileResult:
        """Send the reboot signal, or wait for an outside actor in manual mode."""
        status = record.status

        if record.has_condition(ConditionType.SIGNAL_SENT, ConditionStatus.TRUE):
            logger.debug(f"reboot signal already sent to node {node.name}, continuing monitoring")
            return ReconcileResult(next_requeue_delay(status.consecutive_failures))

        if self.config.manual_mode:
            if not record.has_condition(ConditionType.MANUAL_MODE):
                self._set_condition(
                    record,
                    ConditionType.MANUAL_MODE,
                    ConditionStatus.TRUE,
                    "OutsideActorRequired",
                    "Janitor is in manual mode, outside actor required to send reboot signal",
                )
                self.metrics.inc_action_count(ACTION_TYPE_REBOOT, STATUS_STARTED, node.name)
            logger.info(f"manual mode enabled, janitor will not send reboot signal to node {node.name}")
            return ReconcileResult()

        self.metrics.inc_action_count(ACTION_TYPE_REBOOT, STATUS_STARTED, node.name)
        logger.info(f"sending reboot signal to node {node.name}")

        try:
            request_ref = await call_with_timeout(
                self.csp_client.send_reboot_signal(node),
                operation="SendRebootSignal",
                node_name=node.name,
                timeout=self.csp_timeout,
            )
        except CSPTimeoutError:
            logger.info(f"CSP reboot signal for node {node.name} timed out, will retry")
            return self._retry_after_timeout(record)
        except CSPError as e:
            logger.error(f"failed to send reboot signal to node {node.name}: {e}")
            status.consecutive_failures += 1
            self._set_condition(
                record,
                ConditionType.SIGNAL_SENT,
                ConditionStatus.FALSE,
                "Failed",
                str(e),
            )
            record.set_completion_time(self.clock())
            self.metrics.inc_action_count(ACTION_TYPE_REBOOT, STATUS_FAILED, node.name)
            return ReconcileResult()

        status.consecutive_failures = 0
        self._set_condition(
            record,
            ConditionType.SIGNAL_SENT,
            ConditionStatus.TRUE,
            "Succeeded",
            request_ref,
        )
        return ReconcileResult(SIGNAL_SENT_REQUEUE)
