"""Prometheus metrics for the reboot controller.

Exposes remediation action counts and time-to-recovery. The /metrics
endpoint serves these in Prometheus exposition format.

Usage:
    from janitor.metrics import GLOBAL_METRICS, ACTION_TYPE_REBOOT, STATUS_STARTED

    GLOBAL_METRICS.inc_action_count(ACTION_TYPE_REBOOT, STATUS_STARTED, "node-1")
"""
from __future__ import annotations

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

ACTION_TYPE_REBOOT = "reboot"

STATUS_STARTED = "started"
STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"


class ActionMetrics:
    """Remediation action metrics bound to one collector registry.

    Tests pass a private CollectorRegistry so counters start from zero and
    do not collide with the process-wide registry.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry
        self.action_count = Counter(
            "janitor_action_count",
            "Total number of remediation actions by type, status and node",
            ["action_type", "status", "node"],
            registry=registry,
        )
        self.action_mttr = Histogram(
            "janitor_action_mttr_seconds",
            "Time from remediation start to confirmed recovery",
            ["action_type"],
            buckets=(60, 120, 300, 600, 900, 1200, 1800, 3600, float("inf")),
            registry=registry,
        )

    def inc_action_count(self, action_type: str, status: str, node: str) -> None:
        self.action_count.labels(action_type=action_type, status=status, node=node).inc()

    def record_action_mttr(self, action_type: str, seconds: float) -> None:
        self.action_mttr.labels(action_type=action_type).observe(max(seconds, 0.0))


GLOBAL_METRICS = ActionMetrics()


def get_metrics(registry: CollectorRegistry = REGISTRY) -> tuple[bytes, str]:
    """Generate Prometheus metrics output."""
    return generate_latest(registry), CONTENT_TYPE_LATEST
