"""Per-record requeue backoff.

Delays are applied through ReconcileResult.requeue_after rather than the
work queue's error rate limiter, so each node backs off on its own
failure history.
"""
from __future__ import annotations

# 30s, 1m, 2m, then capped at 5m
REQUEUE_DELAYS: tuple[float, ...] = (30.0, 60.0, 120.0, 300.0)


def next_requeue_delay(consecutive_failures: int) -> float:
    """Return the requeue delay in seconds for a consecutive failure count."""
    idx = max(consecutive_failures, 0)
    if idx >= len(REQUEUE_DELAYS):
        return REQUEUE_DELAYS[-1]
    return REQUEUE_DELAYS[idx]
