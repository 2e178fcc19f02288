from __future__ import annotations

import pytest
from prometheus_client import CollectorRegistry

from janitor.config import RebootNodeControllerConfig
from janitor.metrics import ActionMetrics
from janitor.models import Node, RebootNode
from janitor.reconciler import RebootNodeReconciler
from janitor.store import InMemoryNodeSource, InMemoryRecordStore
from janitor.tests.fakes import FakeClock, FakeCSPClient


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(registry) -> ActionMetrics:
    return ActionMetrics(registry=registry)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def nodes() -> InMemoryNodeSource:
    return InMemoryNodeSource([Node(name="node-1", ready=True, provider_id="aws:///us-east-1a/i-123")])


@pytest.fixture
def csp() -> FakeCSPClient:
    return FakeCSPClient()


@pytest.fixture
def make_reconciler(store, nodes, csp, metrics, clock):
    """Build a reconciler over the shared in-memory fixtures."""

    def _make(manual_mode: bool = False, timeout: float = 1800.0, csp_timeout: float = 0.05):
        return RebootNodeReconciler(
            store,
            nodes,
            csp,
            RebootNodeControllerConfig(manual_mode=manual_mode, timeout=timeout),
            metrics=metrics,
            csp_timeout=csp_timeout,
            clock=clock,
        )

    return _make


@pytest.fixture
def reconciler(make_reconciler) -> RebootNodeReconciler:
    return make_reconciler()


@pytest.fixture
def record(store) -> RebootNode:
    """A freshly created RebootNode targeting node-1."""
    return store.create(RebootNode.new("reboot-node-1", "node-1"))
