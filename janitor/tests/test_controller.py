"""Tests for the work queue and controller loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from janitor.controller import ErrorRateLimiter, QueueShutDown, RebootNodeController, WorkQueue
from janitor.errors import StoreError
from janitor.models import ConditionStatus, ConditionType, RebootNode
from janitor.reconciler import ReconcileResult
from janitor.supervisor import supervised_task


def _stub_reconciler(*results):
    reconciler = MagicMock()
    reconciler.reconcile = AsyncMock(side_effect=list(results))
    return reconciler


# --- WorkQueue ---

class TestWorkQueue:
    """Tests for deduplication and single-flight delivery."""

    @pytest.mark.asyncio
    async def test_duplicate_adds_coalesce(self):
        queue = WorkQueue()
        await queue.add("a")
        await queue.add("a")
        await queue.add("b")

        assert len(queue) == 2
        assert await queue.get() == "a"
        assert await queue.get() == "b"

    @pytest.mark.asyncio
    async def test_key_in_flight_is_not_redelivered(self):
        queue = WorkQueue()
        await queue.add("a")
        key = await queue.get()

        await queue.add("a")
        assert len(queue) == 0
        assert queue.processing == 1

        await queue.done(key)
        assert len(queue) == 1
        assert await queue.get() == "a"

    @pytest.mark.asyncio
    async def test_done_without_readd_drops_key(self):
        queue = WorkQueue()
        await queue.add("a")
        await queue.done(await queue.get())

        assert len(queue) == 0
        assert queue.processing == 0

    @pytest.mark.asyncio
    async def test_add_after_delivers_later(self):
        queue = WorkQueue()
        queue.add_after("a", 0.02)
        assert len(queue) == 0

        assert await asyncio.wait_for(queue.get(), timeout=1.0) == "a"

    @pytest.mark.asyncio
    async def test_add_after_keeps_earliest(self):
        queue = WorkQueue()
        queue.add_after("a", 0.01)
        queue.add_after("a", 60)

        assert await asyncio.wait_for(queue.get(), timeout=1.0) == "a"

    @pytest.mark.asyncio
    async def test_shutdown_wakes_getters(self):
        queue = WorkQueue()
        getter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)

        await queue.shutdown()

        with pytest.raises(QueueShutDown):
            await getter

    @pytest.mark.asyncio
    async def test_immediate_add_after_is_tracked_until_done(self):
        queue = WorkQueue()
        queue.add_after("a", 0)

        assert len(queue._adds) == 1
        await asyncio.sleep(0.01)

        assert not queue._adds
        assert await queue.get() == "a"

    @pytest.mark.asyncio
    async def test_add_after_shutdown_is_ignored(self):
        queue = WorkQueue()
        await queue.shutdown()
        await queue.add("a")
        queue.add_after("a", 0.01)

        assert len(queue) == 0


def test_error_rate_limiter_doubles_and_caps():
    limiter = ErrorRateLimiter(base_delay=1.0, max_delay=5.0)

    assert [limiter.when("a") for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert limiter.when("b") == 1.0

    limiter.forget("a")
    assert limiter.failures("a") == 0
    assert limiter.when("a") == 1.0


# --- RebootNodeController ---

class TestController:
    """Tests for reconcile dispatch and error redelivery."""

    @pytest.mark.asyncio
    async def test_requeue_after_is_scheduled(self, store):
        reconciler = _stub_reconciler(ReconcileResult(0.01), ReconcileResult())
        controller = RebootNodeController(reconciler, store)
        await controller.enqueue("rn")

        await controller.process_next()
        assert len(controller.queue) == 0

        assert await asyncio.wait_for(controller.process_next(), timeout=1.0) == "rn"
        assert reconciler.reconcile.await_count == 2
        assert controller.reconcile_count == 2

    @pytest.mark.asyncio
    async def test_error_is_redelivered_with_rate_limit(self, store):
        reconciler = _stub_reconciler(StoreError("write failed"), ReconcileResult())
        limiter = ErrorRateLimiter(base_delay=0.01)
        controller = RebootNodeController(reconciler, store, rate_limiter=limiter)
        await controller.enqueue("rn")

        await controller.process_next()
        assert controller.error_count == 1
        assert limiter.failures("rn") == 1

        await asyncio.wait_for(controller.process_next(), timeout=1.0)
        assert limiter.failures("rn") == 0
        assert reconciler.reconcile.await_count == 2

    @pytest.mark.asyncio
    async def test_resync_enqueues_all_records(self, store):
        store.create(RebootNode.new("rn-1", "node-1"))
        store.create(RebootNode.new("rn-2", "node-2"))
        controller = RebootNodeController(_stub_reconciler(), store)

        assert await controller.resync() == 2
        assert len(controller.queue) == 2

    @pytest.mark.asyncio
    async def test_run_reconciles_existing_records(self, store, reconciler, csp, record):
        controller = RebootNodeController(reconciler, store, workers=2, resync_interval=60)
        task = asyncio.create_task(controller.run())

        async def signal_sent():
            stored = await store.get(record.name)
            return stored.has_condition(ConditionType.SIGNAL_SENT, ConditionStatus.TRUE)

        try:
            deadline = asyncio.get_running_loop().time() + 2.0
            while not await signal_sent():
                assert asyncio.get_running_loop().time() < deadline
                await asyncio.sleep(0.01)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert csp.send_calls == ["node-1"]
        assert controller.queue.shutting_down is True

    @pytest.mark.asyncio
    async def test_supervisor_restart_resumes_reconciling(self, monkeypatch, store, record):
        reconciler = _stub_reconciler(ReconcileResult(), ReconcileResult())
        controller = RebootNodeController(reconciler, store, workers=1, resync_interval=3600)
        resync_loop = controller._resync_loop
        runs = {"count": 0}

        async def resync_crashes_first_run():
            runs["count"] += 1
            if runs["count"] == 1:
                raise RuntimeError("resync blew up")
            await resync_loop()

        monkeypatch.setattr(controller, "_resync_loop", resync_crashes_first_run)
        task = asyncio.create_task(
            supervised_task(controller.run, name="rebootnode_controller", base_backoff=0.0)
        )

        try:
            deadline = asyncio.get_running_loop().time() + 2.0
            while reconciler.reconcile.await_count == 0:
                assert not task.done()
                assert asyncio.get_running_loop().time() < deadline
                await asyncio.sleep(0.01)
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert runs["count"] == 2
        reconciler.reconcile.assert_awaited_with(record.name)
