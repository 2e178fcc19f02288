"""Janitor controller process.

Runs the RebootNode controller as a supervised background task and serves:
- /healthz: controller and work queue status
- /metrics: Prometheus metrics

Usage:
    python -m janitor
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from janitor import __version__
from janitor.config import RebootNodeControllerConfig, Settings, settings
from janitor.controller import RebootNodeController
from janitor.csp import get_csp_client
from janitor.logging_config import setup_logging
from janitor.metrics import get_metrics
from janitor.reconciler import RebootNodeReconciler
from janitor.store import InMemoryNodeSource, InMemoryRecordStore, NodeSource, RecordStore
from janitor.supervisor import supervised_task

logger = logging.getLogger(__name__)

_controller: RebootNodeController | None = None
_controller_task: asyncio.Task | None = None


def build_backends(source: Settings = settings) -> tuple[RecordStore, NodeSource]:
    """Create the record store and node source selected by configuration."""
    backend = source.store_backend.lower()
    if backend == "memory":
        return InMemoryRecordStore(), InMemoryNodeSource()
    if backend == "kubernetes":
        from janitor.kube import KubernetesNodeSource, KubernetesRecordStore, load_kube_config

        load_kube_config(source.kubeconfig_path)
        return KubernetesRecordStore(source=source), KubernetesNodeSource()
    raise ValueError(f"Unsupported store backend '{source.store_backend}'")


def build_controller(source: Settings = settings) -> RebootNodeController:
    """Wire the reconciler and controller from configuration."""
    store, nodes = build_backends(source)
    reconciler = RebootNodeReconciler(
        store,
        nodes,
        get_csp_client(),
        RebootNodeControllerConfig.from_settings(source),
        csp_timeout=source.csp_operation_timeout,
    )
    return RebootNodeController(
        reconciler,
        store,
        workers=source.workers,
        resync_interval=source.resync_interval,
    )


async def healthz(request: Request) -> JSONResponse:
    """Controller health probe."""
    running = _controller_task is not None and not _controller_task.done()
    result: dict = {
        "status": "ok" if running else "degraded",
        "service": "janitor",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "manual_mode": settings.manual_mode,
    }
    if _controller is not None:
        result["queue"] = {
            "depth": len(_controller.queue),
            "processing": _controller.queue.processing,
        }
        result["reconciles"] = {
            "total": _controller.reconcile_count,
            "errors": _controller.error_count,
        }
    return JSONResponse(result, status_code=200 if running else 503)


async def metrics(_: Request) -> Response:
    """Prometheus metrics endpoint."""
    content, content_type = get_metrics()
    return Response(content=content, media_type=content_type)


async def startup() -> None:
    global _controller, _controller_task

    setup_logging()
    logger.info(
        f"Starting janitor {__version__} "
        f"(manual_mode={settings.manual_mode}, csp={settings.csp_provider}, "
        f"store={settings.store_backend})"
    )
    _controller = build_controller()
    controller = _controller
    _controller_task = asyncio.create_task(
        supervised_task(controller.run, name="rebootnode_controller"),
        name="supervised_rebootnode_controller",
    )


async def shutdown() -> None:
    global _controller_task

    logger.info("Shutting down janitor")
    if _controller_task is not None:
        _controller_task.cancel()
        await asyncio.gather(_controller_task, return_exceptions=True)
        _controller_task = None
    logger.info("Janitor shutdown complete")


@asynccontextmanager
async def lifespan(_: Starlette):
    await startup()
    try:
        yield
    finally:
        await shutdown()


app = Starlette(
    routes=[Route("/healthz", healthz), Route("/metrics", metrics)],
    lifespan=lifespan,
)


def main() -> None:
    import uvicorn

    uvicorn.run(
        "janitor.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
