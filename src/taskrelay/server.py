from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from taskrelay import __version__
from taskrelay.api.middleware import request_context_middleware
from taskrelay.api.routes_queue import router as queue_router
from taskrelay.config import get_settings
from taskrelay.delivery import DeliveryConfig, build_delivery
from taskrelay.errors import StoreUnavailable
from taskrelay.ops.metrics import REGISTRY
from taskrelay.queue import build_task_queue
from taskrelay.store import KVStore, build_store
from taskrelay.utils.log import logger


def create_app(*, store: KVStore | None = None) -> FastAPI:
    """
    Build the HTTP app. `store` overrides STORE_BACKEND (tests, embedding).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        s = get_settings()
        kv = store if store is not None else build_store(s)
        tq = build_task_queue(s, kv)
        app.state.settings = s
        app.state.store = kv
        app.state.task_queue = tq
        app.state.delivery = build_delivery(DeliveryConfig.from_settings(s), task_queue=tq)
        logger.info(
            "server_started",
            version=__version__,
            store_backend=str(s.store_backend) if store is None else type(kv).__name__,
            delivery_mode=str(s.delivery_mode),
            key_prefix=tq.config.keys.prefix,
        )
        try:
            yield
        finally:
            await kv.close()
            logger.info("server_stopped")

    app = FastAPI(title="taskrelay", version=__version__, lifespan=lifespan)
    app.middleware("http")(request_context_middleware)
    app.include_router(queue_router)

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/readyz")
    async def readyz(request: Request):
        # Readiness: app state initialized and the store answers a point read.
        tq = getattr(request.app.state, "task_queue", None)
        if tq is None:
            raise HTTPException(status_code=503, detail="not ready: missing app state")
        try:
            await tq.store.get(tq.config.keys.index)
        except StoreUnavailable as ex:
            raise HTTPException(status_code=503, detail=f"not ready: {ex}") from ex
        return {"ok": True}

    @app.get("/metrics")
    async def metrics():
        return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
