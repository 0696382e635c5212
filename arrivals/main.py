# arrivals/main.py
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from arrivals.config import settings
from arrivals.routers.arrivals_api import router as arrivals_api_router
from arrivals.routers.shapes_api import router as shapes_api_router
from arrivals.services.arrival_estimator import ArrivalEstimator
from arrivals.services.shape_cache import ShapeCache
from arrivals.services.shapes_client import ShapesClient
from arrivals.services.snapshot_store import JsonFileSnapshotStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

log = logging.getLogger("arrivals.main")


def build_shape_cache() -> ShapeCache:
    return ShapeCache(
        ShapesClient(),
        JsonFileSnapshotStore(settings.SNAPSHOT_DIR, compress=settings.SNAPSHOT_COMPRESS),
        snapshot_key=settings.SNAPSHOT_KEY,
    )


def create_app(
    shape_cache: ShapeCache | None = None,
    estimator: ArrivalEstimator | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        cache = app.state.shape_cache
        await cache.initialize()
        log.info("startup shapes=%s status=%s", cache.size, cache.status.value)
        yield
        await cache.wait_for_refresh()

    app = FastAPI(title="Transit arrivals", lifespan=lifespan)
    app.state.shape_cache = shape_cache or build_shape_cache()
    app.state.estimator = estimator or ArrivalEstimator()

    app.include_router(shapes_api_router)
    app.include_router(arrivals_api_router)
    return app


app = create_app()
