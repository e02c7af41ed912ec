"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from faceseq.ml.cascade_manager import CascadeProvider

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from faceseq.api.routes import router
from faceseq.batch.driver import BatchDriver
from faceseq.batch.pool import BatchPool
from faceseq.config import get_settings
from faceseq.ml.cascade_manager import CascadeManager
from faceseq.ml.detector import HaarCascadeDetector

logger = logging.getLogger(__name__)


async def evict_idle_cascades(manager: CascadeProvider, interval: float) -> None:
    """Unload cascades past their TTL every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        manager.unload_idle()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceSeq (target=%s, max_concurrent=%s, face_cascade=%s, eye_cascade=%s)",
        settings.detector_target,
        settings.max_concurrent,
        settings.face_cascade,
        settings.eye_cascade,
    )

    cascade_manager = CascadeManager(settings)
    detector = HaarCascadeDetector(settings, cascade_manager)
    batch_pool = BatchPool(BatchDriver(settings, detector), settings.max_concurrent)
    app.state.cascade_manager = cascade_manager
    app.state.detector = detector
    app.state.batch_pool = batch_pool

    eviction: asyncio.Task[None] | None = None
    if settings.cascade_ttl > 0:
        eviction = asyncio.create_task(evict_idle_cascades(cascade_manager, max(settings.cascade_ttl / 2, 1.0)))

    logger.info("FaceSeq ready")
    yield

    logger.info("Shutting down FaceSeq")
    if eviction is not None:
        eviction.cancel()
        with suppress(asyncio.CancelledError):
            await eviction
    batch_pool.shutdown()
    cascade_manager.shutdown()
    logger.info("FaceSeq shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceSeq",
        description="Face and eye counting over images stored in SequenceFile containers",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
