"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from imageedit.api.middleware import add_response_headers
from imageedit.api.routes import meta_router, router
from imageedit.config import VERSION, Settings, get_settings
from imageedit.errors import register_exception_handlers
from imageedit.imaging.background import BackgroundRemover
from imageedit.ml.classifier import ClothingClassifier
from imageedit.ratelimit import RateLimiter
from imageedit.workers import WorkerPool

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Attach settings and the shared, lazily-loading services to ``app.state``."""
    app.state.settings = settings
    app.state.worker_pool = WorkerPool(settings)
    app.state.rate_limiter = RateLimiter.from_settings(settings)
    app.state.background_remover = BackgroundRemover(settings)
    app.state.classifier = ClothingClassifier(settings)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting imageedit %s (device=%s, max_concurrent=%s, bg_model=%s, classifier_backend=%s)",
        VERSION,
        settings.device,
        settings.max_concurrent,
        settings.bg_model,
        settings.classifier_backend,
    )
    if not settings.api_key_list:
        logger.warning("No API keys configured! All /v1 requests will be rejected.")

    init_state(app, settings)
    worker_pool: WorkerPool = app.state.worker_pool

    if settings.preload_models:
        logger.info("Preloading models")
        await worker_pool.run(app.state.background_remover.get_session)
        await worker_pool.run(app.state.classifier.get_backend)

    logger.info("imageedit ready")
    yield

    logger.info("Shutting down imageedit")
    worker_pool.shutdown()
    logger.info("imageedit shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="imageedit",
        description="Image resizing, cropping, background removal, colour extraction and clothing classification",
        version=VERSION,
        lifespan=lifespan,
    )

    application.add_middleware(BaseHTTPMiddleware, dispatch=add_response_headers)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "X-Source-Code"],
    )

    register_exception_handlers(application)
    application.include_router(meta_router)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("imageedit.main:app", host=settings.host, port=settings.port)
