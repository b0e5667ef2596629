"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from cloudspotter.config import Settings

import httpx
import uvicorn
from fastapi import FastAPI

from cloudspotter.api.routes import router
from cloudspotter.config import get_settings
from cloudspotter.messaging.content import ContentFetcher
from cloudspotter.messaging.line import LineMessagingClient
from cloudspotter.ml.inference import InferencePool
from cloudspotter.ml.model_manager import ClassifierModelManager
from cloudspotter.pipeline.dispatcher import EventDispatcher
from cloudspotter.pipeline.replies import ReplyFormatter

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings, http_client: httpx.AsyncClient) -> None:
    """Build the process-wide components and attach them to ``app.state``."""
    model_manager = ClassifierModelManager(settings)
    inference_pool = InferencePool(settings)
    replies = ReplyFormatter(LineMessagingClient(http_client, settings), settings)

    app.state.settings = settings
    app.state.http_client = http_client
    app.state.model_manager = model_manager
    app.state.inference_pool = inference_pool
    app.state.dispatcher = EventDispatcher(
        settings,
        model_manager,
        inference_pool,
        ContentFetcher(http_client, settings),
        replies,
    )


async def stop_loading(load_task: asyncio.Task[bool]) -> bool:
    """Cancel a model load that is still running at shutdown.

    Returns True if the load had already finished, successfully or not.
    """
    if load_task.done():
        return True
    logger.warning("Model still loading at shutdown, cancelling")
    load_task.cancel()
    with suppress(asyncio.CancelledError):
        await load_task
    return False


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: wire components, start loading, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting CloudSpotter (device=%s, max_concurrent=%s, models_dir=%s, signature_check=%s)",
        settings.device,
        settings.max_concurrent,
        settings.models_dir,
        settings.channel_secret is not None,
    )

    http_client = httpx.AsyncClient(timeout=settings.fetch_timeout)
    init_state(app, settings, http_client)

    # The server accepts webhooks while the model loads; image events get
    # the loading reply until it is ready.
    load_task = asyncio.create_task(app.state.model_manager.load_in_background(app.state.inference_pool))

    logger.info("CloudSpotter accepting requests")
    yield

    logger.info("Shutting down CloudSpotter")
    load_finished = await stop_loading(load_task)
    await app.state.dispatcher.drain()
    await http_client.aclose()
    # A cancelled load can still hold a worker thread; do not wait for it.
    app.state.inference_pool.shutdown(wait=load_finished)
    app.state.model_manager.shutdown()
    logger.info("CloudSpotter shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="CloudSpotter",
        description="LINE webhook relay that classifies cloud photos",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
