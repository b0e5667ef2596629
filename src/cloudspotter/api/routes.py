"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse

from cloudspotter.api.middleware import verify_line_signature
from cloudspotter.api.schemas import (
    ErrorResponse,
    HealthResponse,
    WebhookAck,
    WebhookRequest,
)

if TYPE_CHECKING:
    from cloudspotter.ml.inference import InferencePool
    from cloudspotter.ml.model_manager import ClassifierModelManager
    from cloudspotter.pipeline.dispatcher import EventDispatcher

router = APIRouter()

LIVENESS_TEXT = "CloudSpotter webhook is running"


def _get_dispatcher(request: Request) -> EventDispatcher:
    dispatcher: EventDispatcher = request.app.state.dispatcher
    return dispatcher


def _get_model_manager(request: Request) -> ClassifierModelManager:
    manager: ClassifierModelManager = request.app.state.model_manager
    return manager


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


@router.post(
    "/webhook",
    response_model=WebhookAck,
    responses={status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse}},
    dependencies=[Depends(verify_line_signature)],
    summary="Receive LINE webhook events",
)
async def webhook(payload: WebhookRequest, request: Request) -> WebhookAck:
    """Acknowledge the batch at once and process its events in the background.

    Per-event outcomes are only visible through the replies sent to users.
    """
    _get_dispatcher(request).dispatch(payload.events)
    return WebhookAck()


@router.get(
    "/webhook",
    response_class=PlainTextResponse,
    summary="Webhook liveness check",
)
async def webhook_liveness() -> str:
    return LIVENESS_TEXT


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health and model readiness."""
    manager = _get_model_manager(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok" if manager.is_ready() else "loading",
        model_ready=manager.is_ready(),
        labels=list(manager.labels),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        pending_batches=_get_dispatcher(request).pending,
    )
