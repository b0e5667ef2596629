"""Pydantic request/response schemas for the CloudSpotter API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class WebhookRequest(BaseModel):
    """LINE webhook body.

    Events stay as raw JSON values here, objects or not; each one is validated
    on its own by the dispatcher so that a bad event only affects itself.
    """

    destination: str | None = None
    events: list[Any] = Field(default_factory=list)


class WebhookAck(BaseModel):
    """Immediate acknowledgment returned to the platform."""

    status: str = "ok"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    model_ready: bool
    labels: list[str]
    concurrent_requests: int
    queue_depth: int
    pending_batches: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
