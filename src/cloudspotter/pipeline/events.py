"""Inbound webhook events.

Events are validated one at a time rather than as part of the request body,
so a single malformed event cannot reject the whole batch.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cloudspotter.errors import MalformedEventError


class EventKind(StrEnum):
    IMAGE = "image"
    MESSAGE = "message"
    OTHER = "other"


class EventMessage(BaseModel):
    """The ``message`` object of a LINE message event."""

    model_config = ConfigDict(extra="allow")

    type: str
    id: str | None = None


class WebhookEvent(BaseModel):
    """A single LINE webhook event, as delivered."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    reply_token: str | None = Field(default=None, alias="replyToken")
    webhook_event_id: str | None = Field(default=None, alias="webhookEventId")
    message: EventMessage | None = None


@dataclass(frozen=True)
class InboundEvent:
    """A routed event: what kind it is, where to reply, what to fetch."""

    kind: EventKind
    reply_token: str | None
    content_id: str | None = None
    event_id: str | None = None


def parse_event(raw: object) -> InboundEvent:
    """Validate a raw event and classify it.

    Raises:
        MalformedEventError: If the payload does not match the event schema.
    """
    try:
        event = WebhookEvent.model_validate(raw)
    except ValidationError as exc:
        raise MalformedEventError(f"Invalid webhook event: {exc.error_count()} validation error(s)") from exc

    if event.type != "message" or event.message is None:
        kind = EventKind.OTHER
    elif event.message.type == "image":
        kind = EventKind.IMAGE
    else:
        kind = EventKind.MESSAGE

    return InboundEvent(
        kind=kind,
        reply_token=event.reply_token,
        content_id=event.message.id if kind is EventKind.IMAGE and event.message else None,
        event_id=event.webhook_event_id,
    )


def recover_reply_token(raw: object) -> str | None:
    """Best-effort reply token lookup for events that failed validation."""
    if isinstance(raw, Mapping):
        token = raw.get("replyToken")
        if isinstance(token, str) and token:
            return token
    return None
