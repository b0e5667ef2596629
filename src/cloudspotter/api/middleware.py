"""Middleware: LINE webhook signature verification."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Header, HTTPException, Request, status

from cloudspotter.messaging.line import verify_signature

if TYPE_CHECKING:
    from cloudspotter.config import Settings


def _get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_line_signature(
    request: Request,
    x_line_signature: Annotated[str | None, Header()] = None,
) -> None:
    """Check the X-Line-Signature header against the raw request body.

    If no channel secret is configured (CLOUDSPOTTER_CHANNEL_SECRET not set),
    all requests pass.
    """
    settings = _get_settings_from_request(request)
    if settings.channel_secret is None:
        return

    body = await request.body()
    if x_line_signature is None or not verify_signature(body, x_line_signature, settings.channel_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing signature",
        )
