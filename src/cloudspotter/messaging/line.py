"""LINE Messaging API client: reply delivery and webhook signatures."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from typing import TYPE_CHECKING, Any

import httpx

from cloudspotter.errors import ReplyError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from cloudspotter.config import Settings

logger = logging.getLogger(__name__)


def compute_signature(body: bytes, channel_secret: str) -> str:
    """Return the base64 HMAC-SHA256 digest LINE sends as X-Line-Signature."""
    digest = hmac.new(channel_secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_signature(body: bytes, signature: str, channel_secret: str) -> bool:
    """Check a webhook body against its X-Line-Signature header."""
    expected = compute_signature(body, channel_secret)
    return secrets.compare_digest(expected.encode(), signature.encode())


def text_message(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


class LineMessagingClient:
    """Sends reply messages through the LINE reply endpoint."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._reply_url = settings.reply_url
        self._access_token = settings.channel_access_token

    async def reply_message(self, reply_token: str, messages: Sequence[dict[str, Any]]) -> None:
        """Deliver messages for a reply token.

        Raises:
            ReplyError: On transport errors or non-2xx responses.
        """
        try:
            response = await self._client.post(
                self._reply_url,
                json={"replyToken": reply_token, "messages": list(messages)},
                headers={"Authorization": f"Bearer {self._access_token}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ReplyError(f"Reply rejected with HTTP {exc.response.status_code}: {exc.response.text}") from exc
        except httpx.HTTPError as exc:
            raise ReplyError(f"Reply could not be delivered: {exc}") from exc
