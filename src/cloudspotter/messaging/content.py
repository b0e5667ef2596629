"""Image fetcher for LINE message content."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from cloudspotter.errors import FetchError

if TYPE_CHECKING:
    from cloudspotter.config import Settings

logger = logging.getLogger(__name__)


class ContentFetcher:
    """Downloads binary message content with the channel access token."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._url_template = settings.content_url_template
        self._access_token = settings.channel_access_token
        self._max_size = settings.max_file_size

    async def fetch(self, content_id: str) -> bytes:
        """Return the raw bytes of a message attachment.

        The body is streamed as bytes and never decoded as text. Reading stops
        as soon as it exceeds ``max_file_size``.

        Raises:
            FetchError: On transport errors, non-2xx responses, or oversized bodies.
        """
        url = self._url_template.format(content_id=content_id)
        try:
            async with self._client.stream(
                "GET",
                url,
                headers={"Authorization": f"Bearer {self._access_token}"},
            ) as response:
                response.raise_for_status()
                declared = response.headers.get("Content-Length", "")
                if declared.isdigit() and int(declared) > self._max_size:
                    raise FetchError(f"Content {content_id} is {declared} bytes, limit is {self._max_size}")

                data = bytearray()
                async for chunk in response.aiter_bytes():
                    data.extend(chunk)
                    if len(data) > self._max_size:
                        raise FetchError(
                            f"Content {content_id} read {len(data)} bytes so far, limit is {self._max_size}"
                        )
        except httpx.HTTPStatusError as exc:
            raise FetchError(f"Content {content_id} returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Content {content_id} could not be retrieved: {exc}") from exc

        logger.debug("Fetched %d bytes for content %s", len(data), content_id)
        return bytes(data)
