"""Shared test helpers: settings, a fake ONNX session, generated images, a fake LINE API."""

from __future__ import annotations

import io
import json
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

import httpx
import numpy as np
import pytest
from PIL import Image

from cloudspotter.config import Settings
from cloudspotter.ml.inference import InferencePool

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator, Sequence
    from pathlib import Path

CONTENT_PREFIX = "https://api-data.line.me/v2/bot/message/"
REPLY_URL = "https://api.line.me/v2/bot/message/reply"
CLOUD_LABELS = ["Cirrus", "Cumulus", "Stratus"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "channel_access_token": "test-token",
        "channel_secret": None,
        "models_dir": "/tmp/cloudspotter_test_models",
        "model_repo_id": None,
        "max_concurrent": 2,
        "device": "cpu",
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def write_artifacts(directory: Path, labels: Sequence[str] = CLOUD_LABELS) -> None:
    (directory / "labels.json").write_text(json.dumps(list(labels)), encoding="utf-8")
    (directory / "model.onnx").write_bytes(b"not-a-real-onnx-graph")


def image_bytes(
    width: int = 64,
    height: int = 48,
    color: tuple[int, ...] | int = (128, 128, 128),
    mode: str = "RGB",
    fmt: str = "PNG",
) -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


def image_event(token: str, content_id: str | None = "123") -> dict[str, Any]:
    message: dict[str, Any] = {"type": "image"}
    if content_id is not None:
        message["id"] = content_id
    return {
        "type": "message",
        "replyToken": token,
        "webhookEventId": f"evt-{token}",
        "message": message,
    }


def text_event(token: str, text: str = "hello") -> dict[str, Any]:
    return {
        "type": "message",
        "replyToken": token,
        "webhookEventId": f"evt-{token}",
        "message": {"type": "text", "id": "999", "text": text},
    }


class FakeSession:
    """Stands in for onnxruntime.InferenceSession."""

    def __init__(
        self,
        scores: Sequence[float],
        output_shape: list[Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.scores = np.asarray([scores], dtype=np.float32)
        self.output_shape = output_shape if output_shape is not None else [1, len(scores)]
        self.error = error
        self.inputs: list[np.ndarray] = []

    def get_inputs(self) -> list[SimpleNamespace]:
        return [SimpleNamespace(name="input_1", shape=[1, 224, 224, 3])]

    def get_outputs(self) -> list[SimpleNamespace]:
        return [SimpleNamespace(name="probs", shape=self.output_shape)]

    def run(self, output_names: object, feed: dict[str, np.ndarray]) -> list[np.ndarray]:
        self.inputs.append(feed["input_1"])
        if self.error is not None:
            raise self.error
        return [self.scores]


@dataclass
class FakeLineApi:
    """Serves message content and records replies, via httpx.MockTransport."""

    images: dict[str, bytes] = field(default_factory=dict)
    content_error: bool = False
    reply_status: int = 200
    replies: list[dict[str, Any]] = field(default_factory=list)
    content_requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == REPLY_URL:
            self.replies.append(json.loads(request.content))
            return httpx.Response(self.reply_status, json={})
        if url.startswith(CONTENT_PREFIX):
            self.content_requests.append(request)
            if self.content_error:
                raise httpx.ConnectError("connection refused", request=request)
            content_id = url.removeprefix(CONTENT_PREFIX).removesuffix("/content")
            if content_id not in self.images:
                return httpx.Response(404, json={"message": "Not found"})
            return httpx.Response(200, content=self.images[content_id])
        return httpx.Response(404)

    def texts(self) -> dict[str, str]:
        """Map reply token to the text that was sent."""
        return {reply["replyToken"]: reply["messages"][0]["text"] for reply in self.replies}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    write_artifacts(tmp_path)
    return make_settings(models_dir=str(tmp_path))


@pytest.fixture()
def pool(settings: Settings) -> Iterator[InferencePool]:
    inference_pool = InferencePool(settings)
    yield inference_pool
    inference_pool.shutdown()


@pytest.fixture()
def line_api() -> FakeLineApi:
    return FakeLineApi()


@pytest.fixture()
async def http_client(line_api: FakeLineApi) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(line_api.handler)) as client:
        yield client
