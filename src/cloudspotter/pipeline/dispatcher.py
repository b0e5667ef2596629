"""Event dispatcher: concurrent, isolated handling of a webhook batch.

Per event::

    Received -> Routed -> Fetching -> Preprocessing -> Inferring -> Replying -> Done
                       \\-------------------------------------------> Replying -> Done

Image events take the long path; everything else is answered with the
default prompt. The first failure on the long path jumps straight to
Replying with an error text. Nothing is retried and no error leaves
``_handle_one``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING, TypeVar

from cloudspotter.errors import (
    InferenceError,
    MalformedEventError,
    ModelNotReadyError,
    PipelineError,
    ReplyError,
)
from cloudspotter.ml.image_classifier import best_of, predict
from cloudspotter.ml.preprocessing import preprocess
from cloudspotter.pipeline.events import EventKind, InboundEvent, parse_event, recover_reply_token

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from cloudspotter.config import Settings
    from cloudspotter.messaging.content import ContentFetcher
    from cloudspotter.ml.inference import InferencePool
    from cloudspotter.ml.model_manager import ClassifierModelManager
    from cloudspotter.pipeline.replies import ReplyFormatter

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventDispatcher:
    """Routes webhook events to the classification or default-reply path."""

    def __init__(
        self,
        settings: Settings,
        model_manager: ClassifierModelManager,
        pool: InferencePool,
        fetcher: ContentFetcher,
        replies: ReplyFormatter,
    ) -> None:
        self._model_manager = model_manager
        self._pool = pool
        self._fetcher = fetcher
        self._replies = replies
        self._preprocess = functools.partial(
            preprocess,
            size=settings.image_size,
            max_pixels=settings.max_image_pixels,
        )
        self._tasks: set[asyncio.Task[list[ReplyError | None]]] = set()

    # -- Public API ---------------------------------------------------------

    def dispatch(self, events: Sequence[object]) -> asyncio.Task[list[ReplyError | None]]:
        """Schedule a batch in the background and return immediately."""
        task = asyncio.create_task(self.handle(events))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle(self, events: Sequence[object]) -> list[ReplyError | None]:
        """Handle every event concurrently; one result per event, in input order."""
        if not events:
            return []
        return list(await asyncio.gather(*(self._handle_one(raw) for raw in events)))

    async def drain(self) -> None:
        """Wait for all background batches to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    @property
    def pending(self) -> int:
        """Number of background batches still running."""
        return len(self._tasks)

    # -- Internal -----------------------------------------------------------

    async def _handle_one(self, raw: object) -> ReplyError | None:
        try:
            event = parse_event(raw)
        except MalformedEventError as exc:
            logger.warning("Malformed event: %s", exc)
            return await self._replies.send(recover_reply_token(raw), self._replies.failure_text)

        try:
            if event.kind is EventKind.IMAGE:
                text = await self._classify(event)
            else:
                text = self._replies.default_prompt
        except ModelNotReadyError:
            logger.info("Model not ready, deferring event %s", event.event_id)
            text = self._replies.loading_text
        except PipelineError as exc:
            logger.error(
                "Classification failed for event %s (content %s): %s",
                event.event_id,
                event.content_id,
                exc,
            )
            text = self._replies.failure_text
        except Exception:
            logger.exception(
                "Unexpected error for event %s (content %s)",
                event.event_id,
                event.content_id,
            )
            text = self._replies.failure_text

        return await self._replies.send(event.reply_token, text)

    async def _classify(self, event: InboundEvent) -> str:
        # Checked before any I/O so an unready model never triggers a fetch.
        model = self._model_manager.model

        if not event.content_id:
            raise MalformedEventError("Image event has no message id")

        image_bytes = await self._fetcher.fetch(event.content_id)
        tensor = await self._offload(self._preprocess, image_bytes)
        vector = await self._offload(predict, model, tensor)
        best = best_of(vector, model.labels)

        logger.info(
            "Event %s (content %s) classified as %s (%.4f)",
            event.event_id,
            event.content_id,
            best.label,
            best.probability,
        )
        return self._replies.prediction(best)

    async def _offload(self, func: Callable[..., T], *args: object) -> T:
        try:
            return await self._pool.run(func, *args)
        except TimeoutError as exc:
            raise InferenceError("Timed out waiting for an inference slot") from exc
