"""Reply text building and single-attempt delivery."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cloudspotter.errors import ReplyError
from cloudspotter.messaging.line import text_message
from cloudspotter.ml.image_classifier import format_percentage

if TYPE_CHECKING:
    from cloudspotter.config import Settings
    from cloudspotter.messaging.line import LineMessagingClient
    from cloudspotter.ml.image_classifier import BestPrediction

logger = logging.getLogger(__name__)


class ReplyFormatter:
    """Formats reply texts and hands them to the messaging client."""

    def __init__(self, messaging: LineMessagingClient, settings: Settings) -> None:
        self._messaging = messaging
        self._template = settings.prediction_template
        self.default_prompt = settings.default_prompt
        self.loading_text = settings.loading_text
        self.failure_text = settings.failure_text

    def prediction(self, best: BestPrediction) -> str:
        return self._template.format(
            label=best.label,
            percentage=best.percentage,
            percent=format_percentage(best.probability),
        )

    async def send(self, reply_token: str | None, text: str) -> ReplyError | None:
        """Attempt delivery exactly once.

        Returns None on success, or the ReplyError that was logged.
        """
        if not reply_token:
            error = ReplyError("Event has no reply token")
            logger.warning("Skipping reply: %s", error)
            return error

        try:
            await self._messaging.reply_message(reply_token, [text_message(text)])
        except ReplyError as exc:
            logger.error("Reply delivery failed for token %s: %s", reply_token, exc)
            return exc
        return None
