"""Exception hierarchy for the classification relay.

Every per-event failure is a ``PipelineError`` and is turned into a
user-facing reply by the dispatcher. ``LoadError`` only ever surfaces at
startup, and ``ReplyError`` is logged and dropped.
"""

from __future__ import annotations


class CloudSpotterError(Exception):
    """Base class for all CloudSpotter errors."""


class LoadError(CloudSpotterError):
    """Model or label artifact missing, malformed, or mismatched."""


class ModelNotReadyError(CloudSpotterError):
    """A classification was requested before the model finished loading."""


class PipelineError(CloudSpotterError):
    """Recoverable failure while handling a single event."""


class MalformedEventError(PipelineError):
    """Webhook event is missing fields required to process it."""


class FetchError(PipelineError):
    """Image content could not be retrieved."""


class DecodeError(PipelineError):
    """Image bytes could not be decoded."""


class InferenceError(PipelineError):
    """Model invocation failed or returned an unusable result."""


class ReplyError(CloudSpotterError):
    """Reply delivery to the messaging platform failed."""
