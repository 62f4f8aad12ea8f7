"""Streaming screenshot-to-markup conversion pipeline."""

from fromscreen.conversion.events import (
    ClientDisconnected,
    ConversionStream,
    EventSink,
    StreamState,
    encode_event,
)
from fromscreen.conversion.formatter import FormatError, canonicalize
from fromscreen.conversion.images import ImagePayload, InvalidImagePayload, decode_image_data_url
from fromscreen.conversion.pipeline import ConversionPipeline
from fromscreen.conversion.preview import render_preview_document, sanitize_markup
from fromscreen.conversion.relay import relay_fragments
from fromscreen.conversion.upstream import (
    CompletionClient,
    OpenRouterCompletionClient,
    UpstreamError,
)

__all__ = [
    "ClientDisconnected",
    "CompletionClient",
    "ConversionPipeline",
    "ConversionStream",
    "EventSink",
    "FormatError",
    "ImagePayload",
    "InvalidImagePayload",
    "OpenRouterCompletionClient",
    "StreamState",
    "UpstreamError",
    "canonicalize",
    "decode_image_data_url",
    "encode_event",
    "relay_fragments",
    "render_preview_document",
    "sanitize_markup",
]
