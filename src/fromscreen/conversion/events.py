"""Outbound event protocol for a conversion stream.

Every accepted conversion produces exactly one of these sequences:

    id, chunk*, done
    id, chunk*, error

Events are serialized as single-line JSON inside server-sent-event frames.
`ConversionStream` owns the state machine and refuses illegal transitions.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Literal, Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class IdEvent(BaseModel):
    type: Literal["id"] = "id"
    id: str


class ChunkEvent(BaseModel):
    type: Literal["chunk"] = "chunk"
    content: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"
    html: str
    id: str


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


StreamEvent = IdEvent | ChunkEvent | DoneEvent | ErrorEvent


class StreamState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


class ClientDisconnected(RuntimeError):
    """The outbound transport stopped accepting frames."""


class StreamProtocolError(RuntimeError):
    """An event was emitted out of protocol order."""


class EventSink(Protocol):
    @property
    def cancelled(self) -> bool: ...

    def emit(self, frame: str) -> None: ...


def encode_event(event: StreamEvent) -> str:
    return f"data: {event.model_dump_json()}\n\n"


class ConversionStream:
    """State machine framing one conversion onto an `EventSink`."""

    def __init__(self, sink: EventSink) -> None:
        self._sink = sink
        self.state = StreamState.INIT
        self.chunk_count = 0

    @property
    def is_terminal(self) -> bool:
        return self.state in (StreamState.DONE, StreamState.FAILED)

    def open(self, conversion_id: str) -> None:
        self._require(StreamState.INIT, "id")
        self._sink.emit(encode_event(IdEvent(id=conversion_id)))
        self.state = StreamState.STREAMING

    def chunk(self, content: str) -> None:
        self._require(StreamState.STREAMING, "chunk")
        self._sink.emit(encode_event(ChunkEvent(content=content)))
        self.chunk_count += 1

    def ensure_connected(self) -> None:
        """Raise `ClientDisconnected` if the consumer has gone away since the last emit."""
        if self._sink.cancelled:
            raise ClientDisconnected("event stream consumer is gone")

    def done(self, *, html: str, conversion_id: str) -> None:
        self._require(StreamState.STREAMING, "done")
        self._sink.emit(encode_event(DoneEvent(html=html, id=conversion_id)))
        self.state = StreamState.DONE

    def fail(self, message: str) -> None:
        self._require(StreamState.STREAMING, "error")
        # Terminal before emitting: a sink failure here must not allow a second terminal event.
        self.state = StreamState.FAILED
        self._sink.emit(encode_event(ErrorEvent(message=message)))

    def _require(self, expected: StreamState, event_type: str) -> None:
        if self.state is not expected:
            raise StreamProtocolError(
                f"cannot emit '{event_type}' event in state '{self.state.value}'"
            )
