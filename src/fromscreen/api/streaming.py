"""Bridge between the pipeline worker thread and a streaming HTTP response."""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable, Iterator

from fromscreen.conversion.events import ClientDisconnected

_CLOSED = object()
_POLL_S = 0.05


class QueueSink:
    """Single-slot event sink consumed by `frames()`.

    `emit` blocks until the response iterator takes the previous frame, so a
    slow client throttles the producer. When the consumer goes away, or does
    not take a frame within `emit_timeout_s`, `emit` raises `ClientDisconnected`.
    """

    def __init__(self, *, emit_timeout_s: float = 30.0) -> None:
        self.emit_timeout_s = emit_timeout_s
        self._queue: queue.Queue[object] = queue.Queue(maxsize=1)
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def emit(self, frame: str) -> None:
        if not self._put(frame):
            raise ClientDisconnected("event stream consumer is gone")

    def close(self) -> None:
        self._put(_CLOSED)

    def cancel(self) -> None:
        self._cancelled.set()

    def frames(self) -> Iterator[str]:
        try:
            while True:
                try:
                    item = self._queue.get(timeout=_POLL_S)
                except queue.Empty:
                    if self._cancelled.is_set():
                        return
                    continue
                if item is _CLOSED:
                    return
                yield item
        finally:
            self.cancel()

    def _put(self, item: object) -> bool:
        deadline = time.monotonic() + self.emit_timeout_s
        while not self._cancelled.is_set():
            try:
                self._queue.put(item, timeout=_POLL_S)
                return True
            except queue.Full:
                if time.monotonic() >= deadline:
                    self.cancel()
                    return False
        return False


def start_worker(target: Callable[[], object], sink: QueueSink, *, name: str) -> threading.Thread:
    """Run `target` on a daemon thread and close `sink` when it returns."""

    def _run() -> None:
        try:
            target()
        finally:
            sink.close()

    worker = threading.Thread(target=_run, name=name, daemon=True)
    worker.start()
    return worker
