from __future__ import annotations

import threading
from collections.abc import Iterator

from conftest import (
    DEFAULT_MARKUP,
    FakeCompletionClient,
    RecordingSink,
)
from fromscreen.api.streaming import QueueSink, start_worker
from fromscreen.conversion.events import ClientDisconnected
from fromscreen.conversion.images import ImagePayload
from fromscreen.conversion.pipeline import (
    FORMAT_FAILURE_MESSAGE,
    PERSISTENCE_FAILURE_MESSAGE,
    UPSTREAM_FAILURE_MESSAGE,
    ConversionPipeline,
)
from fromscreen.conversion.upstream import UpstreamError
from fromscreen.storage.memory import InMemoryConversionStorage

IMAGE = ImagePayload(mime_type="image/png", data=b"\x89PNG")


def _pipeline(client: FakeCompletionClient, storage: InMemoryConversionStorage) -> ConversionPipeline:
    return ConversionPipeline(client=client, storage=storage, model="test/vision-model")


def test_run_persists_before_done_event() -> None:
    storage = InMemoryConversionStorage()
    seen_at_done: list[object] = []

    class CheckingSink(RecordingSink):
        def emit(self, frame: str) -> None:
            if '"type":"done"' in frame:
                seen_at_done.append(storage.get_conversion("c-1"))
            super().emit(frame)

    sink = CheckingSink()
    record = _pipeline(FakeCompletionClient(), storage).run(
        conversion_id="c-1", owner="s-1", image=IMAGE, sink=sink
    )

    assert record is not None
    assert record.markup == DEFAULT_MARKUP
    assert seen_at_done == [record]
    events = sink.events()
    assert events[0] == {"type": "id", "id": "c-1"}
    assert events[-1] == {"type": "done", "html": DEFAULT_MARKUP, "id": "c-1"}


def test_run_passes_model_and_image_upstream() -> None:
    client = FakeCompletionClient()

    _pipeline(client, InMemoryConversionStorage()).run(
        conversion_id="c-1", owner="s-1", image=IMAGE, sink=RecordingSink()
    )

    assert client.calls[0]["model"] == "test/vision-model"
    assert client.calls[0]["image"] == IMAGE


def test_empty_fragments_are_not_relayed() -> None:
    sink = RecordingSink()
    client = FakeCompletionClient(["", "<p>hi</p>", ""])

    _pipeline(client, InMemoryConversionStorage()).run(
        conversion_id="c-1", owner="s-1", image=IMAGE, sink=sink
    )

    chunks = [event["content"] for event in sink.events() if event["type"] == "chunk"]
    assert chunks == ["<p>hi</p>"]


def test_upstream_failure_after_chunks_ends_with_single_error() -> None:
    storage = InMemoryConversionStorage()
    sink = RecordingSink()
    client = FakeCompletionClient(["<p>"], error=UpstreamError("status 502"))

    record = _pipeline(client, storage).run(
        conversion_id="c-1", owner="s-1", image=IMAGE, sink=sink
    )

    assert record is None
    assert [event["type"] for event in sink.events()] == ["id", "chunk", "error"]
    assert sink.events()[-1]["message"] == UPSTREAM_FAILURE_MESSAGE
    assert storage.get_conversion("c-1") is None


def test_unformattable_output_is_not_persisted() -> None:
    storage = InMemoryConversionStorage()
    sink = RecordingSink()

    record = _pipeline(FakeCompletionClient(["<div><span>x</div>"]), storage).run(
        conversion_id="c-1", owner="s-1", image=IMAGE, sink=sink
    )

    assert record is None
    assert sink.events()[-1] == {"type": "error", "message": FORMAT_FAILURE_MESSAGE}
    assert storage.get_conversion("c-1") is None


def test_duplicate_conversion_id_reports_persistence_failure() -> None:
    storage = InMemoryConversionStorage()
    storage.insert_conversion(conversion_id="c-1", owner="s-0", markup="<p>old</p>\n")
    sink = RecordingSink()

    record = _pipeline(FakeCompletionClient(), storage).run(
        conversion_id="c-1", owner="s-1", image=IMAGE, sink=sink
    )

    assert record is None
    assert sink.events()[-1] == {"type": "error", "message": PERSISTENCE_FAILURE_MESSAGE}
    assert storage.get_conversion("c-1").markup == "<p>old</p>\n"


def test_disconnect_stops_upstream_and_skips_persistence() -> None:
    storage = InMemoryConversionStorage()
    client = FakeCompletionClient(["<div>", "<p>a</p>", "<p>b</p>", "</div>"])

    class DisconnectingSink(RecordingSink):
        def emit(self, frame: str) -> None:
            if len(self.frames) == 2:
                raise ClientDisconnected("gone")
            super().emit(frame)

    sink = DisconnectingSink()
    record = _pipeline(client, storage).run(
        conversion_id="c-1", owner="s-1", image=IMAGE, sink=sink
    )

    assert record is None
    assert client.closed
    assert client.yielded == 2
    assert [event["type"] for event in sink.events()] == ["id", "chunk"]
    assert storage.get_conversion("c-1") is None


def test_disconnect_after_final_chunk_skips_persistence() -> None:
    storage = InMemoryConversionStorage()

    class LeavingSink(RecordingSink):
        def emit(self, frame: str) -> None:
            super().emit(frame)
            if "</div>" in frame:
                self.cancelled = True

    sink = LeavingSink()
    record = _pipeline(FakeCompletionClient(), storage).run(
        conversion_id="c-1", owner="s-1", image=IMAGE, sink=sink
    )

    assert record is None
    assert [event["type"] for event in sink.events()] == ["id", "chunk", "chunk", "chunk"]
    assert storage.get_conversion("c-1") is None


def test_consumer_closing_while_upstream_is_open_skips_persistence() -> None:
    storage = InMemoryConversionStorage()
    upstream_may_finish = threading.Event()

    class GatedClient(FakeCompletionClient):
        def _iterate(self) -> Iterator[str]:
            yield from super()._iterate()
            upstream_may_finish.wait(timeout=5.0)

    sink = QueueSink(emit_timeout_s=5.0)
    results: list[object] = []
    pipeline = _pipeline(GatedClient(["<div>", "</div>"]), storage)
    worker = start_worker(
        lambda: results.append(
            pipeline.run(conversion_id="c-1", owner="s-1", image=IMAGE, sink=sink)
        ),
        sink,
        name="test-convert",
    )

    frames = sink.frames()
    received = [next(frames), next(frames), next(frames)]
    frames.close()
    upstream_may_finish.set()
    worker.join(timeout=5.0)

    assert [frame.count('"type":"chunk"') for frame in received] == [0, 1, 1]
    assert sink.cancelled
    assert results == [None]
    assert storage.get_conversion("c-1") is None
