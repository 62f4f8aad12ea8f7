from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from fastapi.testclient import TestClient

from fromscreen.api.main import create_app
from fromscreen.config.settings import Settings
from fromscreen.conversion.images import ImagePayload
from fromscreen.conversion.upstream import SYSTEM_PROMPT
from fromscreen.storage.memory import InMemoryConversionStorage

SAMPLE_IMAGE = "data:image/png;base64,AAAA"

DEFAULT_FRAGMENTS = ['<div class="p-4">', "<h1>Hello</h1>", "</div>"]

DEFAULT_MARKUP = '<div class="p-4">\n  <h1>Hello</h1>\n</div>\n'


class FakeCompletionClient:
    """Test double that replays fixed fragments, optionally failing afterwards."""

    def __init__(
        self,
        fragments: list[str] | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self.fragments = list(DEFAULT_FRAGMENTS if fragments is None else fragments)
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.yielded = 0
        self.closed = False

    def stream_completion(
        self,
        *,
        image: ImagePayload,
        model: str,
        prompt: str = SYSTEM_PROMPT,
    ) -> Iterator[str]:
        self.calls.append({"image": image, "model": model, "prompt": prompt})
        return self._iterate()

    def _iterate(self) -> Iterator[str]:
        try:
            for fragment in self.fragments:
                self.yielded += 1
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class FrozenClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSink:
    def __init__(self) -> None:
        self.frames: list[str] = []
        self.cancelled = False

    def emit(self, frame: str) -> None:
        self.frames.append(frame)

    def events(self) -> list[dict[str, Any]]:
        return [json.loads(frame[len("data: ") :]) for frame in self.frames]


def parse_events(body: str) -> list[dict[str, Any]]:
    return [
        json.loads(line[len("data: ") :]) for line in body.splitlines() if line.startswith("data: ")
    ]


@pytest.fixture
def storage() -> InMemoryConversionStorage:
    return InMemoryConversionStorage()


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(llm_model="test/vision-model", stream_emit_timeout_s=5.0)


@pytest.fixture
def client(
    storage: InMemoryConversionStorage,
    fake_client: FakeCompletionClient,
    clock: FrozenClock,
    settings: Settings,
) -> TestClient:
    app = create_app(
        storage=storage,
        completion_client=fake_client,
        settings_override=settings,
        clock=clock,
    )
    return TestClient(app)
