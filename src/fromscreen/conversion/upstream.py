"""Streaming chat-completion client for the vision model provider."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Iterator
from typing import Any, Protocol
from urllib import error, request

from fromscreen.conversion.images import ImagePayload

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert frontend developer. Recreate this UI screenshot as clean, production-ready code.

Rules:
- Tailwind CSS only. No inline styles, no custom CSS.
- Match colors, spacing, and layout closely. Use arbitrary values like bg-[#1a2b3c] when needed.
- Semantic HTML. Placeholder divs for images. Suggest Lucide icon names in comments.
- Make it responsive.
- Return ONLY the code. No markdown fences, no explanation.
- No JavaScript
- Output valid HTML with Tailwind classes."""

DONE_SENTINEL = "[DONE]"


class UpstreamError(RuntimeError):
    """The provider call failed; never retried by this module."""


class CompletionClient(Protocol):
    """Interface for streaming vision completions."""

    def stream_completion(
        self,
        *,
        image: ImagePayload,
        model: str,
        prompt: str = SYSTEM_PROMPT,
    ) -> Iterator[str]: ...


class OpenRouterCompletionClient:
    """OpenAI-compatible chat completions client reading the `stream=true` SSE body."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout_s: float = 60.0,
        max_duration_s: float = 300.0,
        site_url: str = "http://localhost:3000",
        site_title: str = "fromscreen.dev",
    ) -> None:
        if not api_key:
            raise RuntimeError("OPENROUTER_API_KEY is missing")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_duration_s = max_duration_s
        self.site_url = site_url
        self.site_title = site_title

    def stream_completion(
        self,
        *,
        image: ImagePayload,
        model: str,
        prompt: str = SYSTEM_PROMPT,
    ) -> Iterator[str]:
        """Yield content fragments as they arrive.

        Lazy and single-use: the HTTP request is only sent when iteration starts.
        `timeout_s` bounds each socket read, `max_duration_s` bounds the whole stream.
        """
        req = request.Request(
            url=f"{self.base_url}/chat/completions",
            data=json.dumps(build_request_body(image=image, model=model, prompt=prompt)).encode(
                "utf-8"
            ),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "Accept": "text/event-stream",
                "HTTP-Referer": self.site_url,
                "X-Title": self.site_title,
            },
        )
        deadline = time.monotonic() + self.max_duration_s
        logger.info("upstream event=open model=%s url=%s", model, req.full_url)
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                status = getattr(response, "status", 200)
                if status >= 300:
                    raise UpstreamError(f"provider responded with status {status}")
                yield from iter_fragments(self._lines_before_deadline(response, deadline))
        except error.HTTPError as exc:
            message = exc.read().decode("utf-8", errors="replace")
            raise UpstreamError(
                f"provider request failed with status {exc.code}: {message[:400]}"
            ) from exc
        except error.URLError as exc:
            raise UpstreamError(f"provider request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise UpstreamError(
                f"provider stream stalled for more than {self.timeout_s:.1f}s"
            ) from exc
        except OSError as exc:
            raise UpstreamError(f"provider connection failed: {exc}") from exc

    def _lines_before_deadline(
        self, lines: Iterable[bytes | str], deadline: float
    ) -> Iterator[bytes | str]:
        # Every raw line counts, including keepalive comments and empty deltas.
        for line in lines:
            if time.monotonic() > deadline:
                raise UpstreamError(
                    f"provider stream exceeded {self.max_duration_s:.0f}s deadline"
                )
            yield line


def build_request_body(*, image: ImagePayload, model: str, prompt: str) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image.to_data_url()}},
                ],
            }
        ],
        "stream": True,
    }


def iter_fragments(lines: Iterable[bytes | str]) -> Iterator[str]:
    """Decode provider SSE lines into content fragments.

    Stops at the `[DONE]` sentinel or when `lines` is exhausted. Lines that are
    not `data:` records are ignored and records that fail to decode are dropped,
    because provider framing may split a record across reads.
    """
    for raw_line in lines:
        line = raw_line.decode("utf-8", errors="replace") if isinstance(raw_line, bytes) else raw_line
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:") :].strip()
        if data == DONE_SENTINEL:
            return
        payload = decode_data_record(data)
        if payload is None:
            continue
        if "error" in payload:
            raise UpstreamError(f"provider reported error mid-stream: {payload['error']!r}"[:400])
        fragment = extract_delta_content(payload)
        if fragment:
            yield fragment


def decode_data_record(data: str) -> dict[str, Any] | None:
    """Best-effort JSON decode of one `data:` payload; None means drop it."""
    if not data:
        return None
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("upstream event=skip_frame reason=invalid_json size=%d", len(data))
        return None
    if not isinstance(parsed, dict):
        logger.debug("upstream event=skip_frame reason=not_object")
        return None
    return parsed


def extract_delta_content(payload: dict[str, Any]) -> str:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    if isinstance(content, str):
        return content
    return ""
