"""One conversion from uploaded screenshot to persisted, formatted markup.

Stages run strictly in order on the calling thread:

    id event -> upstream fragments relayed as chunk events -> canonicalize
    -> insert artifact -> done event

Any failure after the id event becomes a single `error` event with a stable
message. The internal reason is only logged.
"""

from __future__ import annotations

import logging
import time

from fromscreen.conversion.events import ClientDisconnected, ConversionStream, EventSink
from fromscreen.conversion.formatter import FormatError, canonicalize
from fromscreen.conversion.images import ImagePayload
from fromscreen.conversion.relay import relay_fragments
from fromscreen.conversion.upstream import SYSTEM_PROMPT, CompletionClient, UpstreamError
from fromscreen.storage.base import ConversionStorage
from fromscreen.storage.models import ConversionRecord

logger = logging.getLogger(__name__)

UPSTREAM_FAILURE_MESSAGE = "Conversion failed"
FORMAT_FAILURE_MESSAGE = "Generated markup could not be formatted"
PERSISTENCE_FAILURE_MESSAGE = "Conversion could not be saved"


class ConversionPipeline:
    def __init__(
        self,
        *,
        client: CompletionClient,
        storage: ConversionStorage,
        model: str,
        prompt: str = SYSTEM_PROMPT,
        print_width: int = 120,
        indent_width: int = 2,
    ) -> None:
        self.client = client
        self.storage = storage
        self.model = model
        self.prompt = prompt
        self.print_width = print_width
        self.indent_width = indent_width

    def run(
        self,
        *,
        conversion_id: str,
        owner: str,
        image: ImagePayload,
        sink: EventSink,
    ) -> ConversionRecord | None:
        """Drive one conversion onto `sink`. Returns the stored record, or None on failure."""
        started_at = time.perf_counter()
        stream = ConversionStream(sink)
        logger.info(
            "convert_stream event=start conversion_id=%s owner=%s model=%s",
            conversion_id,
            owner,
            self.model,
        )
        stage = "open"
        try:
            stream.open(conversion_id)

            stage = "upstream"
            fragments = self.client.stream_completion(
                image=image,
                model=self.model,
                prompt=self.prompt,
            )
            raw_text = relay_fragments(fragments, stream)

            stage = "format"
            markup = canonicalize(
                raw_text,
                print_width=self.print_width,
                indent_width=self.indent_width,
            )

            stream.ensure_connected()
            stage = "persist"
            record = self.storage.insert_conversion(
                conversion_id=conversion_id,
                owner=owner,
                markup=markup,
            )

            stage = "done"
            stream.done(html=record.markup, conversion_id=conversion_id)
        except ClientDisconnected:
            logger.info(
                "convert_stream event=client_disconnected conversion_id=%s stage=%s chunks=%d",
                conversion_id,
                stage,
                stream.chunk_count,
            )
            return None
        except UpstreamError as exc:
            self._fail(stream, conversion_id, stage, exc, UPSTREAM_FAILURE_MESSAGE)
            return None
        except FormatError as exc:
            self._fail(stream, conversion_id, stage, exc, FORMAT_FAILURE_MESSAGE)
            return None
        except Exception as exc:  # noqa: BLE001
            message = (
                PERSISTENCE_FAILURE_MESSAGE if stage == "persist" else UPSTREAM_FAILURE_MESSAGE
            )
            self._fail(stream, conversion_id, stage, exc, message, unexpected=True)
            return None

        logger.info(
            "convert_stream event=completed conversion_id=%s duration_ms=%.1f chunks=%d "
            "markup_chars=%d",
            conversion_id,
            (time.perf_counter() - started_at) * 1000,
            stream.chunk_count,
            len(record.markup),
        )
        return record

    @staticmethod
    def _fail(
        stream: ConversionStream,
        conversion_id: str,
        stage: str,
        exc: Exception,
        message: str,
        *,
        unexpected: bool = False,
    ) -> None:
        logger.warning(
            "convert_stream event=failed conversion_id=%s stage=%s chunks=%d reason=%s",
            conversion_id,
            stage,
            stream.chunk_count,
            exc,
            exc_info=unexpected,
        )
        if stream.is_terminal or stage == "open":
            return
        try:
            stream.fail(message)
        except ClientDisconnected:
            logger.info(
                "convert_stream event=client_disconnected conversion_id=%s stage=error",
                conversion_id,
            )
