"""Forward upstream fragments to the caller while accumulating the full text."""

from __future__ import annotations

from collections.abc import Iterable

from fromscreen.conversion.events import ConversionStream


def relay_fragments(fragments: Iterable[str], stream: ConversionStream) -> str:
    """Emit one `chunk` event per non-empty fragment, in arrival order.

    Nothing is buffered beyond the fragment in flight: a blocked sink blocks
    the next upstream read. The fragment source is closed on exit, including
    when the sink raises. Returns the concatenated text.
    """
    parts: list[str] = []
    try:
        for fragment in fragments:
            if not fragment:
                continue
            parts.append(fragment)
            stream.chunk(fragment)
    finally:
        close = getattr(fragments, "close", None)
        if callable(close):
            close()
    return "".join(parts)
