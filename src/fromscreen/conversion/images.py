"""Image upload payload parsing."""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass

DATA_URL_PATTERN = r"^data:image/[a-zA-Z]+;base64,"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>image/[a-zA-Z]+);base64,(?P<data>.*)$", re.DOTALL)


class InvalidImagePayload(ValueError):
    """Upload is not a decodable base64 image data URL."""


@dataclass(frozen=True)
class ImagePayload:
    mime_type: str
    data: bytes

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def decode_image_data_url(value: str) -> ImagePayload:
    match = _DATA_URL_RE.match(value.strip())
    if match is None:
        raise InvalidImagePayload("image must be a base64 data URL with an image MIME type")
    raw = "".join(match.group("data").split())
    if not raw:
        raise InvalidImagePayload("image data is empty")
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImagePayload("image data is not valid base64") from exc
    return ImagePayload(mime_type=match.group("mime").lower(), data=data)
