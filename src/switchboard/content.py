"""Media parts and data-URL helpers shared by the adapters."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from enum import Enum
import mimetypes
from urllib.parse import urlparse

from switchboard.errors import ValidationError


class ImageDetail(str, Enum):
    """Image processing detail level."""

    LOW = "low"
    HIGH = "high"
    AUTO = "auto"


@dataclass(frozen=True)
class ImagePart:
    """An image input, given as a URL, a ``data:`` URI, or raw bytes."""

    url: str = ""
    mime_type: str = ""
    detail: ImageDetail = ImageDetail.AUTO
    data: bytes = b""


@dataclass(frozen=True)
class AudioPart:
    """An audio input, given as a URL, a ``data:`` URI, or raw bytes."""

    url: str = ""
    mime_type: str = ""
    data: bytes = b""


@dataclass(frozen=True)
class FilePart:
    """A reference to a file already stored with a provider (e.g. ``gs://``)."""

    uri: str
    mime_type: str = ""


def is_data_url(url: str) -> bool:
    """Return True when *url* is a ``data:`` URI."""
    return url.startswith("data:")


def decode_data_url(data_url: str) -> tuple[str, bytes]:
    """Decode ``data:[<mediatype>][;base64],<data>`` into (mime type, bytes)."""
    rest = data_url.removeprefix("data:")
    meta, sep, encoded = rest.partition(",")
    if not sep:
        raise ValidationError(
            "Invalid data URL: missing ',' separator",
            hint="Use the form data:image/png;base64,<payload>.",
        )

    is_base64 = meta.endswith(";base64")
    if is_base64:
        meta = meta.removesuffix(";base64")
    mime_type = meta or "application/octet-stream"

    if not is_base64:
        return mime_type, encoded.encode("utf-8")
    try:
        return mime_type, base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Invalid data URL: malformed base64 payload") from e


def detect_mime_from_url(url: str) -> str:
    """Guess a MIME type from the URL's file extension."""
    path = urlparse(url).path or url
    return mimetypes.guess_type(path)[0] or "application/octet-stream"
