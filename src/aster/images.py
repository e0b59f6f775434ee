"""Image inputs: data-URI decoding, encoding and size estimation."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import logging
import re

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:([^;,]*);base64,(.*)$", re.DOTALL)
DEFAULT_MIME_TYPE = "image/png"


@dataclass(frozen=True, slots=True)
class ImageInput:
    """A single inline image: MIME type plus base64 payload."""

    mime_type: str
    data: str

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> ImageInput:
        """Create an ImageInput from raw image bytes."""
        return cls(mime_type=mime_type, data=base64.b64encode(raw).decode("ascii"))

    @property
    def estimated_size_bytes(self) -> int:
        """Decoded size estimated from the base64 length."""
        return len(self.data) * 3 // 4

    def raw_bytes(self) -> bytes:
        """Decode the base64 payload."""
        return base64.b64decode(self.data)

    def to_data_uri(self) -> str:
        """Return ``data:{mime};base64,{data}``."""
        return to_data_uri(self.mime_type, self.data)


def to_data_uri(mime_type: str, data: str | bytes) -> str:
    """Encode *data* (base64 text, or raw bytes) as a data URI."""
    if isinstance(data, bytes):
        data = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{data}"


def parse_data_uri(uri: str, *, image_id: str | None = None) -> ImageInput | None:
    """Decode a base64 data URI into an ImageInput.

    Malformed URIs (no ``;base64,`` marker, empty or undecodable payload)
    return ``None`` after logging a diagnostic; they are never raised.
    """
    label = f" for image {image_id}" if image_id else ""
    if not isinstance(uri, str):
        logger.warning("Invalid image data%s: expected str, got %s", label, type(uri).__name__)
        return None

    m = _DATA_URI_RE.match(uri.strip())
    if m is None:
        logger.warning("Invalid image data format%s", label)
        return None

    mime_type, payload = m.group(1) or DEFAULT_MIME_TYPE, m.group(2).strip()
    if not payload:
        logger.warning("Empty base64 data%s", label)
        return None

    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        logger.warning("Undecodable base64 data%s", label)
        return None

    return ImageInput(mime_type=mime_type, data=payload)


def extension_for(mime_type: str) -> str:
    """Return a file extension for an image MIME type."""
    subtype = mime_type.partition("/")[2].lower()
    if subtype in ("jpeg", "pjpeg"):
        return "jpg"
    if subtype == "svg+xml":
        return "svg"
    return subtype or "bin"
