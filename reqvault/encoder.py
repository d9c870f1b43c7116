"""reqvault encoder - classify raw response bytes for transport.

Maps (bytes, content-type) onto one of five body types:

    json   parsed JSON value, utf8
    html   decoded text, utf8
    text   decoded text, utf8
    image  base64 of the raw bytes
    binary base64 of the raw bytes

Decoding problems never raise out of this module; the body falls back to
raw text (bad JSON) or binary/base64 (bad UTF-8).
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any

from reqvault.errors import ClassificationError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

BODY_JSON = "json"
BODY_TEXT = "text"
BODY_HTML = "html"
BODY_IMAGE = "image"
BODY_BINARY = "binary"

ENCODING_UTF8 = "utf8"
ENCODING_BASE64 = "base64"


@dataclass
class EncodedBody:
    body_type: str
    body: Any
    encoding: str
    body_text: str | None = None


def _decode_utf8(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ClassificationError(f"Body is not valid UTF-8: {e}") from e


def _as_base64(raw: bytes, body_type: str) -> EncodedBody:
    return EncodedBody(
        body_type=body_type,
        body=base64.b64encode(raw).decode("ascii"),
        encoding=ENCODING_BASE64,
    )


def _has_filename(headers: dict[str, str] | None) -> bool:
    for name, value in (headers or {}).items():
        if name.lower() == "content-disposition" and "filename" in value.lower():
            return True
    return False


def _classify_text(raw: bytes, ctype: str) -> EncodedBody:
    text = _decode_utf8(raw)

    if "application/json" in ctype:
        try:
            parsed = json.loads(text)
        except ValueError:
            logger.debug("Response declared JSON but did not parse, returning text")
            return EncodedBody(BODY_TEXT, text, ENCODING_UTF8, body_text=text)
        return EncodedBody(BODY_JSON, parsed, ENCODING_UTF8, body_text=text)

    if "text/html" in ctype:
        return EncodedBody(BODY_HTML, text, ENCODING_UTF8, body_text=text)

    return EncodedBody(BODY_TEXT, text, ENCODING_UTF8, body_text=text)


def encode_body(
    raw: bytes,
    content_type: str | None,
    headers: dict[str, str] | None = None,
) -> EncodedBody:
    """Classify raw response bytes by declared content-type."""
    if not raw:
        return EncodedBody(BODY_TEXT, "", ENCODING_UTF8, body_text="")

    ctype = (content_type or "").lower()

    if "application/json" in ctype or "text/html" in ctype or ctype.startswith("text/"):
        try:
            return _classify_text(raw, ctype)
        except ClassificationError as e:
            logger.warning("%s; returning base64 binary body", e)
            return _as_base64(raw, BODY_BINARY)

    if ctype.startswith("image/"):
        return _as_base64(raw, BODY_IMAGE)

    encoded = _as_base64(raw, BODY_BINARY)
    if _has_filename(headers):
        encoded.encoding = ENCODING_BASE64
    return encoded
