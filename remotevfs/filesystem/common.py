"""Helpers for storing binary payloads in documents."""

import base64
import binascii
import mimetypes
from typing import Any, Dict, Union

DEFAULT_MIME_TYPE = "application/octet-stream"


def guess_mime_type(path: str) -> str:
    """Guess the content type of a file from its name."""
    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or DEFAULT_MIME_TYPE


def encode_bytes(data: Union[bytes, bytearray, memoryview, str]) -> str:
    """
    Encode a binary payload for transport.

    Strings are assumed to be encoded already and are passed through as is.
    """
    if isinstance(data, str):
        return data

    return base64.b64encode(bytes(data)).decode("ascii")


def decode_bytes(data: str) -> bytes:
    """Decode a binary payload that was encoded for transport."""
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid binary payload: {e}")


def with_mime_hint(content: Any, path: str) -> Dict[str, Any]:
    """
    Return document content that describes its binary payload.

    The content type is guessed from the path unless the content already has one.
    Content that is not a map is kept under the "value" key.
    """
    if content is None:
        hinted: Dict[str, Any] = {}
    elif isinstance(content, dict):
        hinted = dict(content)
    else:
        hinted = {"value": content}

    if not hinted.get("mime"):
        hinted["mime"] = guess_mime_type(path)

    return hinted
