"""Relay-side encoding helpers: safe names, public ids and data URIs."""

from __future__ import annotations

import base64
import binascii
import re
import time

from photorelay.errors import PhotoRelayEncodingError

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9.-]")


def sanitize_filename(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9.-]`` with ``_``.

    >>> sanitize_filename("My Photo (1).jpg")
    'My_Photo__1_.jpg'
    """
    return _UNSAFE_NAME_CHARS.sub("_", name)


def build_public_id(
    sanitized_name: str,
    index: int | None = None,
    now_ns: int | None = None,
) -> str:
    """Build a Media Store public id: ``<stem>_<time_ns>``.

    The stem is everything before the first ``.`` of *sanitized_name*.
    In multi-file requests *index* is appended so that parts sharing a
    name and a clock tick stay distinct.
    """
    stem = sanitized_name.split(".", 1)[0] or "upload"
    stamp = time.time_ns() if now_ns is None else now_ns
    public_id = f"{stem}_{stamp}"
    if index is not None:
        public_id = f"{public_id}_{index}"
    return public_id


def to_data_uri(data: bytes, mime_type: str, file_name: str = "") -> str:
    """Encode *data* as ``data:<mime_type>;base64,<payload>``.

    Raises
    ------
    PhotoRelayEncodingError
        If *data* is not a bytes-like object or cannot be encoded.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise PhotoRelayEncodingError(
            message=f"Cannot encode {type(data).__name__} as a data URI",
            context={"file_name": file_name, "reason": "not_bytes"},
        )
    try:
        payload = base64.b64encode(bytes(data)).decode("ascii")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise PhotoRelayEncodingError(
            message=f"Failed to base64-encode {file_name!r}: {exc}",
            context={"file_name": file_name, "reason": "base64"},
            cause=exc,
        ) from exc
    return f"data:{mime_type};base64,{payload}"
