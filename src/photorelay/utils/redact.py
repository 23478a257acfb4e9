"""Payload redaction for safe logging.

Before a Media Store request or response is written to logs or a debug
dump the :func:`redact` function must be applied.  Rules:

* **Secrets** (keys containing ``secret``, ``signature``, ``api_key`` and
  similar) are replaced with a masked placeholder showing at most the last
  four characters.
* **Base64 data URIs** (``data:<mime>;base64,...``) are replaced with
  ``<data_uri:N_bytes>``; a file upload otherwise floods the log.
* **Raw bytes** are replaced with ``<binary:N_bytes>``.
* The full API secret, if supplied, never appears in the output.
"""

from __future__ import annotations

import base64
import binascii
import copy
import re
from typing import Any

# RFC 2397 data URIs with base64 encoding.
_DATA_URI_RE = re.compile(
    r"data:[a-zA-Z0-9_.+-]+/[a-zA-Z0-9_.+-]+;base64,[A-Za-z0-9+/=]+"
)

# If any of these appear in a key name (case-insensitive), the value is
# redacted.
_SENSITIVE_KEY_PATTERNS: frozenset[str] = frozenset({
    "secret",
    "signature",
    "password",
    "token",
    "authorization",
    "cookie",
    "api_key",
    "api-key",
})


def _mask(value: str, secret: str | None) -> str:
    suffix = value[-4:] if len(value) >= 8 else ""
    placeholder = f"<redacted:...{suffix}>" if suffix else "<redacted>"
    if secret and secret in placeholder:
        placeholder = "<redacted>"
    return placeholder


def _estimate_data_uri_bytes(uri: str) -> int:
    """Return the decoded byte length of a data URI."""
    b64_part = uri.split(";base64,", 1)[-1]
    try:
        return len(base64.b64decode(b64_part, validate=True))
    except (binascii.Error, ValueError):
        return len(b64_part) * 3 // 4


def _redact_value(value: Any, secret: str | None) -> Any:
    if isinstance(value, dict):
        return _redact_dict(value, secret)
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, secret) for item in value]
    if isinstance(value, str):
        if _DATA_URI_RE.search(value):
            value = _DATA_URI_RE.sub(
                lambda m: f"<data_uri:{_estimate_data_uri_bytes(m.group(0))}_bytes>",
                value,
            )
        if secret and secret in value:
            value = value.replace(secret, "<redacted>")
        return value
    if isinstance(value, (bytes, bytearray)):
        return f"<binary:{len(value)}_bytes>"
    return value


def _redact_dict(d: dict, secret: str | None) -> dict:
    result: dict = {}
    for key, value in d.items():
        key_lower = key.lower() if isinstance(key, str) else ""
        if any(pat in key_lower for pat in _SENSITIVE_KEY_PATTERNS):
            result[key] = _mask(value, secret) if isinstance(value, str) else "<redacted>"
        else:
            result[key] = _redact_value(value, secret)
    return result


def redact(payload: dict, secret: str | None = None) -> dict:
    """Return a deep copy of *payload* with sensitive data redacted.

    Parameters
    ----------
    payload:
        The dictionary to sanitize (a Media Store form payload, response
        body, or set of headers).
    secret:
        The Media Store API secret.  Any occurrence of this exact string
        anywhere in the payload is replaced.

    Returns
    -------
    dict
        A new dictionary; the original *payload* is never mutated.

    Examples
    --------
    >>> redact({"api_secret": "abc"})
    {'api_secret': '<redacted>'}
    """
    safe = copy.deepcopy(payload)
    return _redact_dict(safe, secret)
