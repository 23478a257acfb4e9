"""Retry decisions and backoff for Media Store calls.

* :func:`should_retry` -- is a failed store request worth another attempt?
* :func:`compute_backoff` -- how long to wait before that attempt.
* :func:`parse_retry_after` -- read a ``Retry-After`` header in seconds.
"""

from __future__ import annotations

import random

import httpx

# Throttling and transient gateway failures.
RETRYABLE_STATUSES: frozenset[int] = frozenset({429, 500, 502, 503, 504})

# Includes a dropped connection (RemoteProtocolError) and a truncated or
# corrupt body (DecodingError).
_RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    httpx.DecodingError,
)


def should_retry(
    status_code: int | None,
    exception: Exception | None,
    attempt: int,
    max_attempts: int,
) -> bool:
    """Decide whether a store request should be retried.

    Parameters
    ----------
    status_code:
        HTTP status of the response, or ``None`` when no response arrived.
    exception:
        The transport exception raised, or ``None`` when a response arrived.
    attempt:
        Current attempt number (0-indexed).
    max_attempts:
        Total attempts allowed, including the first.
    """
    if attempt + 1 >= max_attempts:
        return False
    if exception is not None:
        return isinstance(exception, _RETRYABLE_EXCEPTIONS)
    if status_code is not None:
        return status_code in RETRYABLE_STATUSES
    return False


def compute_backoff(
    attempt: int,
    base: float = 1.0,
    maximum: float = 30.0,
    jitter: bool = True,
    retry_after: float | None = None,
) -> float:
    """Delay in seconds before retry number *attempt* + 1.

    ``Retry-After`` wins when present (still capped at *maximum*);
    otherwise ``base * 2**attempt`` capped at *maximum*.  With *jitter*
    the delay is scaled to between 50 % and 100 % of its value.
    """
    if retry_after is not None:
        delay = min(retry_after, maximum)
    else:
        delay = min(base * (2 ** attempt), maximum)

    if jitter:
        delay *= 0.5 + random.random() * 0.5

    return delay


def parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
