"""Media Store client: signed uploads to the Cloudinary REST API.

The relay talks to the Media Store through the :class:`MediaStore`
protocol so tests (and alternative stores) can swap the implementation.
:class:`CloudinaryMediaStore` performs the signed ``image/upload`` call
with httpx, retrying throttling and transient failures with exponential
backoff.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx

from photorelay.config import PhotoRelayConfig
from photorelay.errors import (
    PhotoRelayResponseContractError,
    PhotoRelayStoreError,
    PhotoRelayTransportError,
)
from photorelay.models import StoredAsset, StoreOptions
from photorelay.observability import get_logger, resolve_metrics
from photorelay.relay.retries import (
    RETRYABLE_STATUSES,
    compute_backoff,
    parse_retry_after,
    should_retry,
)
from photorelay.utils.redact import redact

log = get_logger("photorelay.store")

# Parameters that are sent but never signed.
_UNSIGNED_PARAMS = frozenset({"file", "api_key", "resource_type", "cloud_name"})


class MediaStore(Protocol):
    """What the relay needs from a Media Store."""

    async def upload(self, data_uri: str, options: StoreOptions) -> StoredAsset: ...

    async def close(self) -> None: ...


def transformation_string(options: StoreOptions) -> str:
    """Render the ingestion transformation, e.g. ``q_auto,f_auto/w_1920,h_1080,c_limit``."""
    return (
        f"q_{options.quality},f_{options.format}/"
        f"w_{options.max_width},h_{options.max_height},c_{options.crop_mode}"
    )


def sign_params(params: dict[str, Any], api_secret: str) -> str:
    """Return the hex SHA-1 signature of *params* for *api_secret*.

    Signed parameters are sorted by name, joined as ``k=v`` pairs with
    ``&`` and suffixed with the secret.  Empty values and the unsigned
    parameters (``file``, ``api_key``, ``resource_type``, ``cloud_name``)
    are left out.
    """
    to_sign = "&".join(
        f"{key}={value}"
        for key, value in sorted(params.items())
        if key not in _UNSIGNED_PARAMS and value not in (None, "")
    )
    return hashlib.sha1(f"{to_sign}{api_secret}".encode()).hexdigest()


def _dump_payload(
    url: str,
    params: dict[str, Any],
    status_code: int,
    response_body: Any,
    secret: str,
) -> None:
    safe_request = redact(params, secret)
    safe_response = redact(response_body, secret) if isinstance(response_body, dict) else response_body
    log.debug(
        "Media Store payload dump",
        extra={
            "extra_fields": {
                "op": "debug_dump",
                "url": url,
                "request": json.dumps(safe_request, default=str)[:5000],
                "status_code": status_code,
                "response": json.dumps(safe_response, default=str)[:5000],
            }
        },
    )


class CloudinaryMediaStore:
    """Async Cloudinary upload client.

    Parameters
    ----------
    config:
        Uses the ``store_*`` fields and ``debug_dump_payload``.
    transport:
        Optional httpx transport replacing the network (tests).
    sleep:
        Awaitable sleep used between retries; injectable for tests.
    """

    def __init__(
        self,
        config: PhotoRelayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._metrics = resolve_metrics(config.metrics)
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=config.store_base_url.rstrip("/"),
            timeout=httpx.Timeout(config.store_timeout_seconds),
            transport=transport,
        )

    def upload_path(self, options: StoreOptions) -> str:
        """Upload endpoint for the options' ``resource_type`` (``image``, ``video``, ``raw``)."""
        return f"/{self._config.store_cloud_name}/{options.resource_type}/upload"

    def build_params(
        self,
        data_uri: str,
        options: StoreOptions,
        timestamp: int | None = None,
    ) -> dict[str, Any]:
        """Build the signed form fields for one upload."""
        params: dict[str, Any] = {
            "folder": options.folder,
            "public_id": options.public_id,
            "transformation": transformation_string(options),
            "invalidate": "true" if options.invalidate_cache else "false",
            "overwrite": "true" if options.allow_overwrite else "false",
            "timestamp": str(int(time.time()) if timestamp is None else timestamp),
        }
        params["signature"] = sign_params(params, self._config.store_api_secret)
        params["api_key"] = self._config.store_api_key
        params["file"] = data_uri
        return params

    async def upload(self, data_uri: str, options: StoreOptions) -> StoredAsset:
        """Upload one data URI and return the stored asset.

        Raises
        ------
        PhotoRelayStoreError
            On a non-retryable error status or once retries are exhausted
            on a retryable one.
        PhotoRelayTransportError
            When the network keeps failing after all retries.
        PhotoRelayResponseContractError
            When a success status arrives without ``secure_url``.
        """
        params = self.build_params(data_uri, options)
        path = self.upload_path(options)
        max_attempts = self._config.store_retry_max_attempts
        last_exception: Exception | None = None
        last_status: int | None = None
        attempts = 0

        for attempt in range(max_attempts):
            attempts = attempt + 1
            t0 = time.monotonic()
            try:
                response = await self._client.post(path, data=params)
            except (httpx.TransportError, httpx.DecodingError) as exc:
                last_exception = exc
                last_status = None
                log.warning(
                    "Media Store request failed",
                    extra={
                        "extra_fields": {
                            "op": "store_upload",
                            "public_id": options.public_id,
                            "attempt": attempt + 1,
                            "error": str(exc),
                        }
                    },
                )
                if not should_retry(None, exc, attempt, max_attempts):
                    break
                await self._retry_pause(attempt, None, "network")
                continue
            except httpx.HTTPError as exc:
                raise PhotoRelayTransportError(
                    message=f"Media Store request failed: {exc}",
                    context={"url": str(self._client.base_url) + path, "attempt": attempt + 1},
                    cause=exc,
                ) from exc

            elapsed_ms = (time.monotonic() - t0) * 1000
            last_status = response.status_code
            last_exception = None
            tags = {"status": str(response.status_code)}
            self._metrics.increment("photorelay.store_requests_total", tags=tags)
            self._metrics.timing("photorelay.store_duration_ms", elapsed_ms, tags=tags)

            body = _json_or_none(response)
            if self._config.debug_dump_payload:
                _dump_payload(
                    str(response.url),
                    params,
                    response.status_code,
                    body if body is not None else response.text[:1000],
                    self._config.store_api_secret,
                )

            if 200 <= response.status_code < 300:
                return _stored_asset(body, options)

            if response.status_code not in RETRYABLE_STATUSES:
                raise PhotoRelayStoreError(
                    message=_store_message(response.status_code, body, response.text),
                    context={
                        "status_code": response.status_code,
                        "public_id": options.public_id,
                        "attempts": attempt + 1,
                    },
                )
            if not should_retry(response.status_code, None, attempt, max_attempts):
                break

            reason = "rate_limited" if response.status_code == 429 else "server_error"
            await self._retry_pause(attempt, parse_retry_after(response), reason)

        ctx: dict[str, Any] = {
            "attempts": attempts,
            "status_code": last_status,
            "public_id": options.public_id,
        }
        if last_exception is not None:
            raise PhotoRelayTransportError(
                message=(
                    f"Media Store request failed after {attempts} attempts: {last_exception}"
                ),
                context={"url": str(self._client.base_url) + path, "attempt": attempts},
                cause=last_exception,
            )
        raise PhotoRelayStoreError(
            message=f"Media Store failed after {attempts} attempts (last status: {last_status})",
            context=ctx,
        )

    async def _retry_pause(self, attempt: int, retry_after: float | None, reason: str) -> None:
        delay = compute_backoff(
            attempt,
            base=self._config.store_retry_base_delay,
            maximum=self._config.store_retry_max_delay,
            jitter=self._config.store_retry_jitter,
            retry_after=retry_after,
        )
        self._metrics.increment("photorelay.store_retries_total", tags={"reason": reason})
        await self._sleep(delay)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> CloudinaryMediaStore:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _store_message(status: int, body: Any, text: str) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return f"Media Store returned {status}: {error['message']}"
    return f"Media Store returned {status}: {text[:200]}"


def _stored_asset(body: Any, options: StoreOptions) -> StoredAsset:
    if not isinstance(body, dict) or not body.get("secure_url"):
        raise PhotoRelayResponseContractError(
            message="Media Store response has no secure_url",
            context={"missing_field": "secure_url", "public_id": options.public_id},
        )
    return StoredAsset(
        secure_url=body["secure_url"],
        public_id=str(body.get("public_id", options.public_id)),
        bytes=body.get("bytes"),
        width=body.get("width"),
        height=body.get("height"),
        format=body.get("format"),
    )
