"""Async HTTP client for the relay endpoint.

Each call performs the full request lifecycle:

1. Build a ``multipart/form-data`` body with one ``file`` part per asset.
2. ``POST`` it to the relay with a bounded timeout.
3. On ``2xx`` -- check the response contract (``success`` and ``url`` /
   ``urls``) and return the issued URL(s).
4. On non-``2xx`` -- read the structured error body and raise the typed
   error matching its ``code``.
5. On connection refused / DNS / timeout -- raise
   :class:`PhotoRelayTransportError`.

:meth:`TransferClient.upload` and :meth:`TransferClient.upload_batch` raise;
:meth:`TransferClient.send` and :meth:`TransferClient.send_batch` never do
for expected failures -- they fold every error into failed
:class:`UploadResult` values so one bad file cannot crash a batch.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from typing import Any

import httpx

from photorelay.config import PhotoRelayConfig
from photorelay.errors import (
    ErrorCode,
    PhotoRelayEncodingError,
    PhotoRelayError,
    PhotoRelayRelayError,
    PhotoRelayResponseContractError,
    PhotoRelayStoreError,
    PhotoRelayTransportError,
    validation_error_for,
)
from photorelay.models import NormalizedAsset, UploadResult
from photorelay.observability import get_logger, resolve_metrics

log = get_logger("photorelay.transfer")

_VALIDATION_CODES = frozenset({
    ErrorCode.VALIDATION_ERROR,
    ErrorCode.INVALID_TYPE,
    ErrorCode.TOO_LARGE,
    ErrorCode.EMPTY_FILE,
    ErrorCode.NO_FILE_PROVIDED,
})

_TYPED_ERRORS: dict[ErrorCode, type[PhotoRelayError]] = {
    ErrorCode.ENCODING_ERROR: PhotoRelayEncodingError,
    ErrorCode.TRANSPORT_ERROR: PhotoRelayTransportError,
    ErrorCode.STORE_ERROR: PhotoRelayStoreError,
    ErrorCode.RESPONSE_CONTRACT_ERROR: PhotoRelayResponseContractError,
    ErrorCode.RELAY_ERROR: PhotoRelayRelayError,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _error_from_body(status: int, body: Any, text: str) -> PhotoRelayError:
    """Map a non-success relay response to the matching typed error."""
    if not isinstance(body, dict):
        return PhotoRelayRelayError(
            message=f"Relay returned {status} with a non-JSON body: {text[:200]}",
            context={"status_code": status},
        )

    summary = body.get("error") or f"HTTP {status}"
    details = body.get("details") or ""
    message = f"{summary}: {details}" if details else str(summary)
    context = {"status_code": status, "body": body}
    code = ErrorCode.parse(body.get("code"))

    if code in _VALIDATION_CODES:
        return validation_error_for(code, message, context=context)
    if code in _TYPED_ERRORS:
        return _TYPED_ERRORS[code](message=message, context=context)
    if status >= 500:
        return PhotoRelayStoreError(message=message, context=context)
    return PhotoRelayRelayError(message=message, context=context)


def _require_success(body: Any, status: int) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise PhotoRelayResponseContractError(
            message=f"Relay returned {status} without a JSON object body",
            context={"status_code": status, "missing_field": "body"},
        )
    if body.get("success") is not True:
        raise PhotoRelayResponseContractError(
            message=f"Relay returned {status} without success=true",
            context={"status_code": status, "missing_field": "success"},
        )
    return body


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TransferClient:
    """Async client that sends normalized assets to the relay endpoint.

    Parameters
    ----------
    config:
        A :class:`PhotoRelayConfig`; ``relay_url``, ``relay_upload_path``
        and ``transfer_timeout_seconds`` are used.
    transport:
        Optional httpx transport (e.g. :class:`httpx.MockTransport` or
        :class:`httpx.ASGITransport`) replacing the network.
    """

    def __init__(
        self,
        config: PhotoRelayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._path = config.relay_upload_path
        self._metrics = resolve_metrics(config.metrics)
        self._client = httpx.AsyncClient(
            base_url=config.relay_url,
            timeout=httpx.Timeout(config.transfer_timeout_seconds),
            transport=transport,
        )

    # -- raising API -------------------------------------------------------

    async def upload(self, asset: NormalizedAsset) -> str:
        """Send one asset and return the URL the relay issued for it.

        Raises
        ------
        PhotoRelayTransportError
            On connection, DNS or timeout failures.
        PhotoRelayValidationError
            When the relay rejected the file (4xx with a validation code).
        PhotoRelayStoreError
            When the relay reported a Media Store failure (5xx).
        PhotoRelayResponseContractError
            When a success status arrives without a usable ``url``.
        """
        body = await self._post([asset])
        url = body.get("url")
        if not isinstance(url, str) or not url:
            raise PhotoRelayResponseContractError(
                message=f"Relay response for {asset.name!r} has no url",
                context={"missing_field": "url", "file_name": asset.name},
            )
        return url

    async def upload_batch(self, assets: Sequence[NormalizedAsset]) -> list[str | PhotoRelayError]:
        """Send several assets in one multi-file request.

        Returns one entry per asset, in order: the issued URL, or the
        validation error for a part the relay skipped.  A failure of the
        request as a whole is raised.
        """
        body = await self._post(assets)
        urls = body.get("urls")
        if not isinstance(urls, list) or not all(isinstance(u, str) and u for u in urls):
            raise PhotoRelayResponseContractError(
                message="Relay batch response has no urls list",
                context={"missing_field": "urls", "files": len(assets)},
            )

        rejected: dict[int, PhotoRelayError] = {}
        for entry in body.get("rejected") or []:
            if not isinstance(entry, dict) or entry.get("index") not in range(len(assets)):
                continue
            code = ErrorCode.parse(entry.get("code")) or ErrorCode.VALIDATION_ERROR
            rejected[entry["index"]] = validation_error_for(
                code,
                str(entry.get("details") or entry.get("error") or code.value),
                context={"file_name": entry.get("fileName")},
            )

        expected = len(assets) - len(rejected)
        if len(urls) != expected:
            raise PhotoRelayResponseContractError(
                message=f"Relay returned {len(urls)} urls for {expected} accepted files",
                context={"missing_field": "urls", "expected": expected, "received": len(urls)},
            )

        url_iter = iter(urls)
        return [rejected[i] if i in rejected else next(url_iter) for i in range(len(assets))]

    # -- non-raising API ---------------------------------------------------

    async def send(self, asset: NormalizedAsset, index: int = 0) -> UploadResult:
        """Send one asset and fold any failure into the returned result."""
        try:
            url = await self.upload(asset)
        except PhotoRelayError as exc:
            return self._failed(asset, index, exc)
        self._metrics.increment("photorelay.upload_success_total", tags={"side": "client"})
        return UploadResult.success(asset.name, index, url)

    async def send_batch(
        self,
        items: Sequence[tuple[int, NormalizedAsset]],
    ) -> list[UploadResult]:
        """Send ``(index, asset)`` pairs in one request.

        A failure of the whole request yields one failed result per asset,
        all carrying the same error.
        """
        assets = [asset for _, asset in items]
        try:
            outcomes = await self.upload_batch(assets)
        except PhotoRelayError as exc:
            return [self._failed(asset, index, exc) for index, asset in items]

        results: list[UploadResult] = []
        for (index, asset), outcome in zip(items, outcomes):
            if isinstance(outcome, PhotoRelayError):
                results.append(self._failed(asset, index, outcome))
            else:
                self._metrics.increment("photorelay.upload_success_total", tags={"side": "client"})
                results.append(UploadResult.success(asset.name, index, outcome))
        return results

    # -- internals ---------------------------------------------------------

    async def _post(self, assets: Sequence[NormalizedAsset]) -> dict[str, Any]:
        files = [
            ("file", (asset.name, asset.encoded_bytes, asset.mime_type))
            for asset in assets
        ]
        t0 = time.monotonic()
        try:
            response = await self._client.post(self._path, files=files)
        except httpx.TransportError as exc:
            log.warning(
                "Relay request failed",
                extra={
                    "extra_fields": {
                        "op": "transfer",
                        "path": self._path,
                        "files": len(assets),
                        "error": str(exc),
                    }
                },
            )
            raise PhotoRelayTransportError(
                message=f"Network error posting to {self._path}: {exc}",
                context={"url": str(self._client.base_url.join(self._path)), "attempt": 1},
                cause=exc,
            ) from exc
        except httpx.DecodingError as exc:
            raise PhotoRelayResponseContractError(
                message=f"Relay response from {self._path} could not be decoded: {exc}",
                context={"missing_field": "body", "path": self._path},
                cause=exc,
            ) from exc
        except httpx.HTTPError as exc:
            raise PhotoRelayRelayError(
                message=f"Relay request to {self._path} failed: {exc}",
                context={"path": self._path, "error_type": type(exc).__name__},
                cause=exc,
            ) from exc

        elapsed_ms = (time.monotonic() - t0) * 1000
        self._metrics.timing(
            "photorelay.relay_duration_ms",
            elapsed_ms,
            tags={"side": "client", "status": str(response.status_code)},
        )

        try:
            body: Any = response.json()
        except ValueError:
            body = None

        if not 200 <= response.status_code < 300:
            raise _error_from_body(response.status_code, body, response.text)
        return _require_success(body, response.status_code)

    def _failed(self, asset: NormalizedAsset, index: int, exc: PhotoRelayError) -> UploadResult:
        code = ErrorCode.parse(exc.code) or ErrorCode.RELAY_ERROR
        self._metrics.increment(
            "photorelay.upload_failure_total",
            tags={"side": "client", "code": code.value},
        )
        log.warning(
            "Upload failed",
            extra={
                "extra_fields": {
                    "op": "transfer",
                    "file_name": asset.name,
                    "index": index,
                    "code": code.value,
                    "error": exc.message,
                }
            },
        )
        return UploadResult.failure(asset.name, index, code, exc.message)

    # -- resource management -----------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> TransferClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
