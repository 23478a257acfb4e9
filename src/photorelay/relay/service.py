"""Relay service: accept uploaded files and forward them to the Media Store.

:class:`RelayService` holds the endpoint logic independent of any web
framework.  It takes the already-parsed ``file`` parts and returns a
:class:`~photorelay.models.RelayResponse`; :mod:`photorelay.relay.app`
only adapts HTTP to and from it.

Response bodies
---------------

Single-file success (200)::

    {"success": true, "url": "...",
     "metadata": {"fileName", "fileSizeMB", "processingTimeMs", "cloudinaryTimeMs"}}

Multi-file success (200)::

    {"success": true, "urls": [...],
     "metadata": {"totalFiles", "totalSizeMB", "processingTimeMs"},
     "rejected": [{"index", "fileName", "code", "error", "details"}]}

Errors (400 / 500)::

    {"error": "...", "details": "...", "code": "...", "processingTimeMs": N}
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import Any

from photorelay.config import PhotoRelayConfig
from photorelay.errors import ErrorCode, PhotoRelayError
from photorelay.models import IncomingFile, RelayResponse, StoredAsset, StoreOptions
from photorelay.observability import get_logger, resolve_metrics
from photorelay.pipeline.validate import validate
from photorelay.relay.encoding import build_public_id, sanitize_filename, to_data_uri
from photorelay.relay.media_store import MediaStore

log = get_logger("photorelay.relay")

_MIB = 1024 * 1024


def _elapsed_ms(t0: float) -> int:
    return round((time.monotonic() - t0) * 1000)


def _size_mb(size: int) -> float:
    return round(size / _MIB, 2)


def _error_body(error: str, details: str, code: str, t0: float) -> dict[str, Any]:
    return {
        "error": error,
        "details": details,
        "code": code,
        "processingTimeMs": _elapsed_ms(t0),
    }


class RelayService:
    """Validate, encode and forward uploads to a :class:`MediaStore`.

    Parameters
    ----------
    config:
        Uses ``multi_file``, ``max_files_per_request``,
        ``max_file_size_bytes``, ``upload_folder`` and the
        ``transform_*`` bounds.
    store:
        The Media Store to forward to.
    """

    def __init__(self, config: PhotoRelayConfig, store: MediaStore) -> None:
        self._config = config
        self._store = store
        self._metrics = resolve_metrics(config.metrics)

    @property
    def store(self) -> MediaStore:
        return self._store

    async def handle(self, files: Sequence[IncomingFile]) -> RelayResponse:
        """Process the ``file`` parts of one upload request.

        Never raises: unexpected exceptions become a structured 500.
        """
        t0 = time.monotonic()
        mode = "multi" if self._config.multi_file else "single"
        try:
            if self._config.multi_file:
                response = await self._handle_multi(files, t0)
            else:
                response = await self._handle_single(files, t0)
        except PhotoRelayError as exc:
            response = self._failure(exc, t0)
        except Exception as exc:
            log.exception(
                "Unexpected relay failure",
                extra={"extra_fields": {"op": "relay", "mode": mode}},
            )
            response = RelayResponse(
                500,
                _error_body("Upload failed", str(exc) or type(exc).__name__,
                            ErrorCode.RELAY_ERROR.value, t0),
            )

        self._metrics.increment(
            "photorelay.relay_requests_total",
            tags={"mode": mode, "status": str(response.status_code)},
        )
        self._metrics.timing(
            "photorelay.relay_duration_ms",
            (time.monotonic() - t0) * 1000,
            tags={"side": "relay", "status": str(response.status_code)},
        )
        return response

    # -- single-file -------------------------------------------------------

    async def _handle_single(self, files: Sequence[IncomingFile], t0: float) -> RelayResponse:
        if not files:
            return RelayResponse(
                400,
                _error_body("No file uploaded", "Request has no file field",
                            ErrorCode.NO_FILE_PROVIDED.value, t0),
            )

        incoming = files[0]
        verdict = validate(incoming.to_candidate(), self._config.max_file_size_bytes)
        if not verdict.accepted:
            code = verdict.reason or ErrorCode.VALIDATION_ERROR
            self._log_rejection(incoming, code, verdict.message)
            return RelayResponse(400, _error_body("Invalid file", verdict.message, code.value, t0))

        stored, store_ms = await self._forward(incoming)
        return RelayResponse(
            200,
            {
                "success": True,
                "url": stored.secure_url,
                "metadata": {
                    "fileName": incoming.filename,
                    "fileSizeMB": _size_mb(incoming.size),
                    "processingTimeMs": _elapsed_ms(t0),
                    "cloudinaryTimeMs": store_ms,
                },
            },
        )

    # -- multi-file --------------------------------------------------------

    async def _handle_multi(self, files: Sequence[IncomingFile], t0: float) -> RelayResponse:
        if not files:
            return RelayResponse(
                400,
                _error_body("No files uploaded", "Request has no file field",
                            ErrorCode.NO_FILE_PROVIDED.value, t0),
            )
        limit = self._config.max_files_per_request
        if len(files) > limit:
            return RelayResponse(
                400,
                _error_body(
                    "Too many files",
                    f"{len(files)} files sent; at most {limit} are accepted per request",
                    ErrorCode.VALIDATION_ERROR.value,
                    t0,
                ),
            )

        accepted: list[tuple[int, IncomingFile]] = []
        rejected: list[dict[str, Any]] = []
        for index, incoming in enumerate(files):
            verdict = validate(incoming.to_candidate(), self._config.max_file_size_bytes)
            if verdict.accepted:
                accepted.append((index, incoming))
                continue
            code = verdict.reason or ErrorCode.VALIDATION_ERROR
            self._log_rejection(incoming, code, verdict.message)
            rejected.append({
                "index": index,
                "fileName": incoming.filename,
                "code": code.value,
                "error": "Invalid file",
                "details": verdict.message,
            })

        if not accepted:
            body = _error_body(
                "Invalid file",
                "; ".join(r["details"] for r in rejected),
                rejected[0]["code"],
                t0,
            )
            body["rejected"] = rejected
            return RelayResponse(400, body)

        settled = await asyncio.gather(
            *(self._forward(incoming, index) for index, incoming in accepted),
            return_exceptions=True,
        )
        # All-or-nothing: the first failure fails the whole request.
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
        outcomes: list[tuple[StoredAsset, int]] = list(settled)
        return RelayResponse(
            200,
            {
                "success": True,
                "urls": [stored.secure_url for stored, _ in outcomes],
                "metadata": {
                    "totalFiles": len(accepted),
                    "totalSizeMB": _size_mb(sum(f.size for _, f in accepted)),
                    "processingTimeMs": _elapsed_ms(t0),
                },
                "rejected": rejected,
            },
        )

    # -- shared ------------------------------------------------------------

    async def _forward(
        self,
        incoming: IncomingFile,
        index: int | None = None,
    ) -> tuple[StoredAsset, int]:
        sanitized = sanitize_filename(incoming.filename)
        data_uri = to_data_uri(incoming.data, incoming.content_type, incoming.filename)
        options = StoreOptions(
            folder=self._config.upload_folder,
            public_id=build_public_id(sanitized, index),
            max_width=self._config.transform_max_width,
            max_height=self._config.transform_max_height,
        )

        t0 = time.monotonic()
        stored = await self._store.upload(data_uri, options)
        store_ms = _elapsed_ms(t0)

        self._metrics.increment("photorelay.upload_success_total", tags={"side": "relay"})
        log.info(
            "Stored upload",
            extra={
                "extra_fields": {
                    "op": "relay",
                    "file_name": incoming.filename,
                    "public_id": options.public_id,
                    "size_mb": _size_mb(incoming.size),
                    "store_ms": store_ms,
                }
            },
        )
        return stored, store_ms

    def _failure(self, exc: PhotoRelayError, t0: float) -> RelayResponse:
        code = ErrorCode.parse(exc.code) or ErrorCode.RELAY_ERROR
        self._metrics.increment(
            "photorelay.upload_failure_total",
            tags={"side": "relay", "code": code.value},
        )
        log.error(
            "Upload failed",
            extra={
                "extra_fields": {
                    "op": "relay",
                    "code": code.value,
                    "error": exc.message,
                    "context": exc.context,
                }
            },
        )
        return RelayResponse(500, _error_body("Upload failed", exc.message, code.value, t0))

    def _log_rejection(self, incoming: IncomingFile, code: ErrorCode, message: str) -> None:
        self._metrics.increment(
            "photorelay.upload_failure_total",
            tags={"side": "relay", "code": code.value},
        )
        log.warning(
            "Rejected upload",
            extra={
                "extra_fields": {
                    "op": "relay",
                    "file_name": incoming.filename,
                    "mime_type": incoming.content_type,
                    "size_bytes": incoming.size,
                    "code": code.value,
                    "error": message,
                }
            },
        )
