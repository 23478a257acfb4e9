"""photorelay -- batched photo uploads through a relay to a hosted media store.

Public re-exports
-----------------

* **Client pipeline:** :class:`UploadSessionController`, :class:`TransferClient`
* **Configuration:** :class:`PhotoRelayConfig`
* **Errors:** Every :class:`PhotoRelayError` subclass and :class:`ErrorCode`
* **Models:** Pipeline value types, enums and results

The relay endpoint lives in :mod:`photorelay.relay` (``create_app``).

Usage::

    from photorelay import PhotoRelayConfig, UploadCandidate, UploadSessionController

    config = PhotoRelayConfig(relay_url="https://photos.example.com")
    async with UploadSessionController(config) as controller:
        session = await controller.run_session([
            UploadCandidate.from_bytes("beach.jpg", data, "image/jpeg"),
        ])
        print(session.summary(), session.urls)
"""

from __future__ import annotations

# ── Configuration ───────────────────────────────────────────────────────
from photorelay.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_UPLOAD_FOLDER,
    MAX_FILE_SIZE_BYTES,
    PhotoRelayConfig,
)

# ── Errors ──────────────────────────────────────────────────────────────
from photorelay.errors import (
    ErrorCode,
    PhotoRelayEmptyFileError,
    PhotoRelayEncodingError,
    PhotoRelayError,
    PhotoRelayInvalidTypeError,
    PhotoRelayNoFileError,
    PhotoRelayRelayError,
    PhotoRelayResponseContractError,
    PhotoRelayStoreError,
    PhotoRelayTooLargeError,
    PhotoRelayTransportError,
    PhotoRelayValidationError,
)

# ── Models ──────────────────────────────────────────────────────────────
from photorelay.models import (
    ContinueAfterFailureDecision,
    NormalizedAsset,
    PartialValidationDecision,
    ScheduleMode,
    SessionOutcome,
    SessionProgress,
    SessionState,
    TransferGranularity,
    UploadCandidate,
    UploadResult,
    ValidationVerdict,
)

# ── Client pipeline ─────────────────────────────────────────────────────
from photorelay.pipeline import (
    BatchScheduler,
    DecisionResolver,
    ProceedResolver,
    UploadSession,
    UploadSessionController,
    normalize,
    validate,
)
from photorelay.transfer import TransferClient

# ── Public surface ──────────────────────────────────────────────────────

__all__ = [
    # Client pipeline
    "UploadSessionController",
    "UploadSession",
    "DecisionResolver",
    "ProceedResolver",
    "BatchScheduler",
    "TransferClient",
    "validate",
    "normalize",
    # Configuration
    "PhotoRelayConfig",
    "MAX_FILE_SIZE_BYTES",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_UPLOAD_FOLDER",
    # Error base + code enum
    "PhotoRelayError",
    "ErrorCode",
    # Validation errors
    "PhotoRelayValidationError",
    "PhotoRelayInvalidTypeError",
    "PhotoRelayTooLargeError",
    "PhotoRelayEmptyFileError",
    "PhotoRelayNoFileError",
    # Encoding / transport / store errors
    "PhotoRelayEncodingError",
    "PhotoRelayTransportError",
    "PhotoRelayStoreError",
    "PhotoRelayResponseContractError",
    "PhotoRelayRelayError",
    # Models -- pipeline values
    "UploadCandidate",
    "ValidationVerdict",
    "NormalizedAsset",
    "UploadResult",
    "SessionProgress",
    # Models -- enums
    "ScheduleMode",
    "TransferGranularity",
    "SessionState",
    "SessionOutcome",
    "PartialValidationDecision",
    "ContinueAfterFailureDecision",
]
