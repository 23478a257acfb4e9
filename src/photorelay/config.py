"""Configuration for photorelay.

:class:`PhotoRelayConfig` is a dataclass that captures every tuneable knob
of the upload pipeline: the client-side session (batching, normalization,
transfer), the relay endpoint, and the Media Store connection.  The same
instance can be shared by both sides; each side only reads its own knobs.

Module-level constants hold the defaults that other modules reference
directly:

* :data:`MAX_FILE_SIZE_BYTES` -- 50 MiB acceptance ceiling.
* :data:`DEFAULT_BATCH_SIZE` -- files per batch.
* :data:`DEFAULT_UPLOAD_FOLDER` -- Media Store destination folder.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from photorelay.models import ScheduleMode, TransferGranularity

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

MAX_FILE_SIZE_BYTES: int = 50 * 1024 * 1024
"""Largest accepted file, inclusive (52,428,800 bytes)."""

DEFAULT_BATCH_SIZE: int = 5

DEFAULT_UPLOAD_FOLDER: str = "wedding-photos"

_SECRET_FIELDS = frozenset({"store_api_secret"})


# ---------------------------------------------------------------------------
# Configuration dataclass
# ---------------------------------------------------------------------------

@dataclass
class PhotoRelayConfig:
    """Complete configuration for the photorelay pipeline.

    Every parameter has a default so a client-only deployment needs no
    arguments at all.  A relay deployment additionally needs the Media
    Store credentials.

    Parameters
    ----------
    store_cloud_name:
        Media Store account (cloud) name.  Part of the upload URL.
    store_api_key:
        Media Store API key.  Sent with every signed upload.
    store_api_secret:
        Media Store API secret.  Used only to sign requests.  **Never
        logged.**
    store_base_url:
        Media Store API root.  Override for proxies or tests.
    upload_folder:
        Destination folder inside the Media Store.
    store_timeout_seconds:
        HTTP timeout for a single Media Store call.
    store_retry_max_attempts:
        Total attempts per Media Store call for retryable failures
        (429, 5xx, network errors).
    store_retry_base_delay:
        Base delay (seconds) for exponential backoff.
    store_retry_max_delay:
        Upper cap (seconds) on computed backoff delay.
    store_retry_jitter:
        Scale each backoff delay randomly to 50-100 % of its value.
    transform_max_width / transform_max_height:
        Long-edge limit the Media Store applies on ingestion.
    multi_file:
        Relay mode.

        * ``False`` -- one ``file`` part per request.
        * ``True`` -- every ``file`` part of a request is uploaded, and the
          request succeeds or fails as a whole.
    max_files_per_request:
        Multi-file mode only: upper bound on ``file`` parts per request.
    max_file_size_bytes:
        Acceptance ceiling applied by the validator on both sides.
    relay_url:
        Base URL of the relay endpoint used by the transfer client.
    relay_upload_path:
        Path of the upload route, relative to ``relay_url``.
    transfer_timeout_seconds:
        HTTP timeout for one transfer-client call.
    batch_size:
        Maximum files per batch (and per multi-file call).
    inter_batch_delay:
        Pause (seconds) between consecutive batches.
    schedule_mode:
        ``BATCHED`` (parallel within a batch) or ``SEQUENTIAL`` (one file
        fully processed before the next, with a continue/abort decision
        after each failure).
    transfer_granularity:
        ``PER_FILE`` (one relay call per file) or ``PER_CHUNK`` (one
        multi-file relay call per batch).
    normalize_images:
        Run the best-effort resize/recompress step before transfer.
    normalize_max_dimension:
        Longest edge (pixels) after normalization.
    normalize_quality:
        JPEG quality in ``(0, 1]``.
    normalize_timeout_seconds:
        Hard ceiling on one normalization; past it the original bytes are
        used.
    metrics:
        Optional :class:`~photorelay.observability.MetricsHook`.
    debug_dump_payload:
        Write a redacted dump of every Media Store request/response to
        *stderr*.
    """

    # ── Media Store ────────────────────────────────────────────────────
    store_cloud_name: str = ""

    store_api_key: str = ""

    store_api_secret: str = ""

    store_base_url: str = "https://api.cloudinary.com/v1_1"

    upload_folder: str = DEFAULT_UPLOAD_FOLDER

    store_timeout_seconds: float = 30.0

    store_retry_max_attempts: int = 3

    store_retry_base_delay: float = 1.0

    store_retry_max_delay: float = 30.0

    store_retry_jitter: bool = True

    transform_max_width: int = 1920

    transform_max_height: int = 1080

    # ── Relay endpoint ─────────────────────────────────────────────────
    multi_file: bool = False

    max_files_per_request: int = 20

    max_file_size_bytes: int = MAX_FILE_SIZE_BYTES

    # ── Transfer client ────────────────────────────────────────────────
    relay_url: str = "http://localhost:8000"

    relay_upload_path: str = "/upload"

    transfer_timeout_seconds: float = 60.0

    # ── Scheduling ─────────────────────────────────────────────────────
    batch_size: int = DEFAULT_BATCH_SIZE

    inter_batch_delay: float = 1.0

    schedule_mode: ScheduleMode = ScheduleMode.BATCHED

    transfer_granularity: TransferGranularity = TransferGranularity.PER_FILE

    # ── Normalization ──────────────────────────────────────────────────
    normalize_images: bool = True

    normalize_max_dimension: int = 1920

    normalize_quality: float = 0.8

    normalize_timeout_seconds: float = 30.0

    # ── Observability ──────────────────────────────────────────────────
    metrics: Any | None = None

    # ── Debug ──────────────────────────────────────────────────────────
    debug_dump_payload: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self.schedule_mode = ScheduleMode(self.schedule_mode)
        self.transfer_granularity = TransferGranularity(self.transfer_granularity)

        parsed = urlparse(self.store_base_url)
        if parsed.scheme == "http" and parsed.hostname not in (
            "localhost",
            "127.0.0.1",
            "::1",
        ):
            raise ValueError(
                f"store_base_url uses insecure HTTP for non-local host '{parsed.hostname}'. "
                "Use HTTPS to protect the signed upload, or target localhost for testing."
            )

        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.inter_batch_delay < 0:
            raise ValueError(f"inter_batch_delay must be >= 0, got {self.inter_batch_delay}")
        if self.max_file_size_bytes <= 0:
            raise ValueError(f"max_file_size_bytes must be > 0, got {self.max_file_size_bytes}")
        if self.max_files_per_request < 1:
            raise ValueError(
                f"max_files_per_request must be >= 1, got {self.max_files_per_request}"
            )
        if self.transfer_timeout_seconds <= 0:
            raise ValueError(
                f"transfer_timeout_seconds must be > 0, got {self.transfer_timeout_seconds}"
            )
        if self.store_timeout_seconds <= 0:
            raise ValueError(f"store_timeout_seconds must be > 0, got {self.store_timeout_seconds}")
        if self.store_retry_max_attempts < 1:
            raise ValueError(
                f"store_retry_max_attempts must be >= 1, got {self.store_retry_max_attempts}"
            )
        if self.store_retry_base_delay < 0:
            raise ValueError(f"store_retry_base_delay must be >= 0, got {self.store_retry_base_delay}")
        if self.store_retry_max_delay < 0:
            raise ValueError(f"store_retry_max_delay must be >= 0, got {self.store_retry_max_delay}")
        if self.normalize_max_dimension < 1:
            raise ValueError(
                f"normalize_max_dimension must be >= 1, got {self.normalize_max_dimension}"
            )
        if not 0 < self.normalize_quality <= 1:
            raise ValueError(f"normalize_quality must be in (0, 1], got {self.normalize_quality}")
        if self.normalize_timeout_seconds <= 0:
            raise ValueError(
                f"normalize_timeout_seconds must be > 0, got {self.normalize_timeout_seconds}"
            )

    @property
    def store_configured(self) -> bool:
        """``True`` when all Media Store credentials are present."""
        return bool(self.store_cloud_name and self.store_api_key and self.store_api_secret)

    @classmethod
    def from_env(
        cls,
        prefix: str = "PHOTORELAY_",
        environ: dict[str, str] | None = None,
        **overrides: Any,
    ) -> PhotoRelayConfig:
        """Build a config from environment variables.

        Every field maps to ``<prefix><FIELD_NAME_UPPER>`` (for example
        ``PHOTORELAY_BATCH_SIZE``).  A ``CLOUDINARY_URL`` of the form
        ``cloudinary://<key>:<secret>@<cloud>`` fills in the three store
        credentials unless they are set explicitly.  Keyword *overrides*
        win over the environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        store_url = env.get("CLOUDINARY_URL")
        if store_url:
            parsed = urlparse(store_url)
            values["store_api_key"] = parsed.username or ""
            values["store_api_secret"] = parsed.password or ""
            values["store_cloud_name"] = parsed.hostname or ""

        for f in dataclasses.fields(cls):
            if f.name == "metrics":
                continue
            raw = env.get(f"{prefix}{f.name.upper()}")
            if raw is None:
                continue
            values[f.name] = _coerce(f.name, raw, f.default)

        values.update(overrides)
        return cls(**values)

    def __repr__(self) -> str:
        """Mask the API secret to prevent accidental credential leakage."""
        parts: list[str] = []
        for f in dataclasses.fields(self):
            val = getattr(self, f.name)
            if f.name in _SECRET_FIELDS:
                masked = f"...{val[-4:]}" if len(val) >= 8 else "****"
                parts.append(f"{f.name}='{masked}'")
            else:
                parts.append(f"{f.name}={val!r}")
        return f"PhotoRelayConfig({', '.join(parts)})"


def _coerce(name: str, raw: str, default: Any) -> Any:
    """Convert an environment string to the type of the field's default."""
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{name} expects a boolean, got {raw!r}")
    if isinstance(default, int) and not isinstance(default, bool):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw
