"""Best-effort image normalization before transfer.

Large camera photos are shrunk and recompressed before they leave the
client, which cuts transfer time and keeps the Media Store's quota in
check.  This is an optimization layer only: any decode failure, encode
failure or timeout degrades to the original bytes and MIME type, and
nothing is ever raised to the caller.

The decode/resize/encode work is CPU-bound, so it runs in a worker
thread and the event loop only awaits it under a hard timeout.
"""

from __future__ import annotations

import asyncio
import io
import time

from PIL import Image, ImageOps, UnidentifiedImageError

from photorelay.models import NormalizedAsset, UploadCandidate
from photorelay.observability import MetricsHook, NoopMetricsHook, get_logger

log = get_logger("photorelay.normalize")

OUTPUT_MIME_TYPE = "image/jpeg"

# Pillow raises a wide set of errors on truncated or hostile input.
_DECODE_ERRORS: tuple[type[Exception], ...] = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    ValueError,
    SyntaxError,
)


def compute_scale(width: int, height: int, max_dimension: int) -> float:
    """Return the uniform scale factor that fits the image in the bounds.

    The factor is ``min(max_dimension / width, max_dimension / height)``
    clamped to at most ``1.0``: small images are never upscaled.
    """
    if width <= 0 or height <= 0:
        return 1.0
    return min(1.0, max_dimension / width, max_dimension / height)


def _resize_and_encode(
    data: bytes,
    max_dimension: int,
    quality: float,
) -> tuple[bytes, int, int]:
    """Decode, orient, shrink and re-encode *data* as baseline JPEG.

    Returns ``(jpeg_bytes, width, height)``.  Raises on any Pillow failure;
    the async wrapper turns that into a fallback.
    """
    with Image.open(io.BytesIO(data)) as src:
        img = ImageOps.exif_transpose(src)
        # JPEG has no alpha or palette.
        if img.mode != "RGB":
            img = img.convert("RGB")

        scale = compute_scale(img.width, img.height, max_dimension)
        if scale < 1.0:
            new_size = (max(1, int(img.width * scale)), max(1, int(img.height * scale)))
            img = img.resize(new_size, Image.Resampling.LANCZOS)

        out = io.BytesIO()
        img.save(
            out,
            "JPEG",
            quality=max(1, min(95, round(quality * 100))),
            optimize=True,
            progressive=False,
        )
        return out.getvalue(), img.width, img.height


async def normalize(
    candidate: UploadCandidate,
    max_dimension: int = 1920,
    quality: float = 0.8,
    timeout: float = 30.0,
    metrics: MetricsHook | None = None,
) -> NormalizedAsset:
    """Resize and recompress *candidate*, falling back to it unchanged.

    Parameters
    ----------
    candidate:
        An accepted candidate.
    max_dimension:
        Longest allowed edge in pixels.
    quality:
        JPEG quality in ``(0, 1]``.
    timeout:
        Seconds to wait for the worker thread before giving up.
    metrics:
        Optional metrics hook; a fallback increments
        ``photorelay.normalize_fallback_total``.

    Returns
    -------
    NormalizedAsset
        ``normalized=True`` with JPEG bytes on success, otherwise the
        candidate's own bytes and MIME type with ``normalized=False``.
    """
    metrics = metrics if metrics is not None else NoopMetricsHook()
    t0 = time.monotonic()
    try:
        encoded, width, height = await asyncio.wait_for(
            asyncio.to_thread(_resize_and_encode, candidate.raw_bytes, max_dimension, quality),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        return _fallback(candidate, "timeout", metrics, timeout_seconds=timeout)
    except _DECODE_ERRORS as exc:
        return _fallback(candidate, "decode_or_encode_error", metrics, error=str(exc))

    log.debug(
        "Image normalized",
        extra={
            "extra_fields": {
                "op": "normalize",
                "file_name": candidate.name,
                "original_bytes": len(candidate.raw_bytes),
                "normalized_bytes": len(encoded),
                "width": width,
                "height": height,
                "duration_ms": round((time.monotonic() - t0) * 1000),
            }
        },
    )
    return NormalizedAsset(
        name=candidate.name,
        mime_type=OUTPUT_MIME_TYPE,
        byte_length=len(encoded),
        encoded_bytes=encoded,
        normalized=True,
        width=width,
        height=height,
    )


def _fallback(
    candidate: UploadCandidate,
    reason: str,
    metrics: MetricsHook,
    **fields: object,
) -> NormalizedAsset:
    metrics.increment("photorelay.normalize_fallback_total", tags={"reason": reason})
    log.warning(
        "Normalization failed, using original bytes",
        extra={
            "extra_fields": {
                "op": "normalize",
                "file_name": candidate.name,
                "reason": reason,
                **fields,
            }
        },
    )
    return NormalizedAsset.passthrough(candidate)
