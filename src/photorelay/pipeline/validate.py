"""Candidate validation: MIME type, size and emptiness checks.

Validates that a user-selected file is something the Media Store will
accept before any normalization or network work is spent on it.  The same
rules run on the client (to avoid pointless transfers) and on the relay
(where they are authoritative).

Rules, in order, first failure wins:

1. the MIME type starts with ``image/``        -> ``INVALID_TYPE``
2. the size is at most 52,428,800 bytes        -> ``TOO_LARGE``
3. the size is greater than zero               -> ``EMPTY_FILE``

:func:`validate` is total: malformed metadata yields a rejecting verdict,
never an exception.
"""

from __future__ import annotations

from collections.abc import Iterable

from photorelay.config import MAX_FILE_SIZE_BYTES
from photorelay.errors import ErrorCode
from photorelay.models import UploadCandidate, ValidationVerdict

_MIB = 1024 * 1024


def _format_mb(size: int) -> str:
    return f"{size / _MIB:.2f}MB"


def _coerce_length(value: object) -> int | None:
    """Return *value* as a non-bool ``int`` or ``None`` if it is not one."""
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def validate(
    candidate: UploadCandidate,
    max_size_bytes: int = MAX_FILE_SIZE_BYTES,
) -> ValidationVerdict:
    """Check *candidate* against the validation rules.

    Parameters
    ----------
    candidate:
        The file to check.
    max_size_bytes:
        Inclusive size ceiling.  Defaults to 50 MiB.

    Returns
    -------
    ValidationVerdict
        ``accepted=True`` with no reason, or ``accepted=False`` with the
        first failing rule as ``reason``.
    """
    mime_type = getattr(candidate, "mime_type", None)
    if not isinstance(mime_type, str) or not mime_type.startswith("image/"):
        return ValidationVerdict(
            candidate=candidate,
            accepted=False,
            reason=ErrorCode.INVALID_TYPE,
            message=f"Invalid file type: {mime_type}. Only images are allowed.",
        )

    size = _coerce_length(getattr(candidate, "byte_length", None))
    if size is not None and size > max_size_bytes:
        return ValidationVerdict(
            candidate=candidate,
            accepted=False,
            reason=ErrorCode.TOO_LARGE,
            message=(
                f"File too large: {_format_mb(size)}. "
                f"Maximum size is {_format_mb(max_size_bytes)}."
            ),
        )

    if size is None or size <= 0:
        return ValidationVerdict(
            candidate=candidate,
            accepted=False,
            reason=ErrorCode.EMPTY_FILE,
            message="Empty file provided",
        )

    return ValidationVerdict(candidate=candidate, accepted=True)


def partition(
    candidates: Iterable[UploadCandidate],
    max_size_bytes: int = MAX_FILE_SIZE_BYTES,
) -> tuple[list[ValidationVerdict], list[ValidationVerdict]]:
    """Validate every candidate and split the verdicts.

    Returns
    -------
    tuple[list[ValidationVerdict], list[ValidationVerdict]]
        ``(accepted, rejected)``, each preserving input order.
    """
    accepted: list[ValidationVerdict] = []
    rejected: list[ValidationVerdict] = []
    for candidate in candidates:
        verdict = validate(candidate, max_size_bytes)
        (accepted if verdict.accepted else rejected).append(verdict)
    return accepted, rejected
