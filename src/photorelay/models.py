"""Public data models for photorelay.

This module contains every value type, enum and result dataclass that
flows between the pipeline stages.  All types are plain dataclasses with
no behaviour beyond what is needed for structural equality, hashing
(where frozen) and small derived properties.

The one mutable aggregate, :class:`~photorelay.pipeline.session.UploadSession`,
lives next to the controller that owns it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from photorelay.errors import ErrorCode

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ScheduleMode(str, Enum):
    """How the session controller drives transfers."""

    BATCHED = "batched"
    """Parallel within a batch, batches strictly sequential."""

    SEQUENTIAL = "sequential"
    """One file normalized and transferred before the next begins."""


class TransferGranularity(str, Enum):
    """Unit of work for one call to the relay endpoint."""

    PER_FILE = "per_file"
    """One relay call per file.  Failures are isolated per file."""

    PER_CHUNK = "per_chunk"
    """One multi-file relay call per batch.  A failed call fails every
    file of that batch."""


class SessionState(str, Enum):
    """Lifecycle states of an upload session."""

    IDLE = "idle"
    """Created, nothing validated yet."""

    VALIDATING = "validating"
    """Candidates are being checked against the validation rules."""

    AWAITING_DECISION = "awaiting_decision"
    """Some candidates were rejected; waiting on proceed/abort."""

    UPLOADING = "uploading"
    """Normalization and transfer are running."""

    COMPLETED = "completed"
    """Every accepted file has a result."""

    REJECTED = "rejected"
    """Every candidate failed validation; nothing was sent."""

    ABORTED = "aborted"
    """Stopped by a decision point or a cancel request."""


class SessionOutcome(str, Enum):
    """Terminal classification of a session, each with a distinct summary."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    ALL_REJECTED = "all_rejected"
    ABORTED = "aborted"


class PartialValidationDecision(str, Enum):
    """Answer to "some files were rejected, upload the rest?"."""

    PROCEED = "proceed"
    ABORT = "abort"


class ContinueAfterFailureDecision(str, Enum):
    """Answer to "a file failed, keep going with the remaining ones?"."""

    CONTINUE = "continue"
    ABORT = "abort"


# ---------------------------------------------------------------------------
# Pipeline values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UploadCandidate:
    """A user-selected file before validation.

    Attributes
    ----------
    name:
        The file name as selected by the user.
    byte_length:
        Declared size in bytes.
    mime_type:
        Declared MIME type (e.g. ``"image/jpeg"``).
    raw_bytes:
        The file content.
    """

    name: str
    byte_length: int
    mime_type: str
    raw_bytes: bytes = field(repr=False)

    @classmethod
    def from_bytes(cls, name: str, data: bytes, mime_type: str) -> UploadCandidate:
        """Build a candidate whose ``byte_length`` is taken from *data*."""
        return cls(name=name, byte_length=len(data), mime_type=mime_type, raw_bytes=data)


@dataclass(frozen=True)
class ValidationVerdict:
    """Result of checking one candidate against the validation rules.

    Attributes
    ----------
    candidate:
        The candidate that was checked.
    accepted:
        ``True`` if every rule passed.
    reason:
        The first rule that failed, or ``None`` when accepted.
    message:
        Human-readable explanation of *reason* (empty when accepted).
    """

    candidate: UploadCandidate
    accepted: bool
    reason: ErrorCode | None = None
    message: str = ""


@dataclass(frozen=True)
class NormalizedAsset:
    """A file ready for transfer.

    When normalization succeeded ``mime_type`` is ``"image/jpeg"`` and
    ``normalized`` is ``True``.  On fallback it carries the candidate's
    original bytes and MIME type and ``normalized`` is ``False``.
    """

    name: str
    mime_type: str
    byte_length: int
    encoded_bytes: bytes = field(repr=False)
    normalized: bool = False
    width: int | None = None
    height: int | None = None

    @classmethod
    def passthrough(cls, candidate: UploadCandidate) -> NormalizedAsset:
        """Wrap *candidate* unchanged."""
        return cls(
            name=candidate.name,
            mime_type=candidate.mime_type,
            byte_length=len(candidate.raw_bytes),
            encoded_bytes=candidate.raw_bytes,
        )


@dataclass(frozen=True)
class UploadResult:
    """Outcome of transferring one file.

    Exactly one of ``remote_url`` and ``error`` is set.

    Attributes
    ----------
    source_name:
        Name of the file this result belongs to.
    index:
        Position of the file in the accepted set, so results can be
        re-ordered to input order regardless of completion order.
    remote_url:
        Durable URL issued by the Media Store.
    error:
        Failure kind.
    message:
        Human-readable failure detail.
    """

    source_name: str
    index: int
    remote_url: str | None = None
    error: ErrorCode | None = None
    message: str = ""

    def __post_init__(self) -> None:
        if (self.remote_url is None) == (self.error is None):
            raise ValueError(
                f"UploadResult for {self.source_name!r} must carry exactly one of "
                "remote_url or error"
            )

    @property
    def ok(self) -> bool:
        return self.remote_url is not None

    @classmethod
    def success(cls, source_name: str, index: int, remote_url: str) -> UploadResult:
        return cls(source_name=source_name, index=index, remote_url=remote_url)

    @classmethod
    def failure(
        cls,
        source_name: str,
        index: int,
        error: ErrorCode,
        message: str = "",
    ) -> UploadResult:
        return cls(source_name=source_name, index=index, error=error, message=message)


@dataclass(frozen=True)
class SessionProgress:
    """Snapshot of session progress for UI feedback.

    Attributes
    ----------
    state:
        Current session state.
    index:
        Index of the file most recently started (``-1`` before any).
    name:
        Name of that file (empty before any).
    completed:
        Number of files with a result.
    total:
        Number of accepted files.
    """

    state: SessionState
    index: int
    name: str
    completed: int
    total: int

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.completed * 100.0 / self.total, 1)


# ---------------------------------------------------------------------------
# Relay / Media Store values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IncomingFile:
    """One ``file`` part received by the relay endpoint.

    A part already known to exceed the size ceiling is kept with empty
    ``data`` and its size in ``declared_size``, so it is rejected without
    its content being read.
    """

    filename: str
    content_type: str
    data: bytes = field(repr=False)
    declared_size: int | None = None

    @property
    def size(self) -> int:
        return self.declared_size if self.declared_size is not None else len(self.data)

    def to_candidate(self) -> UploadCandidate:
        return UploadCandidate(
            name=self.filename,
            byte_length=self.size,
            mime_type=self.content_type,
            raw_bytes=self.data,
        )


@dataclass(frozen=True)
class StoreOptions:
    """Options for one Media Store upload.

    The transformation fields describe what the Media Store applies on
    ingestion: automatic quality, automatic format negotiation and a
    ``limit`` crop that only ever shrinks to the long-edge bounds.
    """

    folder: str
    public_id: str
    quality: str = "auto"
    format: str = "auto"
    max_width: int = 1920
    max_height: int = 1080
    crop_mode: str = "limit"
    resource_type: str = "image"
    invalidate_cache: bool = True
    allow_overwrite: bool = False


@dataclass(frozen=True)
class StoredAsset:
    """What the Media Store returns for a successful upload."""

    secure_url: str
    public_id: str = ""
    bytes: int | None = None
    width: int | None = None
    height: int | None = None
    format: str | None = None


@dataclass
class RelayResponse:
    """Framework-agnostic response produced by the relay service."""

    status_code: int
    body: dict[str, Any]
