"""Upload session controller: drives one selection from files to URLs.

The controller owns the :class:`UploadSession` for one user-initiated
selection and is the only thing that mutates it.  It runs the stages in
order -- validate, decide, normalize, transfer, aggregate -- and
publishes a :class:`~photorelay.models.SessionProgress` snapshot to every
subscriber after each transition so a UI can render a live progress bar.

Decision points (some files rejected; a file failed) are delegated to a
:class:`DecisionResolver` supplied by the presentation layer.  The
pipeline never assumes a blocking prompt exists; the default resolver
proceeds and continues.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable, Iterable, Sequence
from typing import Protocol

from photorelay.config import PhotoRelayConfig
from photorelay.errors import ErrorCode
from photorelay.models import (
    ContinueAfterFailureDecision,
    NormalizedAsset,
    PartialValidationDecision,
    ScheduleMode,
    SessionOutcome,
    SessionProgress,
    SessionState,
    UploadCandidate,
    UploadResult,
    ValidationVerdict,
)
from photorelay.observability import bind, get_logger, resolve_metrics
from photorelay.pipeline.batch import BatchScheduler, Sender, abandoned_result
from photorelay.pipeline.normalize import normalize
from photorelay.pipeline.state import SessionStateMachine
from photorelay.pipeline.validate import partition
from photorelay.transfer.client import TransferClient

log = get_logger("photorelay.session")

ProgressListener = Callable[[SessionProgress], None]


# ---------------------------------------------------------------------------
# Decision points
# ---------------------------------------------------------------------------

class DecisionResolver(Protocol):
    """Resolves the pipeline's decision points on behalf of the user."""

    async def on_partial_validation(
        self,
        accepted: list[ValidationVerdict],
        rejected: list[ValidationVerdict],
    ) -> PartialValidationDecision:
        """Some candidates were rejected: upload the accepted ones?"""
        ...

    async def on_transfer_failure(
        self,
        failed: list[UploadResult],
        remaining: int,
    ) -> ContinueAfterFailureDecision:
        """Transfers failed and *remaining* files have not started: go on?"""
        ...


class ProceedResolver:
    """Default resolver: always proceed with the accepted files and continue."""

    async def on_partial_validation(
        self,
        accepted: list[ValidationVerdict],
        rejected: list[ValidationVerdict],
    ) -> PartialValidationDecision:
        return PartialValidationDecision.PROCEED

    async def on_transfer_failure(
        self,
        failed: list[UploadResult],
        remaining: int,
    ) -> ContinueAfterFailureDecision:
        return ContinueAfterFailureDecision.CONTINUE


# ---------------------------------------------------------------------------
# Session aggregate
# ---------------------------------------------------------------------------

class UploadSession:
    """Progress and results of one upload selection.

    Mutated only through the transition methods below, all of which are
    called by :class:`UploadSessionController`.

    Attributes
    ----------
    session_id:
        Random identifier, used in logs.
    total_files:
        Number of accepted files (set when uploading begins).
    rejected:
        Verdicts of candidates that failed validation.
    completed:
        Results in completion order.
    in_flight:
        Names of files whose transfer has started but not finished.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id: str = session_id or uuid.uuid4().hex
        self._machine = SessionStateMachine(self.session_id)
        self.total_files: int = 0
        self.rejected: list[ValidationVerdict] = []
        self.completed: list[UploadResult] = []
        self.in_flight: set[str] = set()
        self._slots: list[UploadResult | None] = []
        self._current_index: int = -1
        self._current_name: str = ""

    # -- read side -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def results(self) -> list[UploadResult]:
        """Results in input order (files still pending are omitted)."""
        return [r for r in self._slots if r is not None]

    @property
    def succeeded(self) -> list[UploadResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[UploadResult]:
        return [r for r in self.results if not r.ok and r.error is not ErrorCode.ABANDONED]

    @property
    def abandoned(self) -> list[UploadResult]:
        return [r for r in self.results if r.error is ErrorCode.ABANDONED]

    @property
    def urls(self) -> list[str]:
        return [r.remote_url for r in self.succeeded if r.remote_url is not None]

    @property
    def progress(self) -> SessionProgress:
        return SessionProgress(
            state=self.state,
            index=self._current_index,
            name=self._current_name,
            completed=len(self.completed),
            total=self.total_files,
        )

    @property
    def outcome(self) -> SessionOutcome | None:
        """Terminal classification, or ``None`` while the session runs."""
        if not self._machine.is_terminal:
            return None
        state = self.state
        if state is SessionState.REJECTED:
            return SessionOutcome.ALL_REJECTED
        if state is SessionState.ABORTED:
            return SessionOutcome.ABORTED
        if len(self.succeeded) == self.total_files:
            return SessionOutcome.SUCCESS
        if self.succeeded:
            return SessionOutcome.PARTIAL
        return SessionOutcome.FAILED

    def summary(self) -> str:
        """Human-readable description of the terminal state."""
        outcome = self.outcome
        ok = len(self.succeeded)
        total = self.total_files
        rejected_note = ""
        if self.rejected:
            rejected_note = f" {_plural(len(self.rejected), 'file')} rejected during validation."

        if outcome is None:
            return f"Uploading: {ok} of {total} photos done."
        if outcome is SessionOutcome.SUCCESS:
            return f"All {_plural(total, 'photo')} uploaded successfully." + rejected_note
        if outcome is SessionOutcome.PARTIAL:
            return (
                f"{ok} of {_plural(total, 'photo')} uploaded; "
                f"{len(self.failed)} failed." + rejected_note
            )
        if outcome is SessionOutcome.FAILED:
            return f"Upload failed for all {_plural(total, 'photo')}." + rejected_note
        if outcome is SessionOutcome.ALL_REJECTED:
            if not self.rejected:
                return "No files were selected."
            reasons = sorted({v.reason.value for v in self.rejected if v.reason is not None})
            return (
                f"Nothing was uploaded: all {_plural(len(self.rejected), 'file')} "
                f"failed validation ({', '.join(reasons)})."
            )
        if total == 0:
            return "Upload cancelled before any photo was sent." + rejected_note
        return (
            f"Upload stopped: {ok} of {_plural(total, 'photo')} uploaded, "
            f"{len(self.failed)} failed, {len(self.abandoned)} not sent." + rejected_note
        )

    # -- transitions -----------------------------------------------------------

    def begin_validation(self) -> None:
        self._machine.transition(SessionState.VALIDATING)

    def reject_all(self, rejected: list[ValidationVerdict]) -> None:
        self.rejected = list(rejected)
        self._machine.transition(SessionState.REJECTED)

    def await_decision(self, rejected: list[ValidationVerdict]) -> None:
        self.rejected = list(rejected)
        self._machine.transition(SessionState.AWAITING_DECISION)

    def begin_upload(self, total_files: int) -> None:
        self.total_files = total_files
        self._slots = [None] * total_files
        self._machine.transition(SessionState.UPLOADING)

    def mark_started(self, index: int, name: str) -> None:
        self._current_index = index
        self._current_name = name
        self.in_flight.add(name)

    def record_result(self, result: UploadResult) -> None:
        if self._slots[result.index] is not None:
            raise ValueError(
                f"Session {self.session_id} already has a result for index {result.index}"
            )
        self._slots[result.index] = result
        self.completed.append(result)
        self.in_flight.discard(result.source_name)

    def finish(self) -> None:
        """Move to ``COMPLETED``, or ``ABORTED`` when work was abandoned."""
        if self.abandoned:
            self._machine.transition(SessionState.ABORTED)
        else:
            self._machine.transition(SessionState.COMPLETED)

    def abort(self) -> None:
        self._machine.transition(SessionState.ABORTED)


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class UploadSessionController:
    """Run upload sessions end to end.

    Parameters
    ----------
    config:
        Pipeline configuration.  Defaults to ``PhotoRelayConfig()``.
    sender:
        Transfer client used for every relay call.  When omitted the
        controller builds (and owns) a
        :class:`~photorelay.transfer.TransferClient` from *config*.
    resolver:
        Decision resolver for the two decision points.  Defaults to
        :class:`ProceedResolver`.
    scheduler:
        Optional pre-built :class:`BatchScheduler` (used in batched mode).
    """

    def __init__(
        self,
        config: PhotoRelayConfig | None = None,
        sender: Sender | None = None,
        resolver: DecisionResolver | None = None,
        scheduler: BatchScheduler | None = None,
    ) -> None:
        self._config = config or PhotoRelayConfig()
        self._owned_client: TransferClient | None = None
        if sender is None:
            self._owned_client = TransferClient(self._config)
            sender = self._owned_client
        self._sender: Sender = sender
        self._resolver: DecisionResolver = resolver or ProceedResolver()
        self._scheduler = scheduler or BatchScheduler.from_config(sender, self._config)
        self._metrics = resolve_metrics(self._config.metrics)
        self._listeners: list[ProgressListener] = []
        self._cancel = asyncio.Event()
        self.session: UploadSession | None = None

    # -- observers -----------------------------------------------------------

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register *listener* for progress snapshots; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, session: UploadSession) -> None:
        snapshot = session.progress
        for listener in list(self._listeners):
            listener(snapshot)

    # -- control -------------------------------------------------------------

    def cancel(self) -> None:
        """Abandon the running session's work that has not started yet.

        In-flight transfers finish.  The request applies to the current
        :meth:`run_session` call only; the next call starts uncancelled.
        """
        self._cancel.set()

    def reset(self) -> None:
        """Drop the current session so a new selection starts clean."""
        self.session = None
        self._cancel = asyncio.Event()

    async def close(self) -> None:
        """Close the transfer client if this controller created it."""
        if self._owned_client is not None:
            await self._owned_client.close()

    async def __aenter__(self) -> UploadSessionController:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- main flow -----------------------------------------------------------

    async def run_session(self, raw_files: Iterable[UploadCandidate]) -> UploadSession:
        """Validate, normalize and transfer *raw_files*.

        Returns
        -------
        UploadSession
            The finished session; inspect ``outcome``, ``results`` and
            ``summary()``.
        """
        session = UploadSession()
        self.session = session
        self._cancel = asyncio.Event()
        t0 = time.monotonic()

        session.begin_validation()
        self._emit(session)
        accepted, rejected = partition(raw_files, self._config.max_file_size_bytes)

        if not accepted:
            session.reject_all(rejected)
            self._emit(session)
            self._log_outcome(session, t0)
            return session

        if rejected:
            session.await_decision(rejected)
            self._emit(session)
            decision = await self._resolver.on_partial_validation(accepted, rejected)
            if decision is PartialValidationDecision.ABORT:
                session.abort()
                self._emit(session)
                self._log_outcome(session, t0)
                return session

        candidates = [v.candidate for v in accepted]
        session.begin_upload(len(candidates))
        self._emit(session)

        if self._config.schedule_mode is ScheduleMode.SEQUENTIAL:
            await self._run_sequential(session, candidates)
        else:
            await self._run_batched(session, candidates)

        session.finish()
        self._emit(session)
        self._log_outcome(session, t0)
        return session

    async def _normalize(self, candidate: UploadCandidate) -> NormalizedAsset:
        if not self._config.normalize_images:
            return NormalizedAsset.passthrough(candidate)
        return await normalize(
            candidate,
            max_dimension=self._config.normalize_max_dimension,
            quality=self._config.normalize_quality,
            timeout=self._config.normalize_timeout_seconds,
            metrics=self._config.metrics,
        )

    async def _run_batched(
        self,
        session: UploadSession,
        candidates: Sequence[UploadCandidate],
    ) -> None:
        semaphore = asyncio.Semaphore(self._config.batch_size)

        async def _normalize_one(candidate: UploadCandidate) -> NormalizedAsset:
            async with semaphore:
                return await self._normalize(candidate)

        assets = await asyncio.gather(*(_normalize_one(c) for c in candidates))

        def _on_start(index: int, asset: NormalizedAsset) -> None:
            session.mark_started(index, asset.name)
            self._emit(session)

        def _on_result(result: UploadResult) -> None:
            session.record_result(result)
            self._emit(session)

        await self._scheduler.run(
            assets,
            on_start=_on_start,
            on_result=_on_result,
            should_continue=self._should_continue,
            cancel=self._cancel,
        )

    async def _run_sequential(
        self,
        session: UploadSession,
        candidates: Sequence[UploadCandidate],
    ) -> None:
        for index, candidate in enumerate(candidates):
            if self._cancel.is_set():
                self._abandon_from(session, candidates, index)
                return

            session.mark_started(index, candidate.name)
            self._emit(session)
            asset = await self._normalize(candidate)
            result = await self._sender.send(asset, index)
            session.record_result(result)
            self._emit(session)

            remaining = len(candidates) - index - 1
            if not result.ok and remaining:
                if not await self._should_continue([result], remaining):
                    self._abandon_from(session, candidates, index + 1)
                    return

    async def _should_continue(self, failed: list[UploadResult], remaining: int) -> bool:
        decision = await self._resolver.on_transfer_failure(failed, remaining)
        return decision is ContinueAfterFailureDecision.CONTINUE

    def _abandon_from(
        self,
        session: UploadSession,
        candidates: Sequence[UploadCandidate],
        start: int,
    ) -> None:
        for index in range(start, len(candidates)):
            session.record_result(abandoned_result(index, candidates[index].name))
        self._emit(session)

    def _log_outcome(self, session: UploadSession, t0: float) -> None:
        elapsed_ms = (time.monotonic() - t0) * 1000
        outcome = session.outcome
        tag = outcome.value if outcome is not None else "unknown"
        self._metrics.timing(
            "photorelay.session_duration_ms",
            elapsed_ms,
            tags={"outcome": tag},
        )
        bind(log, session_id=session.session_id).info(
            session.summary(),
            extra={
                "extra_fields": {
                    "op": "session",
                    "outcome": tag,
                    "total_files": session.total_files,
                    "succeeded": len(session.succeeded),
                    "failed": len(session.failed),
                    "abandoned": len(session.abandoned),
                    "rejected": len(session.rejected),
                    "duration_ms": round(elapsed_ms),
                }
            },
        )
