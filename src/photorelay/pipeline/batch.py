"""Batch scheduler: fixed-size batches, parallel inside, paced between.

The Media Store throttles bursts, so assets are sent in consecutive
batches of at most ``batch_size``.  Inside a batch every transfer runs
concurrently and all of them settle before the scheduler moves on; a
failing transfer never cancels its siblings.  Between batches the
scheduler pauses for ``inter_batch_delay`` seconds.  Batches themselves
run strictly one after another.

Two transfer granularities are supported:

* ``PER_FILE``  -- one relay call per asset, failures isolated per file.
* ``PER_CHUNK`` -- one multi-file relay call per batch; the relay treats
  the call as all-or-nothing, so a failed call fails every asset of the
  batch with the same error.

Results are indexed by the asset's original position, so callers get
input order no matter in which order transfers completed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from photorelay.config import PhotoRelayConfig
from photorelay.errors import ErrorCode
from photorelay.models import NormalizedAsset, TransferGranularity, UploadResult
from photorelay.observability import MetricsHook, get_logger, resolve_metrics
from photorelay.utils.chunk import chunk

log = get_logger("photorelay.batch")

ABANDONED_MESSAGE = "Upload abandoned before it started"

StartHook = Callable[[int, NormalizedAsset], None]
ResultHook = Callable[[UploadResult], None]
ContinueHook = Callable[[list[UploadResult], int], Awaitable[bool]]


class Sender(Protocol):
    """What the scheduler needs from a transfer client."""

    async def send(self, asset: NormalizedAsset, index: int = 0) -> UploadResult: ...

    async def send_batch(
        self,
        items: Sequence[tuple[int, NormalizedAsset]],
    ) -> list[UploadResult]: ...


def abandoned_result(index: int, name: str) -> UploadResult:
    """Result recorded for a file whose transfer was never started."""
    return UploadResult.failure(name, index, ErrorCode.ABANDONED, ABANDONED_MESSAGE)


class BatchScheduler:
    """Send assets through a :class:`Sender` in paced, fixed-size batches.

    Parameters
    ----------
    sender:
        Usually a :class:`~photorelay.transfer.TransferClient`.
    batch_size:
        Maximum assets per batch.
    inter_batch_delay:
        Seconds to pause between batches (never after the last one).
    granularity:
        Per-file or per-batch relay calls.
    sleep:
        Awaitable sleep used for the pause; injectable for tests.
    metrics:
        Optional metrics hook.
    """

    def __init__(
        self,
        sender: Sender,
        batch_size: int = 5,
        inter_batch_delay: float = 1.0,
        granularity: TransferGranularity = TransferGranularity.PER_FILE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: MetricsHook | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if inter_batch_delay < 0:
            raise ValueError(f"inter_batch_delay must be >= 0, got {inter_batch_delay}")
        self._sender = sender
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.granularity = TransferGranularity(granularity)
        self._sleep = sleep
        self._metrics = resolve_metrics(metrics)

    @classmethod
    def from_config(
        cls,
        sender: Sender,
        config: PhotoRelayConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> BatchScheduler:
        return cls(
            sender,
            batch_size=config.batch_size,
            inter_batch_delay=config.inter_batch_delay,
            granularity=config.transfer_granularity,
            sleep=sleep,
            metrics=config.metrics,
        )

    async def run(
        self,
        assets: Sequence[NormalizedAsset],
        *,
        on_start: StartHook | None = None,
        on_result: ResultHook | None = None,
        should_continue: ContinueHook | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[UploadResult]:
        """Transfer every asset and return one result per asset, in input order.

        Parameters
        ----------
        assets:
            Assets to send, in submission order.
        on_start:
            Called with ``(index, asset)`` right before a transfer starts.
        on_result:
            Called with each result as its batch settles (abandoned
            assets included).
        should_continue:
            Awaited with ``(failed_results, remaining_count)`` after a
            batch that contained failures, when more batches remain.
            Returning ``False`` abandons the remaining batches.
        cancel:
            When set, batches not yet started are abandoned.  A batch
            already in flight always runs to completion.
        """
        batches = chunk(list(enumerate(assets)), self.batch_size)
        results: list[UploadResult | None] = [None] * len(assets)

        def _record(result: UploadResult) -> None:
            results[result.index] = result
            if on_result is not None:
                on_result(result)

        for n, batch in enumerate(batches):
            if n > 0 and not _cancelled(cancel):
                await self._sleep(self.inter_batch_delay)
            if _cancelled(cancel):
                self._abandon(batches[n:], _record, reason="cancelled")
                break

            log.info(
                "Starting batch",
                extra={
                    "extra_fields": {
                        "op": "batch",
                        "batch": n + 1,
                        "batches": len(batches),
                        "files": len(batch),
                        "granularity": self.granularity.value,
                    }
                },
            )
            if on_start is not None:
                for index, asset in batch:
                    on_start(index, asset)

            batch_results = await self._run_batch(batch)
            self._metrics.increment(
                "photorelay.batches_total",
                tags={"granularity": self.granularity.value},
            )
            for result in batch_results:
                _record(result)

            failed = [r for r in batch_results if not r.ok]
            remaining = sum(len(b) for b in batches[n + 1 :])
            if failed and remaining and should_continue is not None:
                if not await should_continue(failed, remaining):
                    self._abandon(batches[n + 1 :], _record, reason="stopped_after_failure")
                    break

        return [r for r in results if r is not None]

    async def _run_batch(
        self,
        batch: list[tuple[int, NormalizedAsset]],
    ) -> list[UploadResult]:
        if self.granularity is TransferGranularity.PER_CHUNK:
            return await self._sender.send_batch(batch)

        settled = await asyncio.gather(
            *(self._sender.send(asset, index) for index, asset in batch),
            return_exceptions=True,
        )
        # Every sibling has settled by now; an unexpected exception is a bug
        # and propagates.
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(settled)

    def _abandon(
        self,
        batches: list[list[tuple[int, NormalizedAsset]]],
        record: ResultHook,
        reason: str,
    ) -> None:
        count = 0
        for batch in batches:
            for index, asset in batch:
                record(abandoned_result(index, asset.name))
                count += 1
        log.info(
            "Remaining batches abandoned",
            extra={"extra_fields": {"op": "batch", "files": count, "reason": reason}},
        )


def _cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()
