"""Tests for the batch scheduler: batching, pacing, isolation and stopping."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from unittest.mock import AsyncMock

import pytest

from photorelay.errors import ErrorCode
from photorelay.models import NormalizedAsset, TransferGranularity, UploadResult
from photorelay.pipeline.batch import BatchScheduler, abandoned_result

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _asset(name: str) -> NormalizedAsset:
    return NormalizedAsset(name=name, mime_type="image/jpeg", byte_length=3, encoded_bytes=b"abc")


def _assets(count: int) -> list[NormalizedAsset]:
    return [_asset(f"img{i}.jpg") for i in range(count)]


class FakeSender:
    """Sender that records calls and fails the names it is told to."""

    def __init__(self, fail: Sequence[str] = (), delays: dict[str, float] | None = None) -> None:
        self.fail = set(fail)
        self.delays = delays or {}
        self.calls: list[str] = []
        self.batch_calls: list[list[str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def send(self, asset: NormalizedAsset, index: int = 0) -> UploadResult:
        self.calls.append(asset.name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(asset.name, 0))
        finally:
            self.in_flight -= 1
        if asset.name in self.fail:
            return UploadResult.failure(asset.name, index, ErrorCode.STORE_ERROR, "boom")
        return UploadResult.success(asset.name, index, f"https://cdn.test/{asset.name}")

    async def send_batch(self, items):
        names = [asset.name for _, asset in items]
        self.batch_calls.append(names)
        if self.fail & set(names):
            return [
                UploadResult.failure(a.name, i, ErrorCode.STORE_ERROR, "batch failed")
                for i, a in items
            ]
        return [UploadResult.success(a.name, i, f"https://cdn.test/{a.name}") for i, a in items]


def _scheduler(sender, **kwargs) -> tuple[BatchScheduler, AsyncMock]:
    sleep = AsyncMock()
    kwargs.setdefault("batch_size", 5)
    kwargs.setdefault("inter_batch_delay", 1.0)
    return BatchScheduler(sender, sleep=sleep, **kwargs), sleep


# =========================================================================
# Batching and pacing
# =========================================================================


class TestBatching:

    async def test_twelve_files_run_in_three_batches_with_two_pauses(self):
        sender = FakeSender()
        scheduler, sleep = _scheduler(sender)
        starts: list[int] = []

        results = await scheduler.run(_assets(12), on_start=lambda i, a: starts.append(i))

        assert len(results) == 12
        assert all(r.ok for r in results)
        assert [r.index for r in results] == list(range(12))
        assert sleep.await_count == 2
        sleep.assert_awaited_with(1.0)
        assert starts == list(range(12))
        assert sender.max_in_flight <= 5

    async def test_single_batch_never_sleeps(self):
        scheduler, sleep = _scheduler(FakeSender())
        await scheduler.run(_assets(5))
        sleep.assert_not_awaited()

    async def test_empty_input(self):
        scheduler, sleep = _scheduler(FakeSender())
        assert await scheduler.run([]) == []
        sleep.assert_not_awaited()

    async def test_results_in_input_order_despite_completion_order(self):
        sender = FakeSender(delays={"img0.jpg": 0.05, "img1.jpg": 0.0, "img2.jpg": 0.02})
        scheduler, _ = _scheduler(sender)
        completed: list[str] = []

        results = await scheduler.run(_assets(3), on_result=lambda r: completed.append(r.source_name))

        assert [r.source_name for r in results] == ["img0.jpg", "img1.jpg", "img2.jpg"]
        assert len(completed) == 3

    async def test_batch_members_run_concurrently(self):
        sender = FakeSender(delays={f"img{i}.jpg": 0.02 for i in range(4)})
        scheduler, _ = _scheduler(sender, batch_size=4)
        await scheduler.run(_assets(4))
        assert sender.max_in_flight == 4

    async def test_batches_do_not_overlap(self):
        sender = FakeSender(delays={f"img{i}.jpg": 0.01 for i in range(6)})
        scheduler, _ = _scheduler(sender, batch_size=2)
        await scheduler.run(_assets(6))
        assert sender.max_in_flight == 2

    async def test_batches_counted_in_metrics(self, metrics):
        scheduler = BatchScheduler(FakeSender(), batch_size=2, sleep=AsyncMock(), metrics=metrics)
        await scheduler.run(_assets(5))
        assert metrics.count("photorelay.batches_total") == 3

    def test_rejects_invalid_parameters(self):
        with pytest.raises(ValueError, match="batch_size"):
            BatchScheduler(FakeSender(), batch_size=0)
        with pytest.raises(ValueError, match="inter_batch_delay"):
            BatchScheduler(FakeSender(), inter_batch_delay=-1)

    def test_from_config(self, config):
        config.batch_size = 3
        config.inter_batch_delay = 0.25
        config.transfer_granularity = TransferGranularity.PER_CHUNK
        scheduler = BatchScheduler.from_config(FakeSender(), config)
        assert scheduler.batch_size == 3
        assert scheduler.inter_batch_delay == 0.25
        assert scheduler.granularity is TransferGranularity.PER_CHUNK


# =========================================================================
# Failure isolation
# =========================================================================


class TestFailureIsolation:

    async def test_failing_file_does_not_cancel_siblings(self):
        sender = FakeSender(fail={"img2.jpg"}, delays={"img4.jpg": 0.02})
        scheduler, _ = _scheduler(sender)

        results = await scheduler.run(_assets(5))

        assert [r.ok for r in results] == [True, True, False, True, True]
        assert results[2].error is ErrorCode.STORE_ERROR
        assert results[4].remote_url == "https://cdn.test/img4.jpg"

    async def test_later_batches_still_run_after_failure_by_default(self):
        sender = FakeSender(fail={"img0.jpg"})
        scheduler, _ = _scheduler(sender, batch_size=2)
        results = await scheduler.run(_assets(4))
        assert len(sender.calls) == 4
        assert sum(r.ok for r in results) == 3

    async def test_unexpected_exception_propagates_after_siblings_settle(self):
        class Exploding(FakeSender):
            async def send(self, asset, index=0):
                if asset.name == "img0.jpg":
                    raise RuntimeError("bug")
                return await super().send(asset, index)

        sender = Exploding(delays={"img1.jpg": 0.02})
        scheduler, _ = _scheduler(sender)
        with pytest.raises(RuntimeError, match="bug"):
            await scheduler.run(_assets(2))
        assert sender.calls == ["img1.jpg"]
        assert sender.in_flight == 0


# =========================================================================
# Stopping: should_continue and cancel
# =========================================================================


class TestStopping:

    async def test_should_continue_false_abandons_remaining(self):
        sender = FakeSender(fail={"img1.jpg"})
        scheduler, sleep = _scheduler(sender, batch_size=2)
        decide = AsyncMock(return_value=False)

        results = await scheduler.run(_assets(5), should_continue=decide)

        decide.assert_awaited_once()
        failed, remaining = decide.await_args.args
        assert [r.source_name for r in failed] == ["img1.jpg"]
        assert remaining == 3
        assert sender.calls == ["img0.jpg", "img1.jpg"]
        assert len(results) == 5
        assert [r.error for r in results[2:]] == [ErrorCode.ABANDONED] * 3
        sleep.assert_not_awaited()

    async def test_should_continue_true_keeps_going(self):
        sender = FakeSender(fail={"img0.jpg"})
        scheduler, _ = _scheduler(sender, batch_size=2)
        decide = AsyncMock(return_value=True)
        await scheduler.run(_assets(4), should_continue=decide)
        assert len(sender.calls) == 4

    async def test_should_continue_not_asked_after_last_batch(self):
        sender = FakeSender(fail={"img3.jpg"})
        scheduler, _ = _scheduler(sender, batch_size=2)
        decide = AsyncMock(return_value=False)
        await scheduler.run(_assets(4), should_continue=decide)
        decide.assert_not_awaited()

    async def test_cancel_during_pause_abandons_unstarted_batches(self):
        cancel = asyncio.Event()
        sender = FakeSender()

        async def _sleep(delay: float) -> None:
            cancel.set()

        scheduler = BatchScheduler(sender, batch_size=2, sleep=_sleep)
        results = await scheduler.run(_assets(5), cancel=cancel)

        assert sender.calls == ["img0.jpg", "img1.jpg"]
        assert [r.ok for r in results[:2]] == [True, True]
        assert all(r.error is ErrorCode.ABANDONED for r in results[2:])

    async def test_cancel_before_start_abandons_everything(self):
        cancel = asyncio.Event()
        cancel.set()
        sender = FakeSender()
        scheduler, _ = _scheduler(sender)
        results = await scheduler.run(_assets(3), cancel=cancel)
        assert sender.calls == []
        assert [r.index for r in results] == [0, 1, 2]
        assert all(r.error is ErrorCode.ABANDONED for r in results)

    def test_abandoned_result_shape(self):
        result = abandoned_result(4, "x.jpg")
        assert result.ok is False
        assert result.index == 4
        assert result.error is ErrorCode.ABANDONED


# =========================================================================
# Per-chunk granularity
# =========================================================================


class TestPerChunk:

    async def test_one_call_per_batch(self):
        sender = FakeSender()
        scheduler, _ = _scheduler(sender, batch_size=2, granularity=TransferGranularity.PER_CHUNK)
        results = await scheduler.run(_assets(5))
        assert sender.batch_calls == [
            ["img0.jpg", "img1.jpg"],
            ["img2.jpg", "img3.jpg"],
            ["img4.jpg"],
        ]
        assert sender.calls == []
        assert all(r.ok for r in results)

    async def test_failed_chunk_fails_every_member(self):
        sender = FakeSender(fail={"img1.jpg"})
        scheduler, _ = _scheduler(sender, batch_size=2, granularity=TransferGranularity.PER_CHUNK)
        results = await scheduler.run(_assets(4))
        assert [r.ok for r in results] == [False, False, True, True]
