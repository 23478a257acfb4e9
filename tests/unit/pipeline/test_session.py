"""Tests for the upload session controller and session aggregate."""

from __future__ import annotations

import httpx
import pytest

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
)
from photorelay.pipeline.session import (
    ProceedResolver,
    UploadSession,
    UploadSessionController,
)
from photorelay.transfer import TransferClient

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _file(name: str, mime_type: str = "image/jpeg", data: bytes = b"jpeg-data") -> UploadCandidate:
    return UploadCandidate.from_bytes(name, data, mime_type)


class FakeSender:
    def __init__(self, fail=()) -> None:
        self.fail = set(fail)
        self.sent: list[NormalizedAsset] = []

    async def send(self, asset: NormalizedAsset, index: int = 0) -> UploadResult:
        self.sent.append(asset)
        if asset.name in self.fail:
            return UploadResult.failure(asset.name, index, ErrorCode.STORE_ERROR, "store down")
        return UploadResult.success(asset.name, index, f"https://cdn.test/{asset.name}")

    async def send_batch(self, items):
        return [await self.send(asset, index) for index, asset in items]

    @property
    def names(self) -> list[str]:
        return [a.name for a in self.sent]


class ScriptedResolver:
    def __init__(
        self,
        partial: PartialValidationDecision = PartialValidationDecision.PROCEED,
        failure: ContinueAfterFailureDecision = ContinueAfterFailureDecision.CONTINUE,
    ) -> None:
        self.partial = partial
        self.failure = failure
        self.partial_calls: list[tuple[list, list]] = []
        self.failure_calls: list[tuple[list[UploadResult], int]] = []

    async def on_partial_validation(self, accepted, rejected):
        self.partial_calls.append((accepted, rejected))
        return self.partial

    async def on_transfer_failure(self, failed, remaining):
        self.failure_calls.append((failed, remaining))
        return self.failure


@pytest.fixture
def client_config(config):
    config.normalize_images = False
    return config


# =========================================================================
# Happy path and validation outcomes
# =========================================================================


class TestRunSession:

    async def test_all_files_uploaded(self, client_config):
        sender = FakeSender()
        controller = UploadSessionController(client_config, sender=sender)

        session = await controller.run_session([_file("a.jpg"), _file("b.jpg"), _file("c.jpg")])

        assert session.state is SessionState.COMPLETED
        assert session.outcome is SessionOutcome.SUCCESS
        assert session.urls == [
            "https://cdn.test/a.jpg",
            "https://cdn.test/b.jpg",
            "https://cdn.test/c.jpg",
        ]
        assert session.summary() == "All 3 photos uploaded successfully."
        assert controller.session is session

    async def test_all_rejected_sends_nothing(self, client_config):
        sender = FakeSender()
        controller = UploadSessionController(client_config, sender=sender)

        session = await controller.run_session([
            _file("doc.pdf", "application/pdf"),
            _file("empty.jpg", data=b""),
        ])

        assert session.state is SessionState.REJECTED
        assert session.outcome is SessionOutcome.ALL_REJECTED
        assert sender.sent == []
        assert [v.reason for v in session.rejected] == [ErrorCode.INVALID_TYPE, ErrorCode.EMPTY_FILE]
        assert "failed validation" in session.summary()
        assert "EMPTY_FILE" in session.summary()

    async def test_empty_selection(self, client_config):
        session = await UploadSessionController(client_config, sender=FakeSender()).run_session([])
        assert session.outcome is SessionOutcome.ALL_REJECTED
        assert session.summary() == "No files were selected."

    async def test_partial_validation_proceeds_by_default(self, client_config):
        sender = FakeSender()
        controller = UploadSessionController(client_config, sender=sender)

        session = await controller.run_session([_file("a.jpg"), _file("b.txt", "text/plain")])

        assert sender.names == ["a.jpg"]
        assert session.outcome is SessionOutcome.SUCCESS
        assert session.total_files == 1
        assert "1 file rejected during validation." in session.summary()

    async def test_partial_validation_abort(self, client_config):
        sender = FakeSender()
        resolver = ScriptedResolver(partial=PartialValidationDecision.ABORT)
        controller = UploadSessionController(client_config, sender=sender, resolver=resolver)

        session = await controller.run_session([_file("a.jpg"), _file("b.txt", "text/plain")])

        assert sender.sent == []
        assert session.state is SessionState.ABORTED
        assert session.outcome is SessionOutcome.ABORTED
        accepted, rejected = resolver.partial_calls[0]
        assert [v.candidate.name for v in accepted] == ["a.jpg"]
        assert [v.candidate.name for v in rejected] == ["b.txt"]
        assert session.summary() == (
            "Upload cancelled before any photo was sent. 1 file rejected during validation."
        )


# =========================================================================
# Transfer failures
# =========================================================================


class TestTransferFailures:

    async def test_partial_failure(self, client_config):
        sender = FakeSender(fail={"b.jpg"})
        controller = UploadSessionController(client_config, sender=sender)

        session = await controller.run_session([_file("a.jpg"), _file("b.jpg"), _file("c.jpg")])

        assert session.outcome is SessionOutcome.PARTIAL
        assert [r.ok for r in session.results] == [True, False, True]
        assert session.failed[0].error is ErrorCode.STORE_ERROR
        assert session.summary() == "2 of 3 photos uploaded; 1 failed."

    async def test_everything_failed(self, client_config):
        sender = FakeSender(fail={"a.jpg", "b.jpg"})
        session = await UploadSessionController(client_config, sender=sender).run_session(
            [_file("a.jpg"), _file("b.jpg")]
        )
        assert session.outcome is SessionOutcome.FAILED
        assert session.summary() == "Upload failed for all 2 photos."

    async def test_batched_failure_abort_abandons_later_batches(self, client_config):
        client_config.batch_size = 2
        sender = FakeSender(fail={"a.jpg"})
        resolver = ScriptedResolver(failure=ContinueAfterFailureDecision.ABORT)
        controller = UploadSessionController(client_config, sender=sender, resolver=resolver)

        files = [_file(f"{c}.jpg") for c in "abcde"]
        session = await controller.run_session(files)

        assert sender.names == ["a.jpg", "b.jpg"]
        assert session.state is SessionState.ABORTED
        assert session.outcome is SessionOutcome.ABORTED
        assert len(session.results) == 5
        assert len(session.abandoned) == 3
        assert resolver.failure_calls[0][1] == 3
        assert session.summary() == "Upload stopped: 1 of 5 photos uploaded, 1 failed, 3 not sent."

    async def test_undecodable_relay_reply_is_a_failed_result(self, client_config):
        def handler(request):
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip")

        transport = httpx.MockTransport(handler)
        async with TransferClient(client_config, transport=transport) as client:
            session = await UploadSessionController(client_config, sender=client).run_session(
                [_file("a.jpg")]
            )

        assert session.state is SessionState.COMPLETED
        assert session.outcome is SessionOutcome.FAILED
        (result,) = session.results
        assert result.error is ErrorCode.RESPONSE_CONTRACT_ERROR


# =========================================================================
# Sequential mode
# =========================================================================


class TestSequentialMode:

    async def test_files_sent_one_at_a_time_in_order(self, client_config):
        client_config.schedule_mode = ScheduleMode.SEQUENTIAL
        sender = FakeSender()
        session = await UploadSessionController(client_config, sender=sender).run_session(
            [_file("a.jpg"), _file("b.jpg"), _file("c.jpg")]
        )
        assert sender.names == ["a.jpg", "b.jpg", "c.jpg"]
        assert session.outcome is SessionOutcome.SUCCESS

    async def test_failure_consults_resolver_and_continues(self, client_config):
        client_config.schedule_mode = ScheduleMode.SEQUENTIAL
        sender = FakeSender(fail={"a.jpg"})
        resolver = ScriptedResolver()
        session = await UploadSessionController(
            client_config, sender=sender, resolver=resolver
        ).run_session([_file("a.jpg"), _file("b.jpg")])

        assert sender.names == ["a.jpg", "b.jpg"]
        assert session.outcome is SessionOutcome.PARTIAL
        failed, remaining = resolver.failure_calls[0]
        assert [r.source_name for r in failed] == ["a.jpg"]
        assert remaining == 1

    async def test_failure_abort_abandons_rest(self, client_config):
        client_config.schedule_mode = ScheduleMode.SEQUENTIAL
        sender = FakeSender(fail={"b.jpg"})
        resolver = ScriptedResolver(failure=ContinueAfterFailureDecision.ABORT)
        session = await UploadSessionController(
            client_config, sender=sender, resolver=resolver
        ).run_session([_file("a.jpg"), _file("b.jpg"), _file("c.jpg"), _file("d.jpg")])

        assert sender.names == ["a.jpg", "b.jpg"]
        assert session.outcome is SessionOutcome.ABORTED
        assert [r.error for r in session.results[2:]] == [ErrorCode.ABANDONED] * 2

    async def test_no_prompt_after_last_file(self, client_config):
        client_config.schedule_mode = ScheduleMode.SEQUENTIAL
        resolver = ScriptedResolver(failure=ContinueAfterFailureDecision.ABORT)
        session = await UploadSessionController(
            client_config, sender=FakeSender(fail={"b.jpg"}), resolver=resolver
        ).run_session([_file("a.jpg"), _file("b.jpg")])
        assert resolver.failure_calls == []
        assert session.outcome is SessionOutcome.PARTIAL


# =========================================================================
# Progress, cancel and normalization wiring
# =========================================================================


class TestProgressAndControl:

    async def test_progress_snapshots(self, client_config):
        controller = UploadSessionController(client_config, sender=FakeSender())
        snapshots: list[SessionProgress] = []
        controller.subscribe(snapshots.append)

        await controller.run_session([_file("a.jpg"), _file("b.jpg")])

        states = [s.state for s in snapshots]
        assert states[0] is SessionState.VALIDATING
        assert SessionState.UPLOADING in states
        assert states[-1] is SessionState.COMPLETED
        assert snapshots[-1].completed == 2
        assert snapshots[-1].percentage == 100.0
        completed_counts = [s.completed for s in snapshots]
        assert completed_counts == sorted(completed_counts)

    async def test_unsubscribe_stops_notifications(self, client_config):
        controller = UploadSessionController(client_config, sender=FakeSender())
        seen: list[SessionProgress] = []
        unsubscribe = controller.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        await controller.run_session([_file("a.jpg")])
        assert seen == []

    async def test_cancel_abandons_unstarted_batches(self, client_config):
        client_config.batch_size = 1
        sender = FakeSender()
        controller = UploadSessionController(client_config, sender=sender)

        def _cancel_after_first(progress: SessionProgress) -> None:
            if progress.completed == 1:
                controller.cancel()

        controller.subscribe(_cancel_after_first)
        session = await controller.run_session([_file("a.jpg"), _file("b.jpg"), _file("c.jpg")])

        assert sender.names == ["a.jpg"]
        assert session.outcome is SessionOutcome.ABORTED
        assert len(session.abandoned) == 2

    async def test_cancel_does_not_carry_over_to_next_session(self, client_config):
        client_config.batch_size = 1
        sender = FakeSender()
        controller = UploadSessionController(client_config, sender=sender)
        unsubscribe = controller.subscribe(
            lambda progress: controller.cancel() if progress.completed == 1 else None
        )
        first = await controller.run_session([_file("a.jpg"), _file("b.jpg")])
        unsubscribe()

        second = await controller.run_session([_file("c.jpg"), _file("d.jpg")])

        assert first.outcome is SessionOutcome.ABORTED
        assert second.outcome is SessionOutcome.SUCCESS
        assert sender.names == ["a.jpg", "c.jpg", "d.jpg"]

    async def test_reset_clears_session_and_cancel(self, client_config):
        controller = UploadSessionController(client_config, sender=FakeSender())
        controller.cancel()
        controller.reset()
        assert controller.session is None
        session = await controller.run_session([_file("a.jpg")])
        assert session.outcome is SessionOutcome.SUCCESS

    async def test_images_are_normalized_before_sending(self, config, image_bytes):
        config.normalize_max_dimension = 32
        sender = FakeSender()
        data = image_bytes(128, 64, fmt="PNG")
        await UploadSessionController(config, sender=sender).run_session(
            [_file("shot.png", "image/png", data)]
        )
        asset = sender.sent[0]
        assert asset.normalized is True
        assert asset.mime_type == "image/jpeg"
        assert (asset.width, asset.height) == (32, 16)

    async def test_session_duration_metric(self, client_config, metrics):
        client_config.metrics = metrics
        await UploadSessionController(client_config, sender=FakeSender()).run_session(
            [_file("a.jpg")]
        )
        names = [n for n, _, _ in metrics.timings]
        assert "photorelay.session_duration_ms" in names

    async def test_owns_transfer_client_when_no_sender(self, client_config):
        async with UploadSessionController(client_config) as controller:
            assert isinstance(controller._sender, TransferClient)

    def test_default_resolver_is_proceed(self, client_config):
        controller = UploadSessionController(client_config, sender=FakeSender())
        assert isinstance(controller._resolver, ProceedResolver)


class TestUploadSession:

    def test_duplicate_result_rejected(self):
        session = UploadSession("s1")
        session.begin_validation()
        session.begin_upload(1)
        session.record_result(UploadResult.success("a.jpg", 0, "https://cdn.test/a"))
        with pytest.raises(ValueError, match="already has a result"):
            session.record_result(UploadResult.success("a.jpg", 0, "https://cdn.test/a"))

    def test_outcome_none_while_running(self):
        session = UploadSession()
        session.begin_validation()
        assert session.outcome is None
        assert session.progress.index == -1

    def test_in_flight_tracking(self):
        session = UploadSession()
        session.begin_validation()
        session.begin_upload(2)
        session.mark_started(0, "a.jpg")
        session.mark_started(1, "b.jpg")
        assert session.in_flight == {"a.jpg", "b.jpg"}
        session.record_result(UploadResult.success("a.jpg", 0, "https://cdn.test/a"))
        assert session.in_flight == {"b.jpg"}
        assert session.progress.name == "b.jpg"
