"""Property-based tests for the notification ordering guard."""

import asyncio
from types import SimpleNamespace

import pytest
from hypothesis import given, settings, strategies as st

from conftest import FakeVideoStore, RecordingBroadcaster
from videopipe.broadcast import EVENT_COMPLETED, EVENT_FAILED, EVENT_PROGRESS
from videopipe.dto import (
    CompleteNotification,
    FailedNotification,
    ProcessingMetadata,
    ProgressNotification,
    VideoStatus,
)
from videopipe.errors import MalformedMessageError
from videopipe.records import VideoRecord
from videopipe.relay import NotificationRelay, should_apply_progress

timestamps = st.integers(min_value=1, max_value=2**41)
percent = st.integers(min_value=0, max_value=100)


def _relay(record: VideoRecord | None = None):
    store = FakeVideoStore({record.id: record} if record else {})
    broadcaster = RecordingBroadcaster()
    return NotificationRelay(store, broadcaster), store, broadcaster


def _record(**kwargs) -> VideoRecord:
    return VideoRecord(id="v1", **kwargs)


def _progress(progress: int, timestamp: int) -> ProgressNotification:
    return ProgressNotification(video_id="v1", progress=progress, timestamp=timestamp)


class TestProgressGuard:
    @given(t1=timestamps, back=st.integers(min_value=0, max_value=10**6), p1=percent, p2=percent)
    @settings(max_examples=100)
    def test_stale_progress_never_regresses_state(self, t1, back, p1, p2):
        t2 = max(1, t1 - back)
        relay, store, _ = _relay(_record(status=VideoStatus.QUEUED))

        async def scenario():
            await relay.handle(_progress(p1, t1))
            after_first = store.records["v1"]
            applied = await relay.handle(_progress(p2, t2))
            return after_first, applied

        after_first, applied = asyncio.run(scenario())

        assert applied is False
        assert store.records["v1"] == after_first

    @given(t1=timestamps, step=st.integers(min_value=1, max_value=10**6), p2=percent)
    def test_newer_progress_is_applied(self, t1, step, p2):
        relay, store, _ = _relay(_record())

        async def scenario():
            await relay.handle(_progress(10, t1))
            return await relay.handle(_progress(p2, t1 + step))

        assert asyncio.run(scenario()) is True
        assert store.records["v1"].progress == p2
        assert store.records["v1"].last_progress_update == t1 + step

    def test_first_progress_applies_without_stored_timestamp(self):
        assert should_apply_progress(_record(), 1)
        assert not should_apply_progress(_record(last_progress_update=5), 5)
        assert should_apply_progress(_record(last_progress_update=5), 6)

    async def test_progress_error_is_stored(self):
        relay, store, _ = _relay(_record())
        await relay.handle(
            ProgressNotification(video_id="v1", progress=20, error="slow disk", timestamp=3)
        )
        assert store.records["v1"].error == "slow disk"

    async def test_rejected_progress_still_fans_out_stored_state(self):
        relay, store, broadcaster = _relay(
            _record(status=VideoStatus.PROCESSING, progress=60, last_progress_update=100)
        )

        applied = await relay.handle(_progress(20, 50))

        assert applied is False
        assert store.updates == []
        event, record = broadcaster.events[-1]
        assert event == EVENT_PROGRESS
        assert record.progress == 60


class TestTerminalNotifications:
    @given(stale_by=st.integers(min_value=0, max_value=10**6), p=percent)
    @settings(max_examples=50)
    def test_complete_overrides_regardless_of_timestamp(self, stale_by, p):
        relay, store, _ = _relay(
            _record(status=VideoStatus.PROCESSING, progress=p, last_progress_update=10**7)
        )
        notification = CompleteNotification(
            video_id="v1",
            low_res_path="videos/v1/a_low.mp4",
            thumbnail_path="videos/v1/a_thumb.webp",
            timestamp=10**7 - stale_by,
        )

        assert asyncio.run(relay.handle(notification)) is True
        record = store.records["v1"]
        assert record.status is VideoStatus.DONE
        assert record.progress == 100
        assert record.last_progress_update == 10**7

    @given(stale_by=st.integers(min_value=0, max_value=10**6), p=percent)
    @settings(max_examples=50)
    def test_failure_overrides_regardless_of_timestamp(self, stale_by, p):
        relay, store, _ = _relay(
            _record(status=VideoStatus.PROCESSING, progress=p, last_progress_update=10**7)
        )
        notification = FailedNotification(
            video_id="v1", error="encode failed", timestamp=10**7 - stale_by
        )

        assert asyncio.run(relay.handle(notification)) is True
        record = store.records["v1"]
        assert record.status is VideoStatus.FAILED
        assert record.progress == 0
        assert record.error == "encode failed"

    async def test_complete_applies_paths_and_metadata(self):
        relay, store, broadcaster = _relay(_record(error="old failure"))
        metadata = ProcessingMetadata(
            size_bytes=1000,
            low_res_size_bytes=200,
            original_resolution="1920x1080",
            low_resolution="1920x1080",
            duration_seconds=60.0,
        )

        await relay.handle(
            CompleteNotification(
                video_id="v1",
                low_res_path="videos/v1/a_low.mp4",
                thumbnail_path="videos/v1/a_thumb.webp",
                metadata=metadata,
                timestamp=42,
            )
        )

        record = store.records["v1"]
        assert record.low_res_gcs_path == "videos/v1/a_low.mp4"
        assert record.thumbnail_gcs_path == "videos/v1/a_thumb.webp"
        assert record.size_bytes == 1000
        assert record.low_res_size_bytes == 200
        assert record.duration_seconds == 60.0
        assert record.error is None
        assert broadcaster.events == [(EVENT_COMPLETED, record)]

    async def test_late_progress_does_not_reopen_finished_video(self):
        relay, store, _ = _relay(_record())
        await relay.handle(_progress(50, 10))
        await relay.handle(CompleteNotification(video_id="v1", timestamp=20))

        applied = await relay.handle(_progress(60, 15))

        assert applied is False
        assert store.records["v1"].status is VideoStatus.DONE
        assert store.records["v1"].progress == 100

    async def test_failure_fans_out_stored_record(self):
        relay, store, broadcaster = _relay(_record())
        await relay.handle(FailedNotification(video_id="v1", error="boom", timestamp=1))

        event, record = broadcaster.events[-1]
        assert event == EVENT_FAILED
        assert record == store.records["v1"]


class TestMissingAndUnknown:
    async def test_missing_record_is_discarded(self):
        relay, store, broadcaster = _relay()

        applied = await relay.handle(_progress(10, 1))

        assert applied is False
        assert store.updates == []
        assert broadcaster.events == []

    async def test_unknown_variant_is_rejected(self):
        relay, store, broadcaster = _relay(_record())
        bogus = SimpleNamespace(video_id="v1", type="paused", timestamp=1)

        with pytest.raises(MalformedMessageError):
            await relay.handle(bogus)
        assert store.updates == []
        assert broadcaster.events == []


class TestConcurrentDelivery:
    """Handlers for one video racing against a store that yields on every call."""

    @pytest.mark.parametrize("complete_first", [True, False])
    async def test_completion_sticks_when_stale_progress_races_it(self, complete_first):
        store = FakeVideoStore(
            {"v1": _record(status=VideoStatus.PROCESSING, progress=50, last_progress_update=10)},
            suspend=True,
        )
        relay = NotificationRelay(store, RecordingBroadcaster())
        complete = CompleteNotification(video_id="v1", timestamp=30)
        progress = _progress(60, 20)
        order = [complete, progress] if complete_first else [progress, complete]

        await asyncio.gather(*(relay.handle(n) for n in order))

        record = store.records["v1"]
        assert record.status is VideoStatus.DONE
        assert record.progress == 100
        assert record.last_progress_update == 30

    @pytest.mark.parametrize("newer_first", [True, False])
    async def test_older_progress_never_overwrites_newer(self, newer_first):
        store = FakeVideoStore({"v1": _record()}, suspend=True)
        relay = NotificationRelay(store, RecordingBroadcaster())
        newer, older = _progress(60, 30), _progress(40, 20)
        order = [newer, older] if newer_first else [older, newer]

        await asyncio.gather(*(relay.handle(n) for n in order))

        assert store.records["v1"].progress == 60
        assert store.records["v1"].last_progress_update == 30

    @given(stamps=st.lists(timestamps, min_size=2, max_size=12, unique=True))
    @settings(max_examples=50)
    def test_watermark_ends_at_newest_timestamp(self, stamps):
        store = FakeVideoStore({"v1": _record()}, suspend=True)
        relay = NotificationRelay(store, RecordingBroadcaster())
        watermarks = []

        async def scenario():
            async def handle_and_observe(notification):
                await relay.handle(notification)
                watermarks.append(store.records["v1"].last_progress_update)

            await asyncio.gather(
                *(handle_and_observe(_progress(ts % 101, ts)) for ts in stamps)
            )

        asyncio.run(scenario())

        newest = max(stamps)
        assert watermarks == sorted(watermarks)
        assert store.records["v1"].last_progress_update == newest
        assert store.records["v1"].progress == newest % 101
