import asyncio
import os
from typing import Dict, List

import pytest

from videopipe.dto import ProcessingMetadata
from videopipe.errors import ProcessingError
from videopipe.media_utils import EncodingTier, VideoInfo
from videopipe.records import VideoRecord


class FakeNotifier:
    """Records every notification instead of publishing it."""

    def __init__(self):
        self.events: List[tuple] = []

    @property
    def progress_values(self) -> List[int]:
        return [e[2] for e in self.events if e[0] == "progress"]

    @property
    def failures(self) -> List[tuple]:
        return [e for e in self.events if e[0] == "failed"]

    @property
    def completions(self) -> List[tuple]:
        return [e for e in self.events if e[0] == "complete"]

    async def notify_processing_start(self, video_id: str) -> bool:
        self.events.append(("progress", video_id, 0))
        return True

    async def notify_progress(self, video_id: str, progress: int) -> bool:
        self.events.append(("progress", video_id, progress))
        return True

    def notify_progress_nowait(self, video_id: str, progress: int) -> None:
        self.events.append(("progress", video_id, progress))

    async def notify_complete(
        self,
        video_id: str,
        low_res_path: str,
        thumbnail_path: str,
        metadata: ProcessingMetadata,
    ) -> bool:
        self.events.append(("complete", video_id, low_res_path, thumbnail_path, metadata))
        return True

    async def notify_failed(self, video_id: str, error: str) -> bool:
        self.events.append(("failed", video_id, error))
        return True

    async def drain(self) -> None:
        return None


class FakeVideoStore:
    """
    In-memory record store. With `suspend=True` every read and write yields to
    the event loop, so concurrent handlers interleave the way they do against
    a real database.
    """

    def __init__(self, records: Dict[str, VideoRecord] | None = None, suspend: bool = False):
        self.records: Dict[str, VideoRecord] = dict(records or {})
        self.updates: List[tuple] = []
        self.suspend = suspend
        self._lock = asyncio.Lock()

    async def _io(self) -> None:
        if self.suspend:
            await asyncio.sleep(0)

    async def get(self, video_id: str) -> VideoRecord | None:
        await self._io()
        return self.records.get(video_id)

    async def apply(self, video_id: str, decide):
        async with self._lock:
            await self._io()
            record = self.records.get(video_id)
            if record is None:
                return None
            changes = decide(record)
            if changes is None:
                return record, False
            await self._io()
            self.updates.append((video_id, changes))
            self.records[video_id] = record.model_copy(update=changes)
            return self.records[video_id], True


class RecordingBroadcaster:
    def __init__(self):
        self.events: List[tuple] = []

    async def publish(self, event: str, record: VideoRecord) -> None:
        self.events.append((event, record))


class FakeObjectStore:
    def __init__(self, source_bytes: bytes = b"source-video" * 100, fail_upload: bool = False):
        self.source_bytes = source_bytes
        self.fail_upload = fail_upload
        self.downloads: List[tuple] = []
        self.uploads: Dict[str, bytes] = {}

    async def download(self, object_name: str, local_path: str) -> None:
        self.downloads.append((object_name, local_path))
        with open(local_path, "wb") as f:
            f.write(self.source_bytes)

    async def upload(self, local_path: str, object_name: str) -> None:
        if self.fail_upload:
            raise ConnectionError("upload refused")
        with open(local_path, "rb") as f:
            self.uploads[object_name] = f.read()


class FakeFFmpeg:
    """Writes small placeholder files and replays encoder progress."""

    def __init__(
        self,
        source: VideoInfo,
        output: VideoInfo | None = None,
        fail_probe: bool = False,
        fail_transcode: bool = False,
        progress_steps=(0.0, 25.0, 50.0, 75.0, 100.0),
    ):
        self.source = source
        self.output = output or VideoInfo(854, 480, source.duration)
        self.fail_probe = fail_probe
        self.fail_transcode = fail_transcode
        self.progress_steps = progress_steps
        self.tiers: List[EncodingTier] = []
        self.thumbnail_offsets: List[float] = []
        self.work_dirs: List[str] = []

    async def probe(self, path: str) -> VideoInfo:
        if self.fail_probe:
            raise ProcessingError("No video stream found", phase="probe")
        self.work_dirs.append(os.path.dirname(path))
        if os.path.basename(path).startswith("low"):
            return self.output
        return self.source

    async def transcode(self, input_path, output_path, tier, duration, on_progress=None):
        self.tiers.append(tier)
        if self.fail_transcode:
            raise ProcessingError("ffmpeg transcode exited with 1", phase="encode")
        for step in self.progress_steps:
            if on_progress is not None:
                on_progress(step)
        with open(output_path, "wb") as f:
            f.write(b"low" * 10)

    async def generate_thumbnail(self, input_path, output_path, at_seconds):
        self.thumbnail_offsets.append(at_seconds)
        with open(output_path, "wb") as f:
            f.write(b"webp")


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def object_store():
    return FakeObjectStore()
