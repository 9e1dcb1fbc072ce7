"""Transcode pipeline: one attempt at turning a source upload into a delivery
file plus thumbnail.

Progress is reported on a fixed scale:

    0  start          30-70  encoding (encoder percentage remapped)
    20 downloaded     70     encoded
    30 probed         85     thumbnail ready
                      95     uploaded

followed by a completion notification carrying the final metadata.
"""

import asyncio
import logging
import os
import re
import shutil
import tempfile
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from videopipe.dto import ProcessingMetadata
from videopipe.errors import ProcessingError
from videopipe.ffmpeg import FFmpeg
from videopipe.media_utils import remap_progress, select_tier, thumbnail_timestamp
from videopipe.notifications import Notifier
from videopipe.storage import ObjectStore
from videopipe.utils import derived_object_names, source_extension

logger = logging.getLogger(__name__)

PROGRESS_DOWNLOADED = 20
PROGRESS_PROBED = 30
PROGRESS_ENCODED = 70
PROGRESS_THUMBNAIL = 85
PROGRESS_UPLOADED = 95


@dataclass(frozen=True)
class ProcessingResult:
    low_res_path: str
    thumbnail_path: str
    metadata: ProcessingMetadata


@asynccontextmanager
async def working_directory(root: str, video_id: str) -> AsyncIterator[str]:
    """
    Private scratch directory for one attempt, removed on every exit path.
    Two concurrent attempts for the same video get different directories.
    """
    os.makedirs(root, exist_ok=True)
    prefix = re.sub(r"[^A-Za-z0-9_.-]", "_", video_id) + "-"
    path = tempfile.mkdtemp(prefix=prefix, dir=root)
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError:
            logger.exception("Failed to clean up working directory %s", path)


class _EncodeProgress:
    """Encoder callback that forwards only increases inside (start, end)."""

    def __init__(self, notifier: Notifier, video_id: str, start: int, end: int):
        self.notifier = notifier
        self.video_id = video_id
        self.start = start
        self.end = end
        self.last = start

    def __call__(self, percent: float) -> None:
        value = remap_progress(percent, self.start, self.end)
        if self.last < value < self.end:
            self.last = value
            self.notifier.notify_progress_nowait(self.video_id, value)


class TranscodePipeline:
    def __init__(
        self,
        store: ObjectStore,
        notifier: Notifier,
        ffmpeg: FFmpeg,
        work_root: str,
        max_bitrate_kbps: int | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.ffmpeg = ffmpeg
        self.work_root = work_root
        self.max_bitrate_kbps = max_bitrate_kbps

    async def run(self, video_id: str, object_name: str) -> ProcessingResult:
        """
        Process one source object. Any failure surfaces as ProcessingError;
        the working directory is gone by the time this returns or raises.
        """
        async with working_directory(self.work_root, video_id) as work_dir:
            try:
                return await self._process(video_id, object_name, work_dir)
            except ProcessingError:
                raise
            except Exception as e:
                raise ProcessingError(str(e) or type(e).__name__) from e
            finally:
                await self.notifier.drain()

    async def _process(
        self, video_id: str, object_name: str, work_dir: str
    ) -> ProcessingResult:
        ext = source_extension(object_name)
        original_path = os.path.join(work_dir, f"original{ext}")
        low_res_path = os.path.join(work_dir, f"low{ext}")
        thumbnail_path = os.path.join(work_dir, "thumbnail.webp")
        low_res_name, thumbnail_name = derived_object_names(object_name)

        await self.notifier.notify_processing_start(video_id)

        logger.info("Downloading original video %s for %s", object_name, video_id)
        try:
            await self.store.download(object_name, original_path)
        except Exception as e:
            raise ProcessingError(f"Download failed: {e}", phase="download") from e
        await self.notifier.notify_progress(video_id, PROGRESS_DOWNLOADED)

        source = await self.ffmpeg.probe(original_path)
        await self.notifier.notify_progress(video_id, PROGRESS_PROBED)

        tier = select_tier(source.height, self.max_bitrate_kbps)
        at_seconds = thumbnail_timestamp(source.duration)
        logger.info(
            "Encoding %s: source=%s duration=%.2fs bitrate=%dk crf=%d thumbnail_at=%.2fs",
            video_id,
            source.resolution,
            source.duration,
            tier.bitrate_kbps,
            tier.crf,
            at_seconds,
        )

        thumbnail_task = asyncio.create_task(
            self.ffmpeg.generate_thumbnail(original_path, thumbnail_path, at_seconds)
        )
        try:
            await self.ffmpeg.transcode(
                original_path,
                low_res_path,
                tier,
                source.duration,
                on_progress=_EncodeProgress(
                    self.notifier, video_id, PROGRESS_PROBED, PROGRESS_ENCODED
                ),
            )
            await self.notifier.drain()
            await self.notifier.notify_progress(video_id, PROGRESS_ENCODED)

            await thumbnail_task
            await self.notifier.notify_progress(video_id, PROGRESS_THUMBNAIL)
        finally:
            thumbnail_task.cancel()
            await asyncio.gather(thumbnail_task, return_exceptions=True)

        output = await self.ffmpeg.probe(low_res_path)

        logger.info("Uploading processed files for %s", video_id)
        results = await asyncio.gather(
            self.store.upload(low_res_path, low_res_name),
            self.store.upload(thumbnail_path, thumbnail_name),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise ProcessingError(f"Upload failed: {result}", phase="upload") from result
        await self.notifier.notify_progress(video_id, PROGRESS_UPLOADED)

        metadata = ProcessingMetadata(
            size_bytes=os.path.getsize(original_path),
            low_res_size_bytes=os.path.getsize(low_res_path),
            original_resolution=source.resolution,
            low_resolution=output.resolution,
            duration_seconds=source.duration,
        )
        await self.notifier.notify_complete(video_id, low_res_name, thumbnail_name, metadata)
        logger.info("Processing completed for video %s", video_id)

        return ProcessingResult(
            low_res_path=low_res_name,
            thumbnail_path=thumbnail_name,
            metadata=metadata,
        )
