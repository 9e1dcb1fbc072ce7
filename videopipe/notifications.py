# videopipe/notifications.py
import asyncio
import logging
from typing import Callable, Protocol, Set

from videopipe.dto import (
    CompleteNotification,
    FailedNotification,
    Notification,
    ProcessingMetadata,
    ProgressNotification,
    VideoStatus,
)
from videopipe.pubsub_client import PubSubClient
from videopipe.utils import now_millis

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify_processing_start(self, video_id: str) -> bool: ...

    async def notify_progress(self, video_id: str, progress: int) -> bool: ...

    def notify_progress_nowait(self, video_id: str, progress: int) -> None: ...

    async def notify_complete(
        self,
        video_id: str,
        low_res_path: str,
        thumbnail_path: str,
        metadata: ProcessingMetadata,
    ) -> bool: ...

    async def notify_failed(self, video_id: str, error: str) -> bool: ...

    async def drain(self) -> None: ...


class NotificationPublisher:
    """
    Worker-side producer for the notification queue.

    Notifications are telemetry: a failed publish is logged and reported
    through the return value, never raised into the pipeline. Timestamps are
    taken when a message is built and are strictly increasing per publisher,
    so two events in the same millisecond still order correctly.
    """

    def __init__(
        self,
        client: PubSubClient,
        topic: str,
        clock: Callable[[], int] = now_millis,
    ):
        self._client = client
        self._topic = topic
        self._clock = clock
        self._last_timestamp = 0
        self._pending: Set[asyncio.Task] = set()

    def _next_timestamp(self) -> int:
        ts = max(self._clock(), self._last_timestamp + 1)
        self._last_timestamp = ts
        return ts

    async def publish(self, notification: Notification) -> bool:
        try:
            await self._client.publish(self._topic, notification.to_bytes())
        except Exception:
            logger.exception(
                "Failed to publish %s notification for video %s",
                notification.type,
                notification.video_id,
            )
            return False
        return True

    def progress_message(
        self,
        video_id: str,
        progress: int,
        status: VideoStatus = VideoStatus.PROCESSING,
        error: str | None = None,
    ) -> ProgressNotification:
        return ProgressNotification(
            video_id=video_id,
            status=status,
            progress=progress,
            error=error,
            timestamp=self._next_timestamp(),
        )

    async def notify_processing_start(self, video_id: str) -> bool:
        return await self.notify_progress(video_id, 0)

    async def notify_progress(self, video_id: str, progress: int) -> bool:
        return await self.publish(self.progress_message(video_id, progress))

    def notify_progress_nowait(self, video_id: str, progress: int) -> None:
        """Schedule a progress publish from synchronous code such as encoder callbacks."""
        message = self.progress_message(video_id, progress)
        task = asyncio.get_running_loop().create_task(self.publish(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled publish to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def notify_complete(
        self,
        video_id: str,
        low_res_path: str,
        thumbnail_path: str,
        metadata: ProcessingMetadata,
    ) -> bool:
        message = CompleteNotification(
            video_id=video_id,
            low_res_path=low_res_path,
            thumbnail_path=thumbnail_path,
            metadata=metadata,
            timestamp=self._next_timestamp(),
        )
        return await self.publish(message)

    async def notify_failed(self, video_id: str, error: str) -> bool:
        message = FailedNotification(
            video_id=video_id,
            error=error,
            timestamp=self._next_timestamp(),
        )
        return await self.publish(message)
