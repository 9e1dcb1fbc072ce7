"""Consumer side of the notification queue.

Notifications can arrive out of order and more than once. Progress updates are
applied only when their producer timestamp is newer than the last one accepted
for the record; completion and failure are terminal and always applied. Live
clients always receive the record as stored, never the raw message.
"""

import logging
from functools import partial
from typing import Any, Dict

from videopipe.broadcast import (
    EVENT_COMPLETED,
    EVENT_FAILED,
    EVENT_PROGRESS,
    Broadcaster,
)
from videopipe.dto import (
    CompleteNotification,
    FailedNotification,
    Notification,
    ProgressNotification,
    VideoStatus,
)
from videopipe.errors import MalformedMessageError
from videopipe.records import VideoRecord, VideoStore

logger = logging.getLogger(__name__)


def should_apply_progress(record: VideoRecord, timestamp: int) -> bool:
    return record.last_progress_update is None or timestamp > record.last_progress_update


def _terminal_watermark(record: VideoRecord, timestamp: int) -> int:
    # keeps late progress messages from reopening a finished video
    return max(record.last_progress_update or 0, timestamp)


class NotificationRelay:
    def __init__(self, store: VideoStore, broadcaster: Broadcaster):
        self.store = store
        self.broadcaster = broadcaster

    async def handle(self, notification: Notification) -> bool:
        """
        Apply one notification. Returns True when the record was mutated.

        The guard and the write run as one store operation, so concurrent
        handlers for the same video cannot both decide against a stale record.
        """
        video_id = notification.video_id
        if isinstance(notification, ProgressNotification):
            event = EVENT_PROGRESS
            decide = partial(self._progress_changes, notification=notification)
        elif isinstance(notification, CompleteNotification):
            event = EVENT_COMPLETED
            decide = partial(self._complete_changes, notification=notification)
        elif isinstance(notification, FailedNotification):
            event = EVENT_FAILED
            decide = partial(self._failed_changes, notification=notification)
        else:
            raise MalformedMessageError(
                f"Unknown notification type: {getattr(notification, 'type', None)!r}"
            )

        result = await self.store.apply(video_id, decide)
        if result is None:
            logger.warning(
                "Video %s not found, skipping %s notification", video_id, notification.type
            )
            return False

        current, applied = result
        if applied:
            current = await self.store.get(video_id) or current
        else:
            logger.info(
                "Progress update ignored for video %s - timestamp %d is not newer than %s",
                video_id,
                notification.timestamp,
                current.last_progress_update,
            )

        await self.broadcaster.publish(event, current)
        return applied

    def _progress_changes(
        self, record: VideoRecord, notification: ProgressNotification
    ) -> Dict[str, Any] | None:
        if not should_apply_progress(record, notification.timestamp):
            return None
        changes: Dict[str, Any] = {
            "status": notification.status,
            "progress": notification.progress,
            "last_progress_update": notification.timestamp,
        }
        if notification.error:
            changes["error"] = notification.error
        return changes

    def _complete_changes(
        self, record: VideoRecord, notification: CompleteNotification
    ) -> Dict[str, Any]:
        changes: Dict[str, Any] = {
            "status": VideoStatus.DONE,
            "progress": 100,
            "error": None,
            "last_progress_update": _terminal_watermark(record, notification.timestamp),
        }
        if notification.low_res_path:
            changes["low_res_gcs_path"] = notification.low_res_path
        if notification.thumbnail_path:
            changes["thumbnail_gcs_path"] = notification.thumbnail_path
        if notification.metadata is not None:
            changes.update(notification.metadata.model_dump())
        return changes

    def _failed_changes(
        self, record: VideoRecord, notification: FailedNotification
    ) -> Dict[str, Any]:
        return {
            "status": VideoStatus.FAILED,
            "progress": 0,
            "error": notification.error,
            "last_progress_update": _terminal_watermark(record, notification.timestamp),
        }
