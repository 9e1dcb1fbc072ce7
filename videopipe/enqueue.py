# videopipe/enqueue.py
import logging

from videopipe.dto import WorkMessage
from videopipe.pubsub_client import PubSubClient

logger = logging.getLogger(__name__)


class WorkQueuePublisher:
    """API-tier producer for the work queue."""

    def __init__(self, client: PubSubClient, topic: str):
        self._client = client
        self._topic = topic

    async def publish(self, message: WorkMessage) -> str:
        try:
            message_id = await self._client.publish(self._topic, message.to_bytes())
        except Exception:
            logger.exception("Failed to publish work message for video %s", message.video_id)
            raise
        logger.info("Published message %s for video %s", message_id, message.video_id)
        return message_id

    async def enqueue(
        self,
        video_id: str,
        object_name: str,
        file_name: str,
        content_type: str,
        retry_count: int = 0,
    ) -> str:
        message = WorkMessage.for_attempt(
            video_id=video_id,
            object_name=object_name,
            file_name=file_name,
            content_type=content_type,
            retry_count=retry_count,
        )
        return await self.publish(message)
