# videopipe/pubsub_client.py
import asyncio
import logging
from typing import Dict, Set, Tuple

from google.api_core.exceptions import AlreadyExists, NotFound
from google.cloud import pubsub_v1

logger = logging.getLogger(__name__)


class PubSubClient:
    """
    Thin wrapper over the Pub/Sub publisher and subscriber clients.

    Topics and subscriptions are created on demand so a fresh project needs no
    provisioning step. The underlying clients are built lazily.
    """

    def __init__(
        self,
        project_id: str,
        publisher: pubsub_v1.PublisherClient | None = None,
        subscriber: pubsub_v1.SubscriberClient | None = None,
        publish_timeout: float = 10.0,
    ):
        self.project_id = project_id
        self.publish_timeout = publish_timeout
        self._publisher = publisher
        self._subscriber = subscriber
        # topic -> (subscription, ack deadline) created alongside it
        self._attached: Dict[str, Tuple[str, int]] = {}
        self._ready_topics: Set[str] = set()

    @property
    def publisher(self) -> pubsub_v1.PublisherClient:
        if self._publisher is None:
            if not self.project_id:
                raise RuntimeError("GCP_PROJECT_ID is not set")
            self._publisher = pubsub_v1.PublisherClient()
            logger.info("Initialized Pub/Sub publisher for project %s", self.project_id)
        return self._publisher

    @property
    def subscriber(self) -> pubsub_v1.SubscriberClient:
        if self._subscriber is None:
            if not self.project_id:
                raise RuntimeError("GCP_PROJECT_ID is not set")
            self._subscriber = pubsub_v1.SubscriberClient()
            logger.info("Initialized Pub/Sub subscriber for project %s", self.project_id)
        return self._subscriber

    def attach_subscription(
        self, topic: str, subscription: str, ack_deadline_seconds: int = 60
    ) -> None:
        """Declare the subscription to create when `topic` has to be created."""
        self._attached[topic] = (subscription, ack_deadline_seconds)

    def topic_path(self, topic: str) -> str:
        return self.publisher.topic_path(self.project_id, topic)

    def subscription_path(self, subscription: str) -> str:
        return self.subscriber.subscription_path(self.project_id, subscription)

    def ensure_topic(self, topic: str) -> str:
        path = self.topic_path(topic)
        try:
            self.publisher.create_topic(request={"name": path})
            logger.info("Created topic %s", path)
        except AlreadyExists:
            pass
        return path

    def ensure_subscription(
        self, topic: str, subscription: str, ack_deadline_seconds: int = 60
    ) -> str:
        topic_path = self.ensure_topic(topic)
        sub_path = self.subscription_path(subscription)
        try:
            self.subscriber.create_subscription(
                request={
                    "name": sub_path,
                    "topic": topic_path,
                    "ack_deadline_seconds": ack_deadline_seconds,
                }
            )
            logger.info("Created subscription %s on %s", sub_path, topic_path)
        except AlreadyExists:
            pass
        return sub_path

    def _prepare_topic(self, topic: str) -> None:
        path = self.topic_path(topic)
        try:
            self.publisher.get_topic(request={"topic": path})
        except NotFound:
            logger.info("Topic %s does not exist, creating it", path)
            if topic in self._attached:
                subscription, ack_deadline = self._attached[topic]
                self.ensure_subscription(topic, subscription, ack_deadline)
            else:
                self.ensure_topic(topic)
        self._ready_topics.add(topic)

    async def publish(self, topic: str, data: bytes) -> str:
        """
        Publish raw bytes to `topic` and wait for the broker's message id.
        """
        if topic not in self._ready_topics:
            await asyncio.to_thread(self._prepare_topic, topic)

        topic_path = self.topic_path(topic)
        future = self.publisher.publish(topic_path, data=data)
        message_id = await asyncio.to_thread(future.result, timeout=self.publish_timeout)
        logger.debug("Published message to %s with message_id=%s", topic_path, message_id)
        return message_id
