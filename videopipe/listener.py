"""Supervised Pub/Sub streaming-pull listener.

The listener moves between three states:

    stopped -> active -> reconnecting -> active -> ... -> stopped

`run()` is the supervising coroutine. Any subscription-level error puts the
listener in `reconnecting`; after a fixed delay it re-creates the
subscription (create-if-absent) and resumes pulling. Only `stop()` ends it.

Messages are handed from the client library's callback thread to the event
loop, acked when the handler returns and nacked when it raises.
"""

import asyncio
import logging
from concurrent.futures import CancelledError, Future
from enum import Enum
from typing import Optional

from google.cloud.pubsub_v1.types import FlowControl

from videopipe.dto import MessageHandler
from videopipe.errors import MalformedMessageError
from videopipe.pubsub_client import PubSubClient

logger = logging.getLogger(__name__)


def _wait_for_pull(future: Future) -> None:
    try:
        future.result()
    except CancelledError:
        # stop() cancelled the streaming pull
        pass


class ListenerState(str, Enum):
    STOPPED = "stopped"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"


class QueueListener:
    def __init__(
        self,
        client: PubSubClient,
        topic: str,
        subscription: str,
        handler: MessageHandler,
        max_messages: int = 1,
        ack_deadline_seconds: int = 60,
        reconnect_delay: float = 10.0,
    ):
        self.client = client
        self.topic = topic
        self.subscription = subscription
        self.handler = handler
        self.max_messages = max_messages
        self.ack_deadline_seconds = ack_deadline_seconds
        self.reconnect_delay = reconnect_delay

        self._state = ListenerState.STOPPED
        self._stop_requested = asyncio.Event()
        self._pull_future: Optional[Future] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.reconnects = 0

    @property
    def state(self) -> ListenerState:
        return self._state

    def _set_state(self, state: ListenerState) -> None:
        if state is not self._state:
            logger.info("Listener %s: %s -> %s", self.subscription, self._state.value, state.value)
            self._state = state

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        try:
            while not self._stop_requested.is_set():
                try:
                    await self._listen()
                except Exception as e:
                    if self._stop_requested.is_set():
                        break
                    logger.error("Subscription %s error: %s", self.subscription, e)
                    self._set_state(ListenerState.RECONNECTING)
                    self.reconnects += 1
                    await self._wait_before_reconnect()
        finally:
            self._cancel_pull()
            self._set_state(ListenerState.STOPPED)

    def stop(self) -> None:
        self._stop_requested.set()
        self._cancel_pull()

    async def _listen(self) -> None:
        sub_path = await asyncio.to_thread(
            self.client.ensure_subscription,
            self.topic,
            self.subscription,
            self.ack_deadline_seconds,
        )
        future = self.client.subscriber.subscribe(
            sub_path,
            callback=self._on_message,
            flow_control=FlowControl(max_messages=self.max_messages),
        )
        self._pull_future = future
        if self._stop_requested.is_set():
            future.cancel()
        self._set_state(ListenerState.ACTIVE)
        logger.info(
            "Listening on %s (max %d in flight)", sub_path, self.max_messages
        )
        try:
            await asyncio.to_thread(_wait_for_pull, future)
        finally:
            self._pull_future = None

        if not self._stop_requested.is_set():
            raise RuntimeError(f"Subscription {sub_path} closed unexpectedly")

    async def _wait_before_reconnect(self) -> None:
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=self.reconnect_delay)
        except asyncio.TimeoutError:
            pass

    def _cancel_pull(self) -> None:
        if self._pull_future is not None:
            self._pull_future.cancel()

    def _on_message(self, message) -> None:
        # runs on the client library's callback thread
        try:
            asyncio.run_coroutine_threadsafe(self.dispatch(message), self._loop)
        except RuntimeError:
            logger.error("Event loop unavailable, nacking message %s", message.message_id)
            message.nack()

    async def dispatch(self, message) -> None:
        try:
            await self.handler(message.data)
        except MalformedMessageError as e:
            logger.error(
                "Malformed message %s on %s: %s", message.message_id, self.subscription, e
            )
            message.nack()
        except Exception:
            logger.exception(
                "Error processing message %s on %s", message.message_id, self.subscription
            )
            message.nack()
        else:
            message.ack()
