"""Retry and idempotency around the transcode pipeline.

Work messages are delivered at least once, so each delivery first confirms the
video still exists and then runs the pipeline with bounded in-place retries.
Once the retry budget is spent the failure becomes a notification; it is never
raised back to the broker.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Protocol

from videopipe.config import OrphanCheckPolicy
from videopipe.dto import WorkMessage
from videopipe.errors import ExistenceCheckError
from videopipe.notifications import Notifier
from videopipe.pipeline import ProcessingResult

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class JobOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    GAVE_UP = "gave_up"
    SKIPPED = "skipped"


class Pipeline(Protocol):
    async def run(self, video_id: str, object_name: str) -> ProcessingResult: ...


class Registry(Protocol):
    async def exists(self, video_id: str) -> bool: ...


def backoff_delay(base_seconds: float, attempt: int) -> float:
    """Delay before retrying after failed attempt number `attempt` (1-based)."""
    return base_seconds * (2 ** (attempt - 1))


class RetryController:
    def __init__(
        self,
        pipeline: Pipeline,
        registry: Registry,
        notifier: Notifier,
        max_retries: int = 3,
        backoff_base_seconds: float = 5.0,
        orphan_check_policy: OrphanCheckPolicy = OrphanCheckPolicy.OPEN,
        sleep: Sleep = asyncio.sleep,
    ):
        self.pipeline = pipeline
        self.registry = registry
        self.notifier = notifier
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.orphan_check_policy = orphan_check_policy
        self._sleep = sleep

    async def video_exists(self, video_id: str) -> bool:
        try:
            return await self.registry.exists(video_id)
        except ExistenceCheckError as e:
            if self.orphan_check_policy is OrphanCheckPolicy.OPEN:
                logger.warning("%s; assuming video %s exists", e, video_id)
                return True
            logger.warning("%s; skipping video %s until it is requeued", e, video_id)
            return False

    async def handle(self, message: WorkMessage) -> JobOutcome:
        video_id = message.video_id

        if not await self.video_exists(video_id):
            logger.warning(
                "Video %s not found, skipping orphaned message for %s",
                video_id,
                message.object_name,
            )
            return JobOutcome.SKIPPED

        attempt = message.retry_count
        if attempt > self.max_retries:
            logger.error(
                "Video %s arrived with retry_count=%d above max %d, giving up",
                video_id,
                attempt,
                self.max_retries,
            )
            await self.notifier.notify_failed(
                video_id, f"Retry budget exhausted after {attempt} attempts"
            )
            return JobOutcome.GAVE_UP

        while True:
            try:
                await self.pipeline.run(video_id, message.object_name)
                return JobOutcome.SUCCEEDED
            except Exception as e:
                attempt += 1
                logger.error(
                    "Processing failed for video %s (attempt %d/%d): %s",
                    video_id,
                    attempt,
                    self.max_retries + 1,
                    e,
                )
                if attempt > self.max_retries:
                    await self.notifier.notify_failed(video_id, str(e) or type(e).__name__)
                    logger.error("Giving up on video %s after %d attempts", video_id, attempt)
                    return JobOutcome.GAVE_UP

                delay = backoff_delay(self.backoff_base_seconds, attempt)
                logger.info("Retrying video %s in %.1fs", video_id, delay)
                await self._sleep(delay)
