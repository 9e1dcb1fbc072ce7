# main.py
import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from videopipe.config import Settings
from videopipe.controller import RetryController
from videopipe.dto import MessageHandler, WorkMessage
from videopipe.ffmpeg import FFmpeg
from videopipe.listener import QueueListener
from videopipe.media_utils import parse_resolution
from videopipe.notifications import NotificationPublisher
from videopipe.pipeline import TranscodePipeline
from videopipe.pubsub_client import PubSubClient
from videopipe.registry import VideoRegistryClient
from videopipe.storage import GcsObjectStore

load_dotenv()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("videopipe-worker")

SERVICE_NAME = "videopipe-worker"


def make_work_handler(controller: RetryController) -> MessageHandler:
    async def handle_work_message(data: bytes) -> None:
        # a MalformedMessageError here nacks the delivery
        message = WorkMessage.from_bytes(data)
        logger.info(
            "Work message: video=%s object=%s action=%s retry_count=%d",
            message.video_id,
            message.object_name,
            message.action.value,
            message.retry_count,
        )
        outcome = await controller.handle(message)
        logger.info("Video %s handled: %s", message.video_id, outcome.value)

    return handle_work_message


def build_listener(settings: Settings) -> tuple[QueueListener, VideoRegistryClient]:
    client = PubSubClient(
        settings.gcp_project_id, publish_timeout=settings.publish_timeout_seconds
    )
    client.attach_subscription(
        settings.notification_topic,
        settings.notification_subscription,
        settings.notification_ack_deadline_seconds,
    )
    notifier = NotificationPublisher(client, settings.notification_topic)

    pipeline = TranscodePipeline(
        store=GcsObjectStore(settings.gcs_bucket),
        notifier=notifier,
        ffmpeg=FFmpeg(
            ffmpeg_path=settings.ffmpeg_path,
            ffprobe_path=settings.ffprobe_path,
            preset=settings.ffmpeg_preset,
            threads=settings.ffmpeg_threads,
            target_resolution=parse_resolution(settings.ffmpeg_target_resolution),
        ),
        work_root=settings.work_dir,
        max_bitrate_kbps=settings.ffmpeg_max_bitrate,
    )
    registry = VideoRegistryClient(
        settings.server_base_url, timeout=settings.existence_check_timeout_seconds
    )
    controller = RetryController(
        pipeline=pipeline,
        registry=registry,
        notifier=notifier,
        max_retries=settings.max_retry_attempts,
        backoff_base_seconds=settings.retry_backoff_seconds,
        orphan_check_policy=settings.orphan_check_policy,
    )

    listener = QueueListener(
        client,
        topic=settings.video_processing_topic,
        subscription=settings.video_processing_subscription,
        handler=make_work_handler(controller),
        max_messages=settings.worker_max_messages,
        ack_deadline_seconds=settings.worker_ack_deadline_seconds,
        reconnect_delay=settings.reconnect_delay_seconds,
    )
    return listener, registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    settings.require_gcp()
    listener, registry = build_listener(settings)

    task = asyncio.create_task(listener.run())
    app.state.listener = listener
    logger.info("Worker is ready and listening on %s", settings.video_processing_subscription)
    try:
        yield
    finally:
        listener.stop()
        await task
        await registry.aclose()
        logger.info("Worker stopped")


app = FastAPI(lifespan=lifespan)


@app.get("/")
@app.get("/health")
async def health():
    return {"status": "healthy", "service": SERVICE_NAME}
