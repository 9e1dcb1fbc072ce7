# relay_main.py
import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from videopipe.broadcast import WebSocketHub
from videopipe.config import Settings
from videopipe.dto import MessageHandler, parse_notification
from videopipe.listener import QueueListener
from videopipe.pubsub_client import PubSubClient
from videopipe.records import FirestoreVideoStore
from videopipe.relay import NotificationRelay

load_dotenv()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("videopipe-relay")

SERVICE_NAME = "videopipe-relay"

hub = WebSocketHub()


def make_notification_handler(relay: NotificationRelay) -> MessageHandler:
    async def handle_notification(data: bytes) -> None:
        notification = parse_notification(data)
        await relay.handle(notification)

    return handle_notification


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings.from_env()
    settings.require_gcp()

    store = FirestoreVideoStore(
        collection=settings.firestore_collection, project=settings.gcp_project_id
    )
    relay = NotificationRelay(store, hub)
    listener = QueueListener(
        PubSubClient(settings.gcp_project_id),
        topic=settings.notification_topic,
        subscription=settings.notification_subscription,
        handler=make_notification_handler(relay),
        max_messages=settings.notification_max_messages,
        ack_deadline_seconds=settings.notification_ack_deadline_seconds,
        reconnect_delay=settings.reconnect_delay_seconds,
    )

    task = asyncio.create_task(listener.run())
    app.state.listener = listener
    logger.info("Notification relay listening on %s", settings.notification_subscription)
    try:
        yield
    finally:
        listener.stop()
        await task
        logger.info("Notification relay stopped")


app = FastAPI(lifespan=lifespan)


@app.get("/")
@app.get("/health")
async def health():
    return {"status": "healthy", "service": SERVICE_NAME}


@app.websocket("/ws")
async def live_updates(websocket: WebSocket):
    await hub.connect(websocket)
    try:
        while True:
            # clients only listen; incoming frames are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)
