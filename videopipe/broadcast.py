# videopipe/broadcast.py
import logging
from typing import Protocol, Set

from fastapi import WebSocket

from videopipe.records import VideoRecord

logger = logging.getLogger(__name__)

EVENT_PROGRESS = "video-progress"
EVENT_COMPLETED = "video-completed"
EVENT_FAILED = "video-failed"


class Broadcaster(Protocol):
    async def publish(self, event: str, record: VideoRecord) -> None: ...


def event_payload(event: str, record: VideoRecord) -> dict:
    return {
        "event": event,
        "video": record.model_dump(mode="json", by_alias=True, exclude_none=True),
    }


class WebSocketHub:
    """Fans record snapshots out to every connected live client."""

    def __init__(self):
        self._clients: Set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        logger.info("Live client connected (%d total)", len(self._clients))

    def disconnect(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        logger.info("Live client disconnected (%d total)", len(self._clients))

    async def publish(self, event: str, record: VideoRecord) -> None:
        payload = event_payload(event, record)
        for websocket in list(self._clients):
            try:
                await websocket.send_json(payload)
            except Exception as e:
                logger.warning("Dropping live client after send failure: %s", e)
                self.disconnect(websocket)
