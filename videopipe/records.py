# videopipe/records.py
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from google.cloud import firestore

from videopipe.dto import VideoStatus, WireModel

logger = logging.getLogger(__name__)


class VideoRecord(WireModel):
    """
    Video document as stored by the record store (camelCase keys).
    The worker never writes it; only the notification relay does.
    """

    id: str
    status: VideoStatus = VideoStatus.QUEUED
    progress: int = 0
    original_file_name: str | None = None
    original_gcs_path: str | None = None
    low_res_gcs_path: str | None = None
    thumbnail_gcs_path: str | None = None
    size_bytes: int | None = None
    low_res_size_bytes: int | None = None
    original_resolution: str | None = None
    low_resolution: str | None = None
    duration_seconds: float | None = None
    error: str | None = None
    retry_count: int = 0
    last_retry_at: datetime | None = None
    # timestamp of the last accepted notification, never decreases
    last_progress_update: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def to_document_fields(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Translate record attribute names to stored (camelCase) keys."""
    fields = VideoRecord.model_fields
    out = {}
    for name, value in changes.items():
        alias = fields[name].alias or name
        out[alias] = value.value if isinstance(value, VideoStatus) else value
    return out


# record -> changes to write, or None to leave it untouched
ChangeFn = Callable[[VideoRecord], Optional[Dict[str, Any]]]


class VideoStore(Protocol):
    async def get(self, video_id: str) -> VideoRecord | None: ...

    async def apply(
        self, video_id: str, decide: ChangeFn
    ) -> Optional[Tuple[VideoRecord, bool]]: ...


def _snapshot_to_record(snapshot) -> VideoRecord:
    data = snapshot.to_dict() or {}
    data.setdefault("id", snapshot.id)
    return VideoRecord.model_validate(data)


class FirestoreVideoStore:
    def __init__(
        self,
        collection: str = "videos",
        client: firestore.AsyncClient | None = None,
        project: str | None = None,
    ):
        self._db = client or firestore.AsyncClient(project=project or None)
        self._collection = collection
        logger.info("Initialized Firestore video store on collection %s", collection)

    def _ref(self, video_id: str) -> firestore.AsyncDocumentReference:
        return self._db.collection(self._collection).document(video_id)

    async def get(self, video_id: str) -> VideoRecord | None:
        snapshot = await self._ref(video_id).get()
        if not snapshot.exists:
            return None
        return _snapshot_to_record(snapshot)

    async def apply(
        self, video_id: str, decide: ChangeFn
    ) -> Optional[Tuple[VideoRecord, bool]]:
        """
        Read, decide and write in one transaction. Firestore retries the
        transaction on contention, so `decide` always sees the latest document.

        Returns None when the record does not exist, otherwise the record as
        written (or as read, when nothing changed) and whether it was changed.
        """
        ref = self._ref(video_id)

        @firestore.async_transactional
        async def guarded_update(transaction):
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return None
            record = _snapshot_to_record(snapshot)
            changes = decide(record)
            if changes is None:
                return record, False
            data = to_document_fields(changes)
            data["updatedAt"] = firestore.SERVER_TIMESTAMP
            transaction.update(ref, data)
            return record.model_copy(update=changes), True

        return await guarded_update(self._db.transaction())
