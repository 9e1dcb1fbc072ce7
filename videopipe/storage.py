# videopipe/storage.py
import asyncio
import logging
import os
from typing import Protocol

from google.cloud import storage

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000"


class ObjectStore(Protocol):
    async def download(self, object_name: str, local_path: str) -> None: ...

    async def upload(self, local_path: str, object_name: str) -> None: ...


class GcsObjectStore:
    """
    Blob access by reference path. The client library is blocking, so every
    call runs in a worker thread.
    """

    def __init__(self, bucket_name: str, client: storage.Client | None = None):
        if not bucket_name:
            raise RuntimeError("GCS_BUCKET is not set")
        self._client = client or storage.Client()
        self._bucket = self._client.bucket(bucket_name)
        logger.info("Initialized GCS object store for bucket %s", bucket_name)

    async def download(self, object_name: str, local_path: str) -> None:
        os.makedirs(os.path.dirname(local_path) or ".", exist_ok=True)
        blob = self._bucket.blob(object_name)
        await asyncio.to_thread(blob.download_to_filename, local_path)
        logger.info("Downloaded gs://%s/%s", self._bucket.name, object_name)

    async def upload(self, local_path: str, object_name: str) -> None:
        blob = self._bucket.blob(object_name)
        blob.cache_control = CACHE_CONTROL
        await asyncio.to_thread(blob.upload_from_filename, local_path)
        logger.info("Uploaded %s to gs://%s/%s", local_path, self._bucket.name, object_name)
