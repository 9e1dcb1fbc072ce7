# videopipe/registry.py
import logging

import httpx

from videopipe.errors import ExistenceCheckError

logger = logging.getLogger(__name__)


class VideoRegistryClient:
    """Read-only view of the record-store API used for orphan detection."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout
        )

    async def exists(self, video_id: str) -> bool:
        """
        True on 200, False on 404. Anything else means the question could not
        be answered and raises ExistenceCheckError.
        """
        try:
            response = await self._client.get(f"/api/videos/{video_id}")
        except httpx.HTTPError as e:
            raise ExistenceCheckError(f"Existence check for {video_id} failed: {e}") from e

        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise ExistenceCheckError(
            f"Existence check for {video_id} returned HTTP {response.status_code}"
        )

    async def aclose(self) -> None:
        await self._client.aclose()
