"""PostHog session recording snapshot fetcher."""
import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote

import httpx

from sessionreel.config import settings
from sessionreel.constants import SnapshotSource
from sessionreel.models import RawSnapshotBatch
from sessionreel.utils.exceptions import SnapshotFetchError, SourceUnavailableError
from sessionreel.utils.logger import logger

REALTIME_ONLY_MESSAGE = (
    "Only realtime source available; recording is likely very recent. "
    "Try again later when blobs are available (ideally ≥24h old)."
)
NO_SOURCES_MESSAGE = "No snapshot sources found (recording may be too fresh)."


def backoff_delay_ms(attempt: int, base_ms: Optional[int] = None) -> int:
    """
    Delay before retrying after the given failed attempt.

    Linear: the first retry waits ``base_ms``, the second twice that, and so on.

    Args:
        attempt: 1-based number of the attempt that just failed
        base_ms: Base delay, defaults to ``settings.fetch_backoff_ms``

    Returns:
        Delay in milliseconds
    """
    base = settings.fetch_backoff_ms if base_ms is None else base_ms
    return base * max(attempt, 1)


class SnapshotFetcher:
    """Lists and downloads the snapshot blobs of one recording."""

    def __init__(
        self,
        host: str,
        api_key: str,
        project_id: str,
        recording_id: str,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: Optional[int] = None,
        backoff_ms: Optional[int] = None,
        max_keys_per_call: Optional[int] = None,
    ):
        self.host = host.rstrip("/")
        self.project_id = project_id
        self.recording_id = recording_id
        self.max_attempts = max_attempts or settings.fetch_max_attempts
        self.backoff_ms = settings.fetch_backoff_ms if backoff_ms is None else backoff_ms
        self.max_keys_per_call = max_keys_per_call or settings.fetch_max_keys_per_call
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._client = client
        self._consumed = False

    @property
    def recording_url(self) -> str:
        return (
            f"{self.host}/api/projects/{quote(str(self.project_id), safe='')}"
            f"/session_recordings/{quote(str(self.recording_id), safe='')}"
        )

    @property
    def snapshots_url(self) -> str:
        return f"{self.recording_url}/snapshots"

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=settings.fetch_timeout_seconds)

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """GET with bounded retries; raises SnapshotFetchError once attempts run out."""
        last_error: Optional[SnapshotFetchError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await client.get(url, params=params, headers=self.headers)
            except httpx.TransportError as e:
                last_error = SnapshotFetchError(0, f"{type(e).__name__}: {e}", url)
                logger.warning(f"[FETCH] Attempt {attempt}/{self.max_attempts} for {url} failed: {e}")
            else:
                if response.is_success:
                    return response
                last_error = SnapshotFetchError(response.status_code, response.text, url)
                logger.warning(
                    f"[FETCH] Attempt {attempt}/{self.max_attempts} for {url} "
                    f"returned {response.status_code}"
                )

            if attempt < self.max_attempts:
                await asyncio.sleep(backoff_delay_ms(attempt, self.backoff_ms) / 1000)

        raise last_error

    async def list_sources(self, client: Optional[httpx.AsyncClient] = None) -> List[Dict[str, Any]]:
        """Return the raw source descriptors for the recording."""
        if client is None:
            async with self._new_client() as own_client:
                return await self.list_sources(own_client)

        response = await self._get(client, self.snapshots_url, params={"blob_v2": "true"})
        payload = response.json()
        sources = payload.get("sources") if isinstance(payload, dict) else None
        return [s for s in sources or [] if isinstance(s, dict)]

    async def fetch_recording_metadata(self) -> Dict[str, Any]:
        """
        Fetch the recording's metadata (duration, active_seconds, ...).

        Returns:
            The recording JSON object
        """
        if self._client is not None:
            response = await self._get(self._client, self.recording_url)
        else:
            async with self._new_client() as client:
                response = await self._get(client, self.recording_url)
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def iter_batches(self) -> AsyncIterator[RawSnapshotBatch]:
        """
        Yield the recording's snapshot batches in order.

        blob_v2 sources are preferred and fetched in key ranges; legacy blob
        sources are fetched one key at a time. The iterator can only be
        consumed once.

        Raises:
            SourceUnavailableError: If no durable blobs exist yet
            SnapshotFetchError: If a request keeps failing
        """
        if self._consumed:
            raise RuntimeError("Snapshot batches can only be iterated once")
        self._consumed = True

        client = self._client or self._new_client()
        try:
            sources = await self.list_sources(client)
            v2_keys = sorted(
                key for key in (
                    _as_int(s.get("blob_key")) for s in sources
                    if s.get("source") == SnapshotSource.BLOB_V2
                )
                if key is not None
            )
            blob_keys = [
                s["blob_key"] for s in sources
                if s.get("source") == SnapshotSource.BLOB and s.get("blob_key") is not None
            ]

            if v2_keys:
                logger.info(f"[FETCH] Using blob_v2 with {len(v2_keys)} keys for {self.recording_id}")
                async for batch in self._iter_v2(client, v2_keys):
                    yield batch
            elif blob_keys:
                logger.info(f"[FETCH] Using legacy blob with {len(blob_keys)} keys for {self.recording_id}")
                async for batch in self._iter_blob(client, blob_keys):
                    yield batch
            elif any(s.get("source") == SnapshotSource.REALTIME for s in sources):
                raise SourceUnavailableError(REALTIME_ONLY_MESSAGE)
            else:
                raise SourceUnavailableError(NO_SOURCES_MESSAGE)
        finally:
            if self._client is None:
                await client.aclose()

    async def _iter_v2(self, client: httpx.AsyncClient, keys: List[int]) -> AsyncIterator[RawSnapshotBatch]:
        for i in range(0, len(keys), self.max_keys_per_call):
            chunk = keys[i:i + self.max_keys_per_call]
            start_key, end_key = chunk[0], chunk[-1]
            logger.debug(f"[FETCH] blob_v2 keys {start_key}-{end_key}")
            response = await self._get(
                client,
                self.snapshots_url,
                params={
                    "source": SnapshotSource.BLOB_V2,
                    "start_blob_key": start_key,
                    "end_blob_key": end_key,
                },
            )
            lines = [line for line in response.text.splitlines() if line.strip()]
            yield RawSnapshotBatch(
                source=SnapshotSource.BLOB_V2,
                key=f"{start_key}-{end_key}",
                payload=lines,
            )

    async def _iter_blob(self, client: httpx.AsyncClient, keys: List[Any]) -> AsyncIterator[RawSnapshotBatch]:
        for key in keys:
            logger.debug(f"[FETCH] blob key {key}")
            response = await self._get(
                client,
                self.snapshots_url,
                params={"source": SnapshotSource.BLOB, "blob_key": str(key)},
            )
            payload = response.json()
            if isinstance(payload, dict):
                snapshots = payload.get("snapshots")
                payload = snapshots if isinstance(snapshots, list) else [payload]
            elif not isinstance(payload, list):
                payload = [payload]
            yield RawSnapshotBatch(source=SnapshotSource.BLOB, key=key, payload=payload)


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return None
