"""
Firebase Realtime Database source over the REST API.

Reads `<database_url>/<path>.json` with an optional auth token and flattens
the snapshot's children into records.
"""

import httpx
from typing import List, Dict, Any, Optional
from ingestion.base import RecordSource
from core.exceptions import SourceFetchError
import logging

logger = logging.getLogger(__name__)


class FirebaseRecordSource(RecordSource):
    """
    Snapshot reader for the Firebase Realtime Database.

    Features:
    - Token authentication (`auth` query parameter)
    - Per-request timeout
    - Children returned with their key as `firebase_key`

    Attributes:
        database_url: Base URL of the database, e.g. https://<db>.firebaseio.com
        auth_token: Database secret or ID token (optional)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        database_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.database_url = database_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def fetch(self, path: str) -> List[Dict[str, Any]]:
        if not path or not isinstance(path, str):
            raise SourceFetchError(f"Invalid source path: {path!r}", context={"source_path": path})

        url = f"{self.database_url}/{path.strip('/')}.json"
        params = {"auth": self.auth_token} if self.auth_token else {}

        logger.info(f"Fetching records from Firebase at path: {path}")

        try:
            response = await self._get_client().get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise SourceFetchError(
                f"Timed out fetching {path}",
                context={"source_path": path, "timeout": self.timeout},
                original_exception=e
            )
        except httpx.HTTPError as e:
            raise SourceFetchError(
                f"Network error fetching {path}",
                context={"source_path": path},
                original_exception=e
            )

        if response.status_code >= 400:
            raise SourceFetchError(
                f"Firebase returned {response.status_code} for {path}",
                context={
                    "source_path": path,
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                }
            )

        try:
            snapshot = response.json()
        except ValueError as e:
            raise SourceFetchError(
                f"Malformed snapshot for {path}",
                context={"source_path": path},
                original_exception=e
            )

        records = self.snapshot_to_records(snapshot)
        logger.info(f"Fetched {len(records)} records from {path}")
        return records

    @staticmethod
    def snapshot_to_records(snapshot: Any) -> List[Dict[str, Any]]:
        """
        Flatten a snapshot into records.

        Object children become records tagged with their key; arrays (which
        Firebase returns for integer-keyed children) use the index as key.
        Null or scalar children are skipped.
        """
        if snapshot is None:
            return []

        if isinstance(snapshot, dict):
            items = snapshot.items()
        elif isinstance(snapshot, list):
            items = ((str(i), v) for i, v in enumerate(snapshot))
        else:
            raise SourceFetchError(
                "Snapshot is not a collection",
                context={"snapshot_type": type(snapshot).__name__}
            )

        return [
            {**value, "firebase_key": key}
            for key, value in items
            if isinstance(value, dict)
        ]

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
