"""
Best-effort run status push to the monitoring endpoint
"""

import httpx
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class StatusReporter:
    """
    POSTs {table_name, status, unique_key[, error_message]} to the status endpoint.

    Failures (transport errors, non-2xx) are logged and reported as False;
    they are never retried and never raised.
    """

    def __init__(
        self,
        endpoint_url: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.endpoint_url = endpoint_url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint_url)

    async def report(
        self,
        table_name: str,
        status: str,
        unique_key: str,
        error_message: Optional[str] = None
    ) -> bool:
        """
        Push one status update.

        Returns:
            True if the endpoint answered 2xx
        """
        if not self.enabled:
            logger.debug(f"Status endpoint not configured; skipping {status} for {unique_key}")
            return False

        body = {"table_name": table_name, "status": status, "unique_key": unique_key}
        if error_message:
            body["error_message"] = error_message

        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

        try:
            response = await self._client.post(self.endpoint_url, json=body, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Sync status update failed for {unique_key}: {type(e).__name__}: {e}")
            return False

        if not response.is_success:
            logger.warning(
                f"Sync status endpoint returned {response.status_code} for {unique_key} ({status})"
            )
            return False

        logger.info(f"Sync status updated to {status} for {unique_key}")
        return True

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
