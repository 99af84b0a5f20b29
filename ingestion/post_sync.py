"""
Follow-up calls to the ordering service after a successful insertion
"""

import httpx
from dataclasses import dataclass
from typing import Dict, Optional, Sequence
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostSyncCall:
    """One HTTP call made once a pipeline's rows are in the relational store"""
    name: str
    method: str
    path: str


class PostSyncCaller:
    """
    Makes a pipeline's post-sync calls against the ordering service.

    Calls run in order. A failure (transport error, non-2xx) is logged and
    does not stop the next call; none of them can fail the run.
    """

    def __init__(
        self,
        base_url: Optional[str],
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def call(self, hook: PostSyncCall, run_key: str) -> bool:
        """
        Make one call.

        Returns:
            True if the service answered 2xx
        """
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

        url = f"{self.base_url}{hook.path}"
        try:
            response = await self._client.request(
                hook.method,
                url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"[{run_key}] Post-sync call {hook.name} failed: {type(e).__name__}: {e}")
            return False

        if not response.is_success:
            logger.warning(f"[{run_key}] Post-sync call {hook.name} returned {response.status_code}")
            return False

        logger.info(f"[{run_key}] Post-sync call {hook.name} succeeded")
        return True

    async def run_all(self, hooks: Sequence[PostSyncCall], run_key: str) -> Dict[str, bool]:
        """Make every call in order; returns the outcome per call name"""
        if not hooks:
            return {}
        if not self.enabled:
            logger.debug(f"[{run_key}] Post-sync base URL not configured; skipping {len(hooks)} calls")
            return {}
        return {hook.name: await self.call(hook, run_key) for hook in hooks}

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
