"""
Fire-and-forget client for the external activity-log sink.
Failures are logged and never reach the caller.
"""
import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ActivityLogClient:
    def __init__(self, url: str, timeout: float = 5.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._pending: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = await self._client.post(self.url, json=payload)
            if response.status_code >= 400:
                logger.warning("Activity log rejected entry (%s): %s", response.status_code, response.text[:200])
        except httpx.HTTPError as e:
            logger.warning("Activity log request failed: %s", e)

    def log(self, payload: dict[str, Any]) -> asyncio.Task | None:
        """Schedule the POST and return immediately."""
        if not self.enabled:
            return None
        task = asyncio.create_task(self._post(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()
