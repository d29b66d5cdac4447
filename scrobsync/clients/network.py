import logging
import httpx
from typing import Optional
from ..config import settings

logger = logging.getLogger(__name__)

class NetworkMonitor:
    """Best-effort reachability check: any HTTP response counts as online."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, probe_url: Optional[str] = None):
        self.client = http_client or httpx.AsyncClient()
        self.probe_url = probe_url or settings.CONNECTIVITY_PROBE_URL

    async def is_online(self, timeout: Optional[float] = None) -> bool:
        timeout = timeout if timeout is not None else settings.CONNECTIVITY_TIMEOUT_SECONDS
        try:
            await self.client.head(self.probe_url, timeout=timeout)
            return True
        except httpx.HTTPError as e:
            logger.info(f"Connectivity check failed: {e}")
            return False

    async def close(self):
        await self.client.aclose()
