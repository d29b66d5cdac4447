import logging
import time
from typing import Optional
from .config import settings
from .state import StateManager

logger = logging.getLogger(__name__)

class CachePruner:
    """Evicts Snapshot Cache entries past the retention horizon, at most once per interval."""

    def __init__(self, state_manager: StateManager):
        self.sm = state_manager

    def is_due(self, now: Optional[float] = None) -> bool:
        now = now if now is not None else time.time()
        return now - self.sm.state.last_prune_at >= settings.CACHE_PRUNE_INTERVAL_SECONDS

    def prune(self, now: Optional[float] = None, force: bool = False) -> int:
        now = now if now is not None else time.time()
        if not force and not self.is_due(now):
            logger.debug("Cache prune not due yet")
            return 0

        removed = self.sm.prune_library(now - settings.CACHE_RETENTION_SECONDS)
        self.sm.state.last_prune_at = now
        self.sm.save()
        if removed:
            logger.info(f"Pruned {removed} cache entries older than {settings.CACHE_RETENTION_SECONDS // 86400} days")
        return removed

    async def run(self) -> int:
        """Best-effort entry point for detached work; never raises."""
        try:
            return self.prune()
        except Exception as e:
            logger.error(f"Cache prune failed: {e}", exc_info=True)
            return 0
