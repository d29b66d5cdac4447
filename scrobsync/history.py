import logging
from typing import Optional
from .config import settings
from .errors import ScrobbleSyncError
from .models import ScrobbledTrack
from .state import StateManager

logger = logging.getLogger(__name__)

class HistoryMirror:
    """
    Keeps a local superset of the Last.fm recent-tracks log for offline display.
    Entries that drop off the remote page are kept.
    """

    def __init__(self, client, state_manager: StateManager):
        self.client = client
        self.sm = state_manager

    async def refresh(self, limit: Optional[int] = None):
        """Fetches and upserts the remote log. Returns (inserted, updated); raises on failure."""
        limit = limit or settings.HISTORY_FETCH_LIMIT
        logger.info("Fetching recent scrobbles from Last.fm...")
        scrobbles = await self.client.get_recent_tracks(limit=limit)
        logger.info(f"Fetched {len(scrobbles)} scrobbles from Last.fm")

        inserted, updated = self.sm.upsert_history(ScrobbledTrack.from_remote(s) for s in scrobbles)
        logger.info(f"Inserted {inserted} new, updated {updated} existing tracks")

        try:
            user = await self.client.get_user_info()
            if user:
                self.sm.set_user_info(user)
        except ScrobbleSyncError as e:
            logger.warning(f"Failed to refresh Last.fm profile: {e}")

        self.sm.save()
        return inserted, updated

    async def run(self):
        """Best-effort entry point for detached work; never raises."""
        try:
            return await self.refresh()
        except Exception as e:
            logger.error(f"History refresh failed: {e}", exc_info=True)
            return 0, 0
