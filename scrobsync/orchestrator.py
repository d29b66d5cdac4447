import asyncio
import logging
import time
from typing import Optional, Tuple
from .errors import AuthenticationError, NotAuthenticatedError, ScrobbleSyncError
from .engine import SyncEngine
from .history import HistoryMirror
from .models import SyncEvent, SyncResult, SyncTrigger
from .pipeline import SubmissionPipeline
from .pruner import CachePruner
from .state import StateManager
from .status import SyncPhase, SyncStatus, SyncStatusChannel
from .sync_log import SyncLog

logger = logging.getLogger(__name__)

class SyncOrchestrator:
    """
    Single entry point for a sync pass. At most one pass runs at a time; a
    second caller is turned away rather than queued.
    """

    def __init__(self, lastfm, library, state_manager: StateManager, sync_log: SyncLog,
                 status: Optional[SyncStatusChannel] = None):
        self.lastfm = lastfm
        self.library = library
        self.sm = state_manager
        self.sync_log = sync_log
        self.status = status or SyncStatusChannel()

        self.engine = SyncEngine()
        self.pipeline = SubmissionPipeline(lastfm, state_manager)
        self.history = HistoryMirror(lastfm, state_manager)
        self.pruner = CachePruner(state_manager)

        self.is_syncing = False
        self.last_error: Optional[Exception] = None
        self.last_sync_date: Optional[float] = None
        self._maintenance: Optional[asyncio.Task] = None

    @property
    def is_ready(self) -> bool:
        return self.lastfm.is_authenticated and self.library.is_authorized()

    async def perform_sync(self, include_non_critical: bool = True,
                           trigger: SyncTrigger = SyncTrigger.MANUAL) -> Optional[SyncResult]:
        """
        Runs diff, estimate and submit. Returns None when another pass is in
        flight. History refresh and pruning run detached afterwards when
        `include_non_critical` is set; the busy flag is held until they finish.
        """
        if self.is_syncing:
            logger.info("Sync already in progress")
            return None

        self.is_syncing = True
        self.last_error = None
        self.status.syncing()
        detached = False
        try:
            result, event = await self._run_critical_path()
            self.last_error = result.error
            self.last_sync_date = time.time()

            self.sync_log.record(
                event,
                scrobbles_count=result.accepted_count,
                message=str(result.error) if result.error else None,
                trigger=trigger
            )
            self.status.finished(result.accepted_count, result.error)

            if include_non_critical and event != SyncEvent.SKIPPED_NOT_AUTHENTICATED:
                self._maintenance = asyncio.create_task(self._run_non_critical())
                self._maintenance.add_done_callback(self._release)
                detached = True
            return result
        except asyncio.CancelledError:
            logger.warning("Sync pass cancelled before completion")
            self.status.publish(SyncStatus(phase=SyncPhase.IDLE))
            raise
        finally:
            if not detached:
                self.is_syncing = False

    async def _run_critical_path(self) -> Tuple[SyncResult, SyncEvent]:
        if not self.is_ready:
            logger.info(f"Not authenticated - Last.fm: {self.lastfm.is_authenticated}, library: {self.library.is_authorized()}")
            return SyncResult(error=NotAuthenticatedError("Last.fm session or library access missing")), SyncEvent.SKIPPED_NOT_AUTHENTICATED

        try:
            tracks = await self.library.fetch_snapshot()
            logger.info(f"Read {len(tracks)} tracks from the media library")
            diff = self.engine.detect(tracks, self.sm.library_snapshot())
            logger.info(f"{len(diff.candidates)} new plays to scrobble")
            accepted = await self.pipeline.submit(diff)
        except AuthenticationError as e:
            logger.warning(f"Last.fm rejected the session: {e}")
            return SyncResult(error=e), SyncEvent.SKIPPED_NOT_AUTHENTICATED
        except ScrobbleSyncError as e:
            logger.error(f"Sync failed: {e}")
            return SyncResult(error=e), SyncEvent.FAILED

        self.sm.state.last_successful_sync = time.time()
        self.sm.save()
        logger.info(f"Sync completed, {accepted} scrobbles accepted")
        return SyncResult(accepted_count=accepted), SyncEvent.COMPLETED

    async def _run_non_critical(self):
        await self.history.run()
        if self.pruner.is_due():
            await self.pruner.run()

    def _release(self, task: asyncio.Task):
        self.is_syncing = False
        self._maintenance = None

    async def wait_for_maintenance(self):
        """Waits for detached history/prune work, e.g. on shutdown."""
        if self._maintenance is not None:
            await asyncio.gather(self._maintenance, return_exceptions=True)
