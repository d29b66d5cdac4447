import asyncio
import logging
import signal
import sys
import uvicorn

from .config import settings
from .state import StateManager
from .sync_log import SyncLog
from .clients.lastfm_client import LastFmClient
from .clients.media_library import MediaLibrary
from .clients.network import NetworkMonitor
from .orchestrator import SyncOrchestrator
from .scheduler import BackgroundScheduler, ServiceCell, WakeUpHost
from .server import create_app

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class SyncService:
    def __init__(self):
        # The wake-up handler goes in first; it finds the orchestrator through the cell
        self.host = WakeUpHost()
        self.sync_log = SyncLog(settings.SYNC_LOG_PATH)
        self.network = NetworkMonitor()
        self.orchestrator_cell: ServiceCell[SyncOrchestrator] = ServiceCell("SyncOrchestrator")
        self.scheduler = BackgroundScheduler(self.host, self.network, self.sync_log, self.orchestrator_cell)
        self.scheduler.register()

        self.state_manager = StateManager(settings.STATE_PATH)
        self.lastfm = LastFmClient()
        self.library = MediaLibrary()
        self.orchestrator = SyncOrchestrator(self.lastfm, self.library, self.state_manager, self.sync_log)
        self.orchestrator_cell.set(self.orchestrator)

    async def start(self):
        self.scheduler.schedule_next()

        # Foreground pass on launch, like opening the app
        result = await self.orchestrator.perform_sync(include_non_critical=True)
        if result and result.error:
            logger.warning(f"Initial sync did not complete: {result.error}")

        tasks = []
        if settings.HTTP_SERVER_ENABLED:
            app = create_app(self.orchestrator, self.scheduler)
            config = uvicorn.Config(app, host="0.0.0.0", port=settings.HTTP_SERVER_PORT, log_level="warning")
            tasks.append(asyncio.create_task(uvicorn.Server(config).serve()))
        else:
            tasks.append(asyncio.create_task(asyncio.Event().wait()))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            pass
        finally:
            await self.shutdown()

    async def shutdown(self):
        await self.orchestrator.wait_for_maintenance()
        await self.host.close()
        await self.lastfm.close()
        await self.network.close()
        self.state_manager.save()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

def run():
    signal.signal(signal.SIGTERM, handle_sigterm)
    service = SyncService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")

if __name__ == "__main__":
    run()
