import asyncio
import logging
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel
from .config import settings

logger = logging.getLogger(__name__)

class SyncPhase(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"

TERMINAL_PHASES = (SyncPhase.SUCCESS, SyncPhase.EMPTY, SyncPhase.ERROR)

class SyncStatus(BaseModel):
    phase: SyncPhase = SyncPhase.IDLE
    count: int = 0
    message: Optional[str] = None

class SyncStatusChannel:
    """
    Publishes sync status changes to subscribers. Terminal states fall back
    to idle through a scheduled reset event; any newer state cancels it.
    """

    def __init__(self, reset_after: Optional[float] = None):
        self.reset_after = reset_after if reset_after is not None else settings.STATUS_RESET_SECONDS
        self.current = SyncStatus()
        self._subscribers: List[asyncio.Queue] = []
        self._reset_handle: Optional[asyncio.TimerHandle] = None

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self.current)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, status: SyncStatus):
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

        self.current = status
        logger.debug(f"Sync status -> {status.phase.value}")
        for queue in self._subscribers:
            queue.put_nowait(status)

        if status.phase in TERMINAL_PHASES:
            loop = asyncio.get_running_loop()
            self._reset_handle = loop.call_later(self.reset_after, self._reset)

    def _reset(self):
        self._reset_handle = None
        self.publish(SyncStatus(phase=SyncPhase.IDLE))

    # Convenience transitions

    def syncing(self):
        self.publish(SyncStatus(phase=SyncPhase.SYNCING))

    def finished(self, count: int, error: Optional[Exception] = None):
        if error is not None:
            self.publish(SyncStatus(phase=SyncPhase.ERROR, message=str(error)))
        elif count > 0:
            self.publish(SyncStatus(phase=SyncPhase.SUCCESS, count=count))
        else:
            self.publish(SyncStatus(phase=SyncPhase.EMPTY))
