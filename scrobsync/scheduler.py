import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Generic, Optional, Set, Tuple, TypeVar
from pydantic import BaseModel
from .config import settings
from .errors import AuthenticationError, NotReadyError
from .models import SyncEvent, SyncTrigger
from .sync_log import SyncLog

logger = logging.getLogger(__name__)

T = TypeVar("T")

# share of the execution deadline spent waiting for deferred services
READY_WAIT_FRACTION = 0.25

class ServiceCell(Generic[T]):
    """Holds a service that is constructed after the code that needs it is registered."""

    def __init__(self, name: str):
        self.name = name
        self._value: Optional[T] = None
        self._event = asyncio.Event()

    def set(self, value: T):
        self._value = value
        self._event.set()

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    async def get(self, timeout: Optional[float] = None) -> T:
        if not self._event.is_set():
            try:
                await asyncio.wait_for(self._event.wait(), timeout)
            except asyncio.TimeoutError:
                raise NotReadyError(f"{self.name} is not ready")
        return self._value

class WakeUpRequest(BaseModel):
    identifier: str
    earliest_begin: float  # unix seconds

class BackgroundTask:
    """One granted wake-up. The handler must call set_task_completed() before the deadline."""

    def __init__(self, identifier: str, deadline_seconds: float):
        self.identifier = identifier
        self.deadline_seconds = deadline_seconds
        self.expiration_handler: Optional[Callable[[], None]] = None
        self.completed = False
        self.success: Optional[bool] = None
        self.expired = False

    def set_task_completed(self, success: bool):
        if self.completed:
            return
        self.completed = True
        self.success = success

    def expire(self):
        if self.completed:
            return
        self.expired = True
        if self.expiration_handler is not None:
            self.expiration_handler()
        self.set_task_completed(False)

Handler = Callable[[BackgroundTask], Awaitable[None]]

class WakeUpHost:
    """
    In-process wake-up facility on the asyncio loop. Requests are clamped to
    the minimum interval and a handler that overruns its deadline is expired
    and cancelled.
    """

    def __init__(self, min_interval: Optional[float] = None, deadline_seconds: Optional[float] = None):
        self.min_interval = min_interval if min_interval is not None else settings.BACKGROUND_MIN_INTERVAL_SECONDS
        self.deadline_seconds = deadline_seconds if deadline_seconds is not None else settings.BACKGROUND_TASK_DEADLINE_SECONDS
        self._handlers: Dict[str, Handler] = {}
        self._pending: Dict[str, Tuple[asyncio.TimerHandle, float]] = {}
        self._running: Set[asyncio.Task] = set()

    def register(self, identifier: str, handler: Handler):
        if identifier in self._handlers:
            raise ValueError(f"Handler for {identifier} already registered")
        self._handlers[identifier] = handler

    def submit(self, request: WakeUpRequest):
        if request.identifier not in self._handlers:
            raise ValueError(f"No handler registered for {request.identifier}")

        delay = max(request.earliest_begin - time.time(), self.min_interval)
        self.cancel(request.identifier)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(delay, self.fire, request.identifier)
        self._pending[request.identifier] = (handle, time.time() + delay)
        logger.debug(f"Wake-up {request.identifier} armed in {delay:.0f}s")

    def pending_at(self, identifier: str) -> Optional[float]:
        """Unix time the pending wake-up fires at, if any."""
        entry = self._pending.get(identifier)
        return entry[1] if entry else None

    def cancel(self, identifier: str):
        entry = self._pending.pop(identifier, None)
        if entry:
            entry[0].cancel()

    def fire(self, identifier: str) -> asyncio.Task:
        """Launches the handler now; also what the armed timer calls."""
        self._pending.pop(identifier, None)
        task = BackgroundTask(identifier, self.deadline_seconds)
        runner = asyncio.get_running_loop().create_task(self._run(task, self._handlers[identifier]))
        self._running.add(runner)
        runner.add_done_callback(self._running.discard)
        return runner

    async def _run(self, task: BackgroundTask, handler: Handler) -> BackgroundTask:
        work = asyncio.ensure_future(handler(task))
        try:
            done, _ = await asyncio.wait({work}, timeout=task.deadline_seconds)
        except asyncio.CancelledError:
            work.cancel()
            raise

        if work in done:
            exc = None if work.cancelled() else work.exception()
            if exc is not None:
                logger.error(f"Background handler for {task.identifier} raised: {exc}", exc_info=exc)
            elif not task.completed:
                logger.warning(f"Background handler for {task.identifier} returned without completing the task")
            task.set_task_completed(False)
            return task

        logger.warning(f"Background task {task.identifier} exceeded its {task.deadline_seconds}s deadline")
        task.expire()
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        return task

    async def close(self):
        for identifier in list(self._pending):
            self.cancel(identifier)
        runners = list(self._running)
        for runner in runners:
            runner.cancel()
        await asyncio.gather(*runners, return_exceptions=True)

class SchedulerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    EXPIRED = "expired"

class BackgroundScheduler:
    """
    Periodic background sync. The handler re-arms the next wake-up before
    doing anything else, so the chain survives a run that is killed.
    """

    def __init__(self, host: WakeUpHost, network, sync_log: SyncLog, orchestrator_cell: ServiceCell,
                 identifier: Optional[str] = None):
        self.host = host
        self.network = network
        self.sync_log = sync_log
        self.cell = orchestrator_cell
        self.identifier = identifier or settings.BACKGROUND_TASK_IDENTIFIER
        self.state = SchedulerState.IDLE
        self.last_outcome: Optional[SyncEvent] = None

    def register(self):
        """Call before the orchestrator and its services are constructed."""
        self.host.register(self.identifier, self.handle)
        logger.info(f"Registered background task {self.identifier}")

    def schedule_next(self):
        interval = max(settings.BACKGROUND_REFRESH_INTERVAL_SECONDS, settings.BACKGROUND_MIN_INTERVAL_SECONDS)
        try:
            self.host.submit(WakeUpRequest(identifier=self.identifier, earliest_begin=time.time() + interval))
        except (ValueError, RuntimeError) as e:
            logger.error(f"Failed to schedule background refresh: {e}")
            return
        if self.state == SchedulerState.IDLE:
            self._transition(SchedulerState.SCHEDULED)

    def cancel_pending(self):
        self.host.cancel(self.identifier)
        self._transition(SchedulerState.IDLE)
        logger.info("Cancelled pending background tasks")

    def _transition(self, state: SchedulerState):
        logger.debug(f"Background scheduler {self.state.value} -> {state.value}")
        self.state = state

    async def handle(self, task: BackgroundTask):
        logger.info("Background task started")
        self.schedule_next()
        self._transition(SchedulerState.RUNNING)
        task.expiration_handler = lambda: self._on_expired(task)

        try:
            success = await self._run()
            if task.completed:
                return
            task.set_task_completed(success)
            self._transition(SchedulerState.COMPLETED)
            logger.info(f"Background task completed, success: {success}")
        finally:
            self._transition(SchedulerState.SCHEDULED)

    async def _run(self) -> bool:
        if not await self.network.is_online(settings.CONNECTIVITY_TIMEOUT_SECONDS):
            self._record(SyncEvent.SKIPPED_NO_NETWORK)
            return True

        try:
            orchestrator = await self.cell.get(timeout=self.host.deadline_seconds * READY_WAIT_FRACTION)
        except NotReadyError as e:
            self._record(SyncEvent.FAILED, message=str(e))
            return False

        if not orchestrator.is_ready:
            self._record(SyncEvent.SKIPPED_NOT_AUTHENTICATED)
            return True

        result = await orchestrator.perform_sync(include_non_critical=False, trigger=SyncTrigger.BACKGROUND)
        if result is None:
            logger.info("Foreground sync in progress, nothing to do")
            self.last_outcome = SyncEvent.COMPLETED
            return True

        if isinstance(result.error, AuthenticationError):
            self.last_outcome = SyncEvent.SKIPPED_NOT_AUTHENTICATED
        else:
            self.last_outcome = SyncEvent.COMPLETED if result.succeeded else SyncEvent.FAILED
        return result.succeeded

    def _on_expired(self, task: BackgroundTask):
        logger.warning("Background task expired")
        self._record(SyncEvent.EXPIRED)
        self._transition(SchedulerState.EXPIRED)
        task.set_task_completed(False)

    def _record(self, event: SyncEvent, message: Optional[str] = None):
        self.last_outcome = event
        self.sync_log.record(event, message=message, trigger=SyncTrigger.BACKGROUND)
