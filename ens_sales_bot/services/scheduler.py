"""
Scheduler lifecycle and polling loop.

States: stopped, running, force_stopped. Every transition is persisted
before it takes effect; a tick in progress always runs to completion.
"""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from ..core.events import EventBus, EventType
from ..core.exceptions import InvalidTransitionError, StoreError
from ..core.interfaces import SchedulerState, SchedulerStatus, TickReport
from .pipeline import SalePipeline
from .store import SalesStore

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Runs SalePipeline.tick every interval while running.

    Ticks are serialized with a lock, so trigger_sync never overlaps the
    loop. Fetch errors only bump the error counter; the loop keeps going
    until an operator stops it.
    """

    def __init__(
        self,
        pipeline: SalePipeline,
        store: SalesStore,
        interval: Callable[[], float],
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.pipeline = pipeline
        self.store = store
        self.interval = interval
        self.event_bus = event_bus
        self.clock = clock

        self._state = SchedulerState()
        self._task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._next_run_at: Optional[float] = None
        self._closing = False

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.status == SchedulerStatus.RUNNING

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_lock.locked()

    async def _emit(self, event_type: EventType, **data) -> None:
        if self.event_bus:
            await self.event_bus.emit(event_type, **data)

    def _commit(self, state: SchedulerState) -> None:
        """Persist first, then adopt. Raises StoreError and leaves the old state."""
        self.store.save_scheduler_state(state)
        self._state = state

    # ---- lifecycle ----

    async def restore(self) -> SchedulerState:
        """Load the persisted state; resume the loop if it was running."""
        self._state = self.store.load_scheduler_state()
        logger.info(
            f"Restored scheduler: status={self._state.status.value} "
            f"cursor={self._state.cursor} errors={self._state.consecutive_errors}"
        )
        if self.is_running:
            self._launch()
        return self._state

    async def start(self) -> SchedulerState:
        status = self._state.status
        if status == SchedulerStatus.FORCE_STOPPED:
            raise InvalidTransitionError("Scheduler is force-stopped; reset it before starting")
        if status == SchedulerStatus.RUNNING:
            raise InvalidTransitionError("Scheduler is already running")

        self._commit(replace(self._state, status=SchedulerStatus.RUNNING))
        self._launch()
        logger.info(f"Scheduler started (every {self.interval():.0f}s)")
        await self._emit(EventType.SCHEDULER_STARTED, **self.get_status())
        return self._state

    async def stop(self) -> SchedulerState:
        if self._state.status != SchedulerStatus.RUNNING:
            raise InvalidTransitionError(f"Scheduler is {self._state.status.value}, not running")

        self._commit(replace(self._state, status=SchedulerStatus.STOPPED))
        self._wake.set()
        logger.info("Scheduler stopped")
        await self._emit(EventType.SCHEDULER_STOPPED, **self.get_status())
        return self._state

    async def force_stop(self) -> SchedulerState:
        self._commit(replace(self._state, status=SchedulerStatus.FORCE_STOPPED))
        self._wake.set()
        logger.warning("Scheduler force-stopped; reset required before it can start again")
        await self._emit(EventType.SCHEDULER_FORCE_STOPPED, **self.get_status())
        return self._state

    async def reset(self) -> SchedulerState:
        """Clear a force stop (and the error counter)."""
        if self._state.status == SchedulerStatus.RUNNING:
            raise InvalidTransitionError("Stop the scheduler before resetting it")

        self._commit(replace(self._state, status=SchedulerStatus.STOPPED, consecutive_errors=0))
        logger.info("Scheduler reset to stopped")
        await self._emit(EventType.SCHEDULER_RESET, **self.get_status())
        return self._state

    async def reset_errors(self) -> SchedulerState:
        self._commit(replace(self._state, consecutive_errors=0))
        logger.info("Scheduler error counter cleared")
        return self._state

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Stop the loop task without touching the persisted status."""
        task = self._task
        if task is None or task.done():
            return
        self._closing = True
        self._wake.set()
        try:
            await asyncio.wait_for(task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Scheduler loop did not finish in time, cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None

    # ---- ticking ----

    async def trigger_sync(self) -> TickReport:
        """Run a single tick now, outside the schedule."""
        if self._state.status == SchedulerStatus.FORCE_STOPPED:
            raise InvalidTransitionError("Scheduler is force-stopped; reset it before syncing")
        logger.info("Manual sync requested")
        return await self.run_tick()

    async def run_tick(self) -> TickReport:
        async with self._tick_lock:
            result = await self.pipeline.tick(self._state)
            # lifecycle changes made while the tick was in flight win
            new_state = replace(result.state, status=self._state.status)
            try:
                self._commit(new_state)
            except StoreError as e:
                logger.error(f"Could not persist scheduler state after tick: {e}")
                self._state = new_state
            return result.report

    def _launch(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._wake.clear()
        self._task = asyncio.create_task(self._loop())

    async def _loop(self) -> None:
        logger.info("Scheduler loop running")

        while self.is_running and not self._closing:
            try:
                await self.run_tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Unexpected error in scheduler tick: {e}", exc_info=True)
                failed = replace(
                    self._state,
                    consecutive_errors=self._state.consecutive_errors + 1,
                    last_run_at=self.clock(),
                )
                try:
                    self._commit(failed)
                except StoreError as store_error:
                    logger.error(f"Could not persist scheduler error count: {store_error}")
                    self._state = failed

            if not self.is_running or self._closing:
                break

            interval = self.interval()
            self._next_run_at = self.clock() + interval
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=interval)
                self._wake.clear()
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                break

        self._next_run_at = None
        logger.info("Scheduler loop exited")

    def get_status(self) -> Dict[str, Any]:
        status = self._state.to_dict()
        status.update({
            "interval_seconds": self.interval(),
            "next_run_at": self._next_run_at,
            "tick_in_progress": self.tick_in_progress,
        })
        return status
