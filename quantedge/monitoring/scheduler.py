"""
Periodic performance recomputation.

Runs ``PerformanceTracker.recompute`` in its own asyncio task, triggered
by whichever comes first: the wall-clock interval or N ingested events.
Cancelling the task is safe at any await point because snapshots are
append-only.
"""

from datetime import datetime
from typing import Awaitable, Callable, List, Optional
import asyncio
import logging

from ..core.config import PerformanceConfig
from ..models.domain import ModelPerformanceSnapshot, utcnow
from .performance import PerformanceTracker

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[ModelPerformanceSnapshot]], Awaitable[None]]


class PerformanceScheduler:
    """
    Cancellable background task driving performance recomputation.

    Example:
        >>> scheduler = PerformanceScheduler(tracker, PerformanceConfig())
        >>> scheduler.start()
        >>> scheduler.notify_event()   # from the ingestion path
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        tracker: PerformanceTracker,
        config: PerformanceConfig,
        on_snapshots: Optional[SnapshotCallback] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._tracker = tracker
        self._config = config
        self._on_snapshots = on_snapshots
        self._clock = clock
        self._events_since_run = 0
        self._trigger: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the loop on the running event loop."""
        if self.running:
            return self._task
        self._trigger = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="performance-scheduler")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def notify_event(self) -> None:
        """Count one ingested event; triggers a run every N events."""
        self._events_since_run += 1
        if (
            self._trigger is not None
            and self._events_since_run >= self._config.recompute_every_n_events
        ):
            self._trigger.set()

    async def run_once(self) -> List[ModelPerformanceSnapshot]:
        """Recompute now, off the event loop thread."""
        self._events_since_run = 0
        snapshots = await asyncio.to_thread(self._tracker.recompute, self._clock())
        self.runs += 1
        if snapshots and self._on_snapshots is not None:
            await self._on_snapshots(snapshots)
        return snapshots

    async def _run(self) -> None:
        logger.info(
            f"Performance scheduler started (every {self._config.recompute_interval_seconds}s "
            f"or {self._config.recompute_every_n_events} events)"
        )
        while True:
            try:
                await asyncio.wait_for(
                    self._trigger.wait(), timeout=self._config.recompute_interval_seconds
                )
            except asyncio.TimeoutError:
                pass
            self._trigger.clear()
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Performance recomputation failed")
