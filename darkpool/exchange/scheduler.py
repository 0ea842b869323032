"""
Dark Pool Epoch Scheduler

Drives MatchingEngine.run_epoch() on a fixed interval from a single asyncio
task. Epoch N always finishes before epoch N+1 starts because ticks run
sequentially on the same task.
"""

import asyncio
from typing import Callable, List, Optional

from ..constants import EPOCH_INTERVAL
from ..logger import get_logger
from .engine import MatchingEngine
from .orders import EpochReport

logger = get_logger(__name__)


class EpochScheduler:
    """
    Fixed-interval epoch timer.

    Usage:

        scheduler = EpochScheduler(engine, interval=1.0)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        engine: MatchingEngine,
        interval: float = EPOCH_INTERVAL,
        on_report: Optional[Callable[[EpochReport], None]] = None,
    ):
        if interval <= 0:
            raise ValueError("Epoch interval must be positive")
        self.engine = engine
        self.interval = interval
        self.on_report = on_report
        self.last_report: Optional[EpochReport] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def tick(self) -> EpochReport:
        """Run one epoch immediately."""
        report = self.engine.run_epoch()
        self.last_report = report
        if self.on_report is not None:
            self.on_report(report)
        return report

    def run_epochs(self, count: int) -> List[EpochReport]:
        return [self.tick() for _ in range(count)]

    async def start(self):
        """Start the epoch loop on the running event loop."""
        if self._running:
            logger.warning("EpochScheduler already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._epoch_loop())
        logger.info("Epoch scheduler started (interval %ss)", self.interval)

    async def stop(self):
        """Stop the epoch loop and wait for the current tick to finish."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Epoch scheduler stopped")

    async def _epoch_loop(self):
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in epoch loop: %s", e)
