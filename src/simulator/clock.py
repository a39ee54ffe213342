"""
Simulation Clock

Cancellable periodic driver for simulation ticks.
"""

import asyncio
import inspect
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from src.models.network import utcnow
from src.simulator.errors import InvalidConfiguration

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cooperative cancellation flag. A child token reports cancelled as soon
    as any ancestor is cancelled.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._parent = parent
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self._parent is not None and self._parent.cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)


class SimulationClock:
    """
    Fixed-rate async clock for simulation ticks.

    Ticks never overlap: when a tick overruns the period, the next one
    fires as soon as it returns. A failing tick is logged and skipped.

    Example:
        >>> clock = SimulationClock(interval_seconds=2)
        >>> clock.start(engine.tick)
        >>> ...
        >>> clock.stop()
    """

    def __init__(self, interval_seconds: float = 2.0):
        """
        Initialize the clock.

        Args:
            interval_seconds: Seconds between ticks
        """
        if interval_seconds <= 0:
            raise InvalidConfiguration(f"Tick interval must be positive, got {interval_seconds}")
        self.interval_seconds = interval_seconds

        self._running = False
        self._paused = False
        self._task: Optional[asyncio.Task] = None
        self._callback: Optional[Callable] = None
        self._token: Optional[CancellationToken] = None

        self.next_tick_at: Optional[datetime] = None
        self.last_tick_at: Optional[datetime] = None
        self.tick_count = 0
        self.failed_ticks = 0
        self.overruns = 0

    def start(self, callback: Callable, token: Optional[CancellationToken] = None):
        """
        Start ticking. Must be called from a running event loop.

        Args:
            callback: Sync or async callable invoked on each tick
            token: Cancellation token checked before every tick
        """
        if self._running:
            logger.warning("Clock already running")
            return

        loop = asyncio.get_running_loop()
        self._callback = callback
        self._token = token or CancellationToken()
        self._running = True
        self._paused = False
        self._update_next_tick()

        self._task = loop.create_task(self._run_loop())
        logger.info(f"Clock started. Interval: {self.interval_seconds}s")

    def stop(self):
        """Stop the clock. No tick fires after this returns."""
        was_running = self._running
        self._running = False
        if self._token:
            self._token.cancel()
        if self._task:
            self._task.cancel()
            self._task = None
        self.next_tick_at = None
        if was_running:
            logger.info("Clock stopped")

    def pause(self):
        """Pause ticking without cancelling the loop."""
        self._paused = True
        logger.info("Clock paused")

    def resume(self):
        """Resume after a pause."""
        self._paused = False
        self._update_next_tick()
        logger.info("Clock resumed")

    def is_running(self) -> bool:
        """Check if the clock is running."""
        return self._running

    def is_paused(self) -> bool:
        """Check if the clock is paused."""
        return self._paused

    def set_interval(self, seconds: float):
        """
        Update the interval. Takes effect from the next tick.

        Args:
            seconds: New interval in seconds
        """
        if seconds <= 0:
            raise InvalidConfiguration(f"Tick interval must be positive, got {seconds}")
        self.interval_seconds = seconds
        self._update_next_tick()
        logger.info(f"Clock interval updated to {seconds}s")

    def _update_next_tick(self):
        if self._running and not self._paused:
            self.next_tick_at = utcnow() + timedelta(seconds=self.interval_seconds)

    def _should_stop(self) -> bool:
        return not self._running or (self._token is not None and self._token.cancelled)

    async def _fire(self):
        self.last_tick_at = utcnow()
        self.tick_count += 1
        logger.debug(f"Tick #{self.tick_count}")

        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed_ticks += 1
            logger.error(f"Tick #{self.tick_count} failed: {e}", exc_info=True)

    async def _run_loop(self):
        """Main clock loop."""
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        try:
            while not self._should_stop():
                deadline += self.interval_seconds
                delay = deadline - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
                else:
                    self.overruns += 1
                    await asyncio.sleep(0)

                if self._should_stop():
                    break
                if self._paused:
                    continue

                await self._fire()
                self._update_next_tick()
        except asyncio.CancelledError:
            logger.debug("Clock task cancelled")

    async def run_now(self) -> bool:
        """
        Trigger an immediate tick outside the schedule.

        Returns:
            True if the tick completed without error
        """
        if not self._callback:
            logger.warning("No callback configured")
            return False

        failed_before = self.failed_ticks
        await self._fire()
        return self.failed_ticks == failed_before

    def get_status(self) -> dict:
        """Get clock status."""
        return {
            "running": self._running,
            "paused": self._paused,
            "interval_seconds": self.interval_seconds,
            "next_tick_at": self.next_tick_at.isoformat() if self.next_tick_at else None,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "tick_count": self.tick_count,
            "failed_ticks": self.failed_ticks,
            "overruns": self.overruns,
        }
