"""
Repeating background loops (health checks, discovery).
"""
import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


def clamp_interval(name: str, interval: float, max_interval: float) -> float:
    """Caps `interval` at `max_interval`, warning when it does."""
    if interval > max_interval:
        logger.warning("Interval is larger than the maximum value, using the maximum instead",
                       task=name, interval_seconds=interval, max_interval_seconds=max_interval)
        return max_interval
    return interval


class RepeatingTask:
    """
    Runs `pass_fn` once per tick until cancelled. A pass is awaited before the
    next wait starts, so passes never overlap and a slow pass only delays the
    next one.
    """

    def __init__(self, name: str, interval: float, pass_fn: Callable[[], Awaitable[object]], max_interval: float):
        self.name = name
        self.interval = clamp_interval(name, interval, max_interval)
        self.pass_fn = pass_fn
        self.passes = 0
        self.logger = logger.bind(task=name, interval_seconds=self.interval)

    async def _wait_for_tick(self, cancel_event: asyncio.Event) -> bool:
        """Returns True on a tick, False if cancelled first."""
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=self.interval)
        except TimeoutError:
            return True
        return False

    async def run(self, cancel_event: asyncio.Event) -> None:
        self.logger.info("Starting task loop.")
        loop = asyncio.get_running_loop()
        while await self._wait_for_tick(cancel_event):
            started = loop.time()
            try:
                await self.pass_fn()
            except Exception:
                self.logger.exception("Task pass failed")
            self.passes += 1
            self.logger.debug("Task pass finished", elapsed_seconds=round(loop.time() - started, 3))
        self.logger.info("Task loop stopped.")
