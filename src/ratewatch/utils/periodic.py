from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from ratewatch.utils.time import monotonic_s

log = structlog.get_logger("periodic")


class PeriodicRunner:
    """
    Runs `fn` every `interval_s` seconds on its own task.

    Firings are aligned to the start of the previous run. If a run takes
    longer than the interval, the firings it overlapped are dropped (logged
    as `tick_overrun`), never queued up behind it.
    """
    def __init__(
        self,
        name: str,
        interval_s: float,
        fn: Callable[[], Awaitable[object]],
        *,
        run_immediately: bool = True,
    ):
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        self.name = name
        self.interval_s = float(interval_s)
        self._fn = fn
        self._run_immediately = run_immediately
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name=f"periodic-{self.name}")

    async def stop(self) -> None:
        self._stop.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        if not self._run_immediately:
            if await self._wait(self.interval_s):
                return
        while not self._stop.is_set():
            started = monotonic_s()
            try:
                await self._fn()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # keep the schedule alive; the callee owns its own error policy
                log.error("periodic_run_failed", task=self.name, err=str(e), exc_info=True)
            self.runs += 1

            elapsed = monotonic_s() - started
            if elapsed > self.interval_s:
                missed = int(elapsed // self.interval_s)
                self.dropped += missed
                log.warning("tick_overrun", task=self.name, elapsed_s=round(elapsed, 3), dropped=missed)
            if await self._wait(self.interval_s - (elapsed % self.interval_s)):
                return

    async def _wait(self, delay: float) -> bool:
        """Sleep up to `delay`; True if stop() was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False
