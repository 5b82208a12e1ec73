from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field

import structlog

from ratewatch.utils.types import NotificationEvent

log = structlog.get_logger("notify_queue")


@dataclass(slots=True)
class QueueStats:
    accepted: int = 0
    delivered: int = 0
    dropped_by_kind: Counter = field(default_factory=Counter)

    @property
    def dropped(self) -> int:
        return sum(self.dropped_by_kind.values())


class NotifyQueue:
    """
    Hand-off between the schedulers (producers, never block) and the
    NotificationRouter (single consumer).

    try_put() never waits: when the buffer is full the event is dropped and
    counted per kind. Triggered alerts are not re-armed on a drop, so the
    buffer should be sized well above one tick's worth of events.
    """
    def __init__(self, maxsize: int = 2000):
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._q: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=maxsize)
        self.stats = QueueStats()

    def try_put(self, evt: NotificationEvent) -> bool:
        try:
            self._q.put_nowait(evt)
        except asyncio.QueueFull:
            kind = evt.get("kind", "?")
            self.stats.dropped_by_kind[kind] += 1
            log.warning("notify_queue_full", kind=kind, dedupe_key=evt.get("dedupe_key"), size=self._q.qsize())
            return False
        self.stats.accepted += 1
        return True

    async def get(self) -> NotificationEvent:
        return await self._q.get()

    def done(self) -> None:
        """Mark the event last returned by get() as handled."""
        self.stats.delivered += 1
        self._q.task_done()

    async def drain(self, timeout_s: float) -> bool:
        """Wait until every accepted event has been handled; False on timeout."""
        try:
            await asyncio.wait_for(self._q.join(), timeout=timeout_s)
            return True
        except asyncio.TimeoutError:
            log.warning("notify_queue_drain_timeout", pending=self._q.qsize())
            return False

    def qsize(self) -> int:
        return self._q.qsize()
