from __future__ import annotations

import asyncio
from typing import Optional, Protocol, Sequence

import structlog

from ratewatch.notify.dedup import TTLDeduper
from ratewatch.notify.queue import NotifyQueue
from ratewatch.utils.types import NotificationEvent

log = structlog.get_logger("router")


class Notifier(Protocol):
    async def send(self, evt: NotificationEvent) -> object: ...


class NotificationRouter:
    """
    Drains the NotifyQueue and fans each event out to every notifier.

    Events whose dedupe_key was already delivered within that key kind's TTL
    (see TTLDeduper) are dropped, so a re-emit of the same trigger or
    summary is suppressed.
    A failing notifier is logged and does not block the others.
    """
    def __init__(self, queue: NotifyQueue, notifiers: Sequence[Notifier], dedupe: Optional[TTLDeduper] = None):
        self.q = queue
        self.notifiers = list(notifiers)
        self._dedupe = dedupe if dedupe is not None else TTLDeduper()
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.delivered = 0
        self.suppressed = 0

    async def start(self) -> None:
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="notify-router")

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
        while not self._stop.is_set():
            evt = await self.q.get()
            try:
                await self.dispatch(evt)
            finally:
                self.q.done()

    async def dispatch(self, evt: NotificationEvent) -> bool:
        dkey = evt.get("dedupe_key")
        if dkey and not self._dedupe.check_and_mark(dkey):
            self.suppressed += 1
            log.info("notification_suppressed", dedupe_key=dkey)
            return False

        for n in self.notifiers:
            try:
                await n.send(evt)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("notifier_failed", notifier=type(n).__name__, dedupe_key=dkey, err=str(e))
        self.delivered += 1
        return True
