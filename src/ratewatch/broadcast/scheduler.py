from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from ratewatch.data.records import AssetRecord, CryptoRecord, current_price
from ratewatch.data.snapshot import Snapshot, SnapshotCache
from ratewatch.store.base import RuleStore, SummarySubscription
from ratewatch.utils.periodic import PeriodicRunner
from ratewatch.utils.time import utc_now_s
from ratewatch.utils.types import CATEGORIES, NotificationEvent

log = structlog.get_logger("broadcast")


@dataclass(slots=True)
class BroadcastConfig:
    tick_s: float = 60.0
    # singleton channel outside the RuleStore; None disables it
    channel_id: Optional[str] = None
    channel_interval_minutes: int = 60
    max_items_per_category: int = 10


def _change(record: AssetRecord) -> Optional[float]:
    if isinstance(record, CryptoRecord):
        return record.change_24h
    return record.day_change


def summary_payload(snapshot: Snapshot, max_items: int = 10) -> dict:
    """Compact per-category price list used by summary messages."""
    cats: dict[str, list[dict]] = {}
    for category in CATEGORIES:
        items = []
        for slug, record in snapshot.category(category).items():
            price = current_price(record)
            if price is None:
                continue
            items.append({"slug": slug, "name": record.name, "price": price, "change": _change(record)})
            if len(items) >= max_items:
                break
        cats[category] = items
    return {"categories": cats, "snapshot_at": snapshot.last_updated_at}


class _ChannelSlot:
    """The global broadcast channel: same due-check as a stored subscription."""
    def __init__(self, channel_id: str, interval_minutes: int):
        if interval_minutes <= 0:
            raise ValueError("channel interval must be > 0 minutes")
        self._lock = threading.Lock()
        self.sub = SummarySubscription(destination_id=channel_id, interval_minutes=interval_minutes)

    def claim(self, now: float) -> bool:
        with self._lock:
            if not self.sub.is_due(now):
                return False
            self.sub.last_sent_at = now
            return True


class BroadcastScheduler:
    """
    Periodic summary sends, at most one per destination per interval.

    last_sent_at is advanced (store.claim_summary_slot) before the event is
    emitted, so a slow or failed delivery cannot cause a burst of resends on
    the following ticks.
    """
    def __init__(
        self,
        store: RuleStore,
        cache: SnapshotCache,
        emit: Callable[[NotificationEvent], object],
        cfg: Optional[BroadcastConfig] = None,
        *,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.store = store
        self.cache = cache
        self.emit = emit
        self.cfg = cfg or BroadcastConfig()
        self._clock = clock
        self._channel = (
            _ChannelSlot(self.cfg.channel_id, self.cfg.channel_interval_minutes)
            if self.cfg.channel_id else None
        )
        self._in_flight = False
        self.sent = 0
        self._runner = PeriodicRunner("broadcast", self.cfg.tick_s, self._periodic)

    @property
    def channel(self) -> Optional[SummarySubscription]:
        return self._channel.sub if self._channel is not None else None

    async def start(self) -> None:
        await self._runner.start()

    async def stop(self) -> None:
        await self._runner.stop()

    async def _periodic(self) -> None:
        self.tick(self.cache.read())

    def tick(self, snapshot: Snapshot, now: Optional[float] = None) -> list[NotificationEvent]:
        if self._in_flight:
            log.info("broadcast_tick_skipped", reason="tick_in_flight")
            return []
        self._in_flight = True
        try:
            return self._tick(snapshot, self._clock() if now is None else now)
        finally:
            self._in_flight = False

    def _tick(self, snapshot: Snapshot, now: float) -> list[NotificationEvent]:
        if snapshot.is_empty():
            # nothing to summarize yet; leave every slot unclaimed
            log.debug("broadcast_snapshot_empty")
            return []

        payload: Optional[dict] = None
        out: list[NotificationEvent] = []

        try:
            subs = self.store.list_active_summaries()
        except Exception as e:
            log.error("summaries_unavailable", err=str(e))
            subs = []

        due: list[str] = []
        for sub in subs:
            try:
                if self.store.claim_summary_slot(sub.destination_id, now):
                    due.append(sub.destination_id)
            except Exception as e:
                log.error("summary_claim_failed", destination=sub.destination_id, err=str(e))
        if self._channel is not None and self._channel.claim(now):
            due.append(self._channel.sub.destination_id)

        for dest in due:
            if payload is None:
                payload = summary_payload(snapshot, self.cfg.max_items_per_category)
            evt: NotificationEvent = {
                "destination_id": dest,
                "kind": "summary",
                "ts": float(now),
                "payload": payload,
                "dedupe_key": f"summary:{dest}:{int(now)}",
            }
            try:
                accepted = self.emit(evt)
            except Exception as e:
                log.error("summary_emit_failed", destination=dest, err=str(e))
                continue
            if accepted is False:
                # slot stays claimed; next summary goes out on the following interval
                log.warning("summary_event_dropped", destination=dest, dedupe_key=evt["dedupe_key"])
                continue
            self.sent += 1
            out.append(evt)
        if out:
            log.info("summaries_emitted", count=len(out))
        return out
