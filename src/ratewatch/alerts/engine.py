from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from ratewatch.alerts.rules import AlertRule, is_condition_met
from ratewatch.data.records import current_price
from ratewatch.data.snapshot import Snapshot, SnapshotCache
from ratewatch.store.base import RuleStore
from ratewatch.utils.periodic import PeriodicRunner
from ratewatch.utils.time import utc_now_s
from ratewatch.utils.types import NotificationEvent

log = structlog.get_logger("alerts")


@dataclass(slots=True)
class AlertEngineConfig:
    interval_s: float = 60.0


@dataclass(slots=True)
class EvalStats:
    runs: int = 0
    skipped: int = 0
    unresolved: int = 0
    triggered: int = 0


def alert_event(rule: AlertRule, price: float, now: float) -> NotificationEvent:
    return {
        "destination_id": rule.destination_id,
        "kind": "alert",
        "ts": float(now),
        "payload": {
            "alert_id": rule.id,
            "owner_key": rule.owner_key,
            "scope": rule.scope,
            "slug": rule.asset_slug,
            "category": rule.category,
            "direction": rule.direction,
            "target_price": rule.target_price,
            "price": float(price),
        },
        # one trigger per rule, ever
        "dedupe_key": f"alert:{rule.id}",
    }


class AlertEngine:
    """
    Evaluates armed threshold rules against the current snapshot.

    Per rule, per tick:
      1) resolve the asset's current price; unknown slug / no usable price
         -> skip this tick, rule stays armed
      2) inclusive compare (above: price >= target, below: price <= target)
      3) store.mark_triggered() is the compare-and-set armed -> triggered;
         only the call that wins it emits the notification event

    Evaluation runs are serialized: a call made while another run is in
    progress is dropped.
    """
    def __init__(
        self,
        store: RuleStore,
        cache: SnapshotCache,
        emit: Callable[[NotificationEvent], object],
        cfg: Optional[AlertEngineConfig] = None,
        *,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.store = store
        self.cache = cache
        self.emit = emit
        self.cfg = cfg or AlertEngineConfig()
        self._clock = clock
        self._in_flight = False
        self.stats = EvalStats()
        self._runner = PeriodicRunner("alerts", self.cfg.interval_s, self.tick)

    async def start(self) -> None:
        await self._runner.start()

    async def stop(self) -> None:
        await self._runner.stop()

    async def tick(self) -> list[NotificationEvent]:
        return self.evaluate_all(self.cache.read())

    def evaluate_all(self, snapshot: Snapshot) -> list[NotificationEvent]:
        if self._in_flight:
            self.stats.skipped += 1
            log.info("alert_tick_skipped", reason="evaluation_in_flight")
            return []
        self._in_flight = True
        try:
            return self._evaluate(snapshot)
        finally:
            self._in_flight = False

    def _evaluate(self, snapshot: Snapshot) -> list[NotificationEvent]:
        self.stats.runs += 1
        try:
            rules = self.store.list_active_alerts()
        except Exception as e:
            log.error("alert_rules_unavailable", err=str(e))
            return []

        now = self._clock()
        fired: list[NotificationEvent] = []
        for rule in rules:
            if not rule.armed:
                continue
            record = snapshot.get(rule.category, rule.asset_slug)
            price = current_price(record) if record is not None else None
            if price is None:
                # transient data gap; try again next tick
                self.stats.unresolved += 1
                continue
            if not is_condition_met(rule.direction, price, rule.target_price):
                continue

            try:
                won = self.store.mark_triggered(rule.id, price, now)
            except Exception as e:
                log.error("alert_trigger_failed", alert_id=rule.id, err=str(e))
                continue
            if won is None:
                # already triggered (or deleted) by someone else
                continue

            evt = alert_event(won, price, now)
            self.stats.triggered += 1
            log.info(
                "alert_triggered", alert_id=won.id, slug=won.asset_slug,
                direction=won.direction, target=won.target_price, price=price,
            )
            self._emit(evt)
            fired.append(evt)
        return fired

    def _emit(self, evt: NotificationEvent) -> None:
        # delivery is the messaging layer's problem; never re-arm on failure
        try:
            if self.emit(evt) is False:
                log.warning("alert_event_dropped", dedupe_key=evt["dedupe_key"])
        except Exception as e:
            log.error("alert_emit_failed", dedupe_key=evt["dedupe_key"], err=str(e))
