from __future__ import annotations

import itertools
import math
import threading
from dataclasses import replace
from typing import Optional

import structlog

from ratewatch.alerts.rules import AlertRule, validate_rule_input
from ratewatch.errors import RuleValidationError
from ratewatch.store.base import PortfolioEntry, SummarySubscription
from ratewatch.utils.time import utc_now_s
from ratewatch.utils.types import CATEGORIES, AlertScope, Category, Direction, normalize_slug

log = structlog.get_logger("store")


class InMemoryRuleStore:
    """
    Process-local RuleStore.

    Alerts are indexed by id with a secondary owner -> ids index, so lookups,
    owner listings and deletes never scan the whole table. A single lock
    serializes writes; readers get copies, never live records.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._alerts: dict[int, AlertRule] = {}
        self._by_owner: dict[str, set[int]] = {}
        self._summaries: dict[str, SummarySubscription] = {}
        self._portfolio: dict[tuple[str, str], PortfolioEntry] = {}

    # ------------------------------ alerts ------------------------------ #

    def add_alert(
        self,
        owner_key: str,
        asset_slug: str,
        category: Category,
        direction: Direction,
        target_price: float,
        *,
        destination_id: Optional[str] = None,
        scope: AlertScope = "user",
        now: Optional[float] = None,
    ) -> AlertRule:
        slug, target = validate_rule_input(asset_slug, category, direction, target_price)
        owner = str(owner_key)
        with self._lock:
            rule = AlertRule(
                id=next(self._ids),
                owner_key=owner,
                destination_id=str(destination_id) if destination_id is not None else owner,
                asset_slug=slug,
                category=category,
                direction=direction,
                target_price=target,
                created_at=utc_now_s() if now is None else now,
                scope=scope,
            )
            self._alerts[rule.id] = rule
            self._by_owner.setdefault(owner, set()).add(rule.id)
        log.info("alert_added", alert_id=rule.id, owner=owner, slug=slug, direction=direction, target=target)
        return replace(rule)

    def get_alert(self, alert_id: int) -> Optional[AlertRule]:
        with self._lock:
            rule = self._alerts.get(alert_id)
            return replace(rule) if rule is not None else None

    def list_active_alerts(self) -> list[AlertRule]:
        with self._lock:
            return [replace(r) for r in self._alerts.values() if r.armed]

    def list_alerts_by_owner(self, owner_key: str, include_triggered: bool = False) -> list[AlertRule]:
        with self._lock:
            ids = sorted(self._by_owner.get(str(owner_key), ()))
            rules = [self._alerts[i] for i in ids]
            return [replace(r) for r in rules if include_triggered or r.armed]

    def mark_triggered(self, alert_id: int, price: float, now: float) -> Optional[AlertRule]:
        with self._lock:
            rule = self._alerts.get(alert_id)
            if rule is None or not rule.armed:
                return None
            rule.state = "triggered"
            rule.triggered_at = now
            rule.triggered_price = price
            return replace(rule)

    def delete_alert(self, alert_id: int, owner_key: str) -> int:
        owner = str(owner_key)
        with self._lock:
            rule = self._alerts.get(alert_id)
            if rule is None or rule.owner_key != owner:
                return 0
            del self._alerts[alert_id]
            ids = self._by_owner.get(owner)
            if ids is not None:
                ids.discard(alert_id)
                if not ids:
                    del self._by_owner[owner]
        log.info("alert_deleted", alert_id=alert_id, owner=owner)
        return 1

    # ----------------------------- summaries ----------------------------- #

    def set_summary_interval(self, destination_id: str, interval_minutes: int) -> SummarySubscription:
        try:
            minutes = int(interval_minutes)
        except (TypeError, ValueError):
            raise RuleValidationError(f"interval is not a whole number: {interval_minutes!r}") from None
        if minutes <= 0:
            raise RuleValidationError("summary interval must be > 0 minutes")
        dest = str(destination_id)
        with self._lock:
            sub = self._summaries.get(dest)
            if sub is None:
                sub = SummarySubscription(destination_id=dest, interval_minutes=minutes)
                self._summaries[dest] = sub
            else:
                # re-subscribing overwrites the interval and re-enables; cadence is kept
                sub.interval_minutes = minutes
                sub.enabled = True
            return replace(sub)

    def disable_summary(self, destination_id: str) -> bool:
        with self._lock:
            sub = self._summaries.get(str(destination_id))
            if sub is None or not sub.enabled:
                return False
            sub.enabled = False
            return True

    def get_summary(self, destination_id: str) -> Optional[SummarySubscription]:
        with self._lock:
            sub = self._summaries.get(str(destination_id))
            return replace(sub) if sub is not None else None

    def list_active_summaries(self) -> list[SummarySubscription]:
        with self._lock:
            return [replace(s) for s in self._summaries.values() if s.enabled and s.interval_minutes > 0]

    def claim_summary_slot(self, destination_id: str, now: float) -> bool:
        with self._lock:
            sub = self._summaries.get(str(destination_id))
            if sub is None or not sub.enabled or not sub.is_due(now):
                return False
            sub.last_sent_at = now
            return True

    # ----------------------------- portfolio ----------------------------- #

    def set_portfolio_item(self, owner_key: str, asset_slug: str, category: Category, amount: float) -> Optional[PortfolioEntry]:
        """Upsert one holding; amount <= 0 removes it. Returns the entry, or None when removed."""
        slug = normalize_slug(asset_slug)
        if not slug:
            raise RuleValidationError("asset slug is required")
        if category not in CATEGORIES:
            raise RuleValidationError(f"unknown category: {category!r}")
        try:
            qty = float(amount)
        except (TypeError, ValueError):
            raise RuleValidationError(f"amount is not a number: {amount!r}") from None
        if not math.isfinite(qty):
            raise RuleValidationError("amount must be finite")

        key = (str(owner_key), slug)
        with self._lock:
            if qty <= 0:
                self._portfolio.pop(key, None)
                return None
            entry = PortfolioEntry(owner_key=key[0], asset_slug=slug, category=category, amount=qty)
            self._portfolio[key] = entry
            return replace(entry)

    def get_portfolio(self, owner_key: str) -> list[PortfolioEntry]:
        owner = str(owner_key)
        with self._lock:
            return [replace(e) for (o, _), e in self._portfolio.items() if o == owner]
