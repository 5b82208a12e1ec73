from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ratewatch.alerts.rules import AlertRule
from ratewatch.utils.time import seconds_since
from ratewatch.utils.types import AlertScope, Category, Direction


@dataclass(slots=True)
class SummarySubscription:
    destination_id: str
    interval_minutes: int
    last_sent_at: Optional[float] = None
    enabled: bool = True

    @property
    def interval_s(self) -> float:
        return self.interval_minutes * 60.0

    def is_due(self, now: float) -> bool:
        # never sent -> due on the first tick
        return seconds_since(self.last_sent_at, now) >= self.interval_s


@dataclass(slots=True)
class PortfolioEntry:
    owner_key: str
    asset_slug: str
    category: Category
    amount: float


class RuleStore(Protocol):
    """
    Persistence contract for alert rules, summary subscriptions and
    portfolios. Mutations of a single record must be atomic with respect to
    concurrent readers/writers of that record. Failures raise StoreError.
    """

    # ---- alerts ----
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
    ) -> AlertRule: ...

    def get_alert(self, alert_id: int) -> Optional[AlertRule]: ...

    def list_active_alerts(self) -> list[AlertRule]: ...

    def list_alerts_by_owner(self, owner_key: str, include_triggered: bool = False) -> list[AlertRule]: ...

    def mark_triggered(self, alert_id: int, price: float, now: float) -> Optional[AlertRule]:
        """Armed -> triggered. Returns the updated rule, or None if it was not armed (or is gone)."""
        ...

    def delete_alert(self, alert_id: int, owner_key: str) -> int:
        """Delete only if id AND owner match. Returns rows affected (0 or 1)."""
        ...

    # ---- summaries ----
    def set_summary_interval(self, destination_id: str, interval_minutes: int) -> SummarySubscription: ...

    def disable_summary(self, destination_id: str) -> bool: ...

    def get_summary(self, destination_id: str) -> Optional[SummarySubscription]: ...

    def list_active_summaries(self) -> list[SummarySubscription]: ...

    def claim_summary_slot(self, destination_id: str, now: float) -> bool:
        """If the subscription is enabled and due at `now`, set last_sent_at=now and return True."""
        ...

    # ---- portfolio ----
    def set_portfolio_item(self, owner_key: str, asset_slug: str, category: Category, amount: float) -> Optional[PortfolioEntry]: ...

    def get_portfolio(self, owner_key: str) -> list[PortfolioEntry]: ...
