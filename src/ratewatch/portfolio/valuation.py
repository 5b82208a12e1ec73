from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from ratewatch.data.records import current_price
from ratewatch.data.snapshot import Snapshot
from ratewatch.store.base import PortfolioEntry


@dataclass(slots=True)
class ValuedHolding:
    entry: PortfolioEntry
    unit_price: Optional[float]
    value: Optional[float]


@dataclass(slots=True)
class PortfolioValuation:
    holdings: list[ValuedHolding] = field(default_factory=list)
    total: float = 0.0
    snapshot_at: Optional[float] = None

    @property
    def missing(self) -> list[PortfolioEntry]:
        """Holdings whose asset has no usable price in the snapshot."""
        return [h.entry for h in self.holdings if h.value is None]


def value_portfolio(entries: Iterable[PortfolioEntry], snapshot: Snapshot) -> PortfolioValuation:
    out = PortfolioValuation(snapshot_at=snapshot.last_updated_at)
    for entry in entries:
        record = snapshot.get(entry.category, entry.asset_slug)
        price = current_price(record) if record is not None else None
        value = price * entry.amount if price is not None else None
        out.holdings.append(ValuedHolding(entry=entry, unit_price=price, value=value))
        if value is not None:
            out.total += value
    return out
