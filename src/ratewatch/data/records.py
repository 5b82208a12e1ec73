from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, ClassVar, Mapping, Optional, Union

from ratewatch.errors import MalformedPayloadError
from ratewatch.utils.types import Category, normalize_slug

# ---- per-category records ----


@dataclass(frozen=True, slots=True)
class GoldRecord:
    """Gold bar / coin quote. Prices are in toman."""
    category: ClassVar[Category] = "gold"

    slug: str
    name: str = ""
    price: Optional[float] = None
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    day_change: Optional[float] = None      # percent
    real_price: Optional[float] = None
    bubble: Optional[float] = None
    bubble_per: Optional[float] = None


@dataclass(frozen=True, slots=True)
class CryptoRecord:
    """Crypto quote: toman price plus USD price and period changes (percent)."""
    category: ClassVar[Category] = "crypto"

    slug: str
    name: str = ""
    toman: Optional[float] = None
    price_usd: Optional[float] = None
    change_1h: Optional[float] = None
    change_24h: Optional[float] = None
    change_7d: Optional[float] = None
    change_30d: Optional[float] = None
    change_90d: Optional[float] = None
    change_365d: Optional[float] = None
    toman_24h_change: Optional[float] = None


@dataclass(frozen=True, slots=True)
class CurrencyRecord:
    """Fiat currency quote in toman (sell/buy), plus its USD cross rate."""
    category: ClassVar[Category] = "currency"

    slug: str
    name: str = ""
    sell: Optional[float] = None
    buy: Optional[float] = None
    usd_rate: Optional[float] = None
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    day_change: Optional[float] = None


AssetRecord = Union[GoldRecord, CryptoRecord, CurrencyRecord]
AssetMap = Mapping[str, AssetRecord]


def _valid_price(v: Optional[float]) -> Optional[float]:
    if v is None or not math.isfinite(v) or v <= 0.0:
        return None
    return v


def current_price(record: AssetRecord) -> Optional[float]:
    """
    Price (toman) used for alerts and portfolio valuation, or None when the
    record has no usable price.
      gold     -> price
      crypto   -> toman
      currency -> sell
    """
    if isinstance(record, GoldRecord):
        return _valid_price(record.price)
    if isinstance(record, CryptoRecord):
        return _valid_price(record.toman)
    if isinstance(record, CurrencyRecord):
        return _valid_price(record.sell)
    raise TypeError(f"unsupported record type: {type(record).__name__}")


# ---- payload parsing ----


def _num(v: Any) -> Optional[float]:
    """Best-effort float: accepts numbers and numeric strings like '1,234.5'."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        f = float(v)
    else:
        try:
            f = float(str(v).replace(",", "").strip())
        except ValueError:
            return None
    return f if math.isfinite(f) else None


def _gold(slug: str, m: dict) -> GoldRecord:
    return GoldRecord(
        slug=slug,
        name=str(m.get("name") or ""),
        price=_num(m.get("price")),
        open=_num(m.get("open")),
        high=_num(m.get("high")),
        low=_num(m.get("low")),
        day_change=_num(m.get("dayChange")),
        real_price=_num(m.get("real_price")),
        bubble=_num(m.get("bubble")),
        bubble_per=_num(m.get("bubble_per")),
    )


def _crypto(slug: str, m: dict) -> CryptoRecord:
    return CryptoRecord(
        slug=slug,
        name=str(m.get("name") or ""),
        toman=_num(m.get("toman")),
        price_usd=_num(m.get("price")),
        change_1h=_num(m.get("change_1h")),
        change_24h=_num(m.get("change_24h")),
        change_7d=_num(m.get("change_7d")),
        change_30d=_num(m.get("change_30d")),
        change_90d=_num(m.get("change_90d")),
        change_365d=_num(m.get("change_365d")),
        toman_24h_change=_num(m.get("toman24hchange")),
    )


def _currency(slug: str, m: dict) -> CurrencyRecord:
    return CurrencyRecord(
        slug=slug,
        name=str(m.get("name") or ""),
        sell=_num(m.get("sell")),
        buy=_num(m.get("buy")),
        usd_rate=_num(m.get("dolar_rate")),
        open=_num(m.get("open")),
        high=_num(m.get("high")),
        low=_num(m.get("low")),
        day_change=_num(m.get("dayChange")),
    )


_BUILDERS = {
    "gold": _gold,
    "crypto": _crypto,
    "currency": _currency,
}


def parse_category_payload(category: Category, payload: Any) -> dict[str, AssetRecord]:
    """
    Turn one upstream category payload into {slug: record}.

    The upstream returns either an object keyed by asset or a plain array.
    Items without a slug (and non-dict items) are skipped; slugs are
    lowercased so lookups are case-insensitive. Later duplicates win.
    """
    build = _BUILDERS.get(category)
    if build is None:
        raise ValueError(f"unknown category: {category!r}")

    if isinstance(payload, dict):
        items = list(payload.values())
    elif isinstance(payload, list):
        items = payload
    else:
        raise MalformedPayloadError(category, f"expected object or array, got {type(payload).__name__}")

    out: dict[str, AssetRecord] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        slug = normalize_slug(item.get("slug"))
        if not slug:
            continue
        out[slug] = build(slug, item)
    return out
