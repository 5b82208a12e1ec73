from __future__ import annotations

from typing import Literal, TypedDict

# ---- market domain ----

Category = Literal["gold", "crypto", "currency"]

# fetch order; also the order summaries list categories in
CATEGORIES: tuple[Category, ...] = ("gold", "crypto", "currency")

# ---- alerting domain ----

Direction = Literal["above", "below"]
DIRECTIONS: tuple[Direction, ...] = ("above", "below")

AlertState = Literal["armed", "triggered"]
AlertScope = Literal["user", "group"]

EventKind = Literal["alert", "summary"]


class NotificationEvent(TypedDict, total=False):
    destination_id: str
    kind: EventKind
    payload: dict
    ts: float
    dedupe_key: str


def normalize_slug(slug: str) -> str:
    return str(slug or "").strip().lower()
