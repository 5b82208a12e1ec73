from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from ratewatch.errors import RuleValidationError
from ratewatch.utils.types import (
    CATEGORIES,
    DIRECTIONS,
    AlertScope,
    AlertState,
    Category,
    Direction,
    normalize_slug,
)


@dataclass(slots=True)
class AlertRule:
    """
    One-shot price threshold.

    state goes "armed" -> "triggered" exactly once; a triggered rule is kept
    for history and never evaluated again.
    - owner_key:      who may delete it (user id, or chat id for group rules)
    - destination_id: where the notification goes (the chat it was set in)
    """
    id: int
    owner_key: str
    destination_id: str
    asset_slug: str
    category: Category
    direction: Direction
    target_price: float
    created_at: float
    scope: AlertScope = "user"
    state: AlertState = "armed"
    triggered_at: Optional[float] = None
    triggered_price: Optional[float] = None

    @property
    def armed(self) -> bool:
        return self.state == "armed"


def validate_rule_input(asset_slug: str, category: str, direction: str, target_price: float) -> tuple[str, float]:
    """Returns (normalized slug, target) or raises RuleValidationError."""
    slug = normalize_slug(asset_slug)
    if not slug:
        raise RuleValidationError("asset slug is required")
    if category not in CATEGORIES:
        raise RuleValidationError(f"unknown category: {category!r}")
    if direction not in DIRECTIONS:
        raise RuleValidationError(f"direction must be one of {DIRECTIONS}, got {direction!r}")
    try:
        target = float(target_price)
    except (TypeError, ValueError):
        raise RuleValidationError(f"target price is not a number: {target_price!r}") from None
    if not math.isfinite(target) or target <= 0.0:
        raise RuleValidationError("target price must be > 0")
    return slug, target


def is_condition_met(direction: Direction, price: float, target: float) -> bool:
    # inclusive at the boundary: price == target fires
    if direction == "above":
        return price >= target
    if direction == "below":
        return price <= target
    raise ValueError(f"unknown direction: {direction!r}")
