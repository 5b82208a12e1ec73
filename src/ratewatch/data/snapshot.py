from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

import structlog

from ratewatch.data.records import AssetRecord
from ratewatch.utils.time import seconds_since, utc_now_s
from ratewatch.utils.types import CATEGORIES, Category, normalize_slug

log = structlog.get_logger("snapshot")

_EMPTY: Mapping[str, AssetRecord] = MappingProxyType({})


def _empty_maps() -> dict[Category, Mapping[str, AssetRecord]]:
    return {c: _EMPTY for c in CATEGORIES}


def _empty_stamps() -> dict[Category, Optional[float]]:
    return {c: None for c in CATEGORIES}


@dataclass(frozen=True, slots=True)
class Snapshot:
    """
    Immutable view of the best-known data. Category maps are read-only and
    never mutated after publication; a new Snapshot is built per publish.
    """
    categories: Mapping[Category, Mapping[str, AssetRecord]] = field(default_factory=_empty_maps)
    updated_at: Mapping[Category, Optional[float]] = field(default_factory=_empty_stamps)

    @property
    def last_updated_at(self) -> Optional[float]:
        stamps = [ts for ts in self.updated_at.values() if ts is not None]
        return max(stamps) if stamps else None

    def category(self, category: Category) -> Mapping[str, AssetRecord]:
        return self.categories.get(category, _EMPTY)

    def get(self, category: Category, slug: str) -> Optional[AssetRecord]:
        return self.category(category).get(normalize_slug(slug))

    def total_assets(self) -> int:
        return sum(len(m) for m in self.categories.values())

    def is_empty(self) -> bool:
        return self.total_assets() == 0


class SnapshotCache:
    """
    Last-known-good data per category.

    - read() returns the current Snapshot without waiting on any refresh.
    - publish() swaps exactly one category under a lock and stamps it.
    - Empty results are ignored: stale data is preferred over no data.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot = Snapshot()

    def read(self) -> Snapshot:
        # reference read; Snapshot objects are immutable
        return self._snapshot

    def publish(self, category: Category, data: Mapping[str, AssetRecord], ts: Optional[float] = None) -> bool:
        if category not in CATEGORIES:
            raise ValueError(f"unknown category: {category!r}")
        if not data:
            log.warning("publish_empty_ignored", category=category)
            return False

        frozen = MappingProxyType({normalize_slug(k): v for k, v in data.items()})
        stamp = utc_now_s() if ts is None else float(ts)
        with self._lock:
            prev = self._snapshot
            cats = dict(prev.categories)
            stamps = dict(prev.updated_at)
            cats[category] = frozen
            stamps[category] = stamp
            self._snapshot = Snapshot(
                categories=MappingProxyType(cats),
                updated_at=MappingProxyType(stamps),
            )
        log.debug("category_published", category=category, assets=len(frozen))
        return True

    def age_s(self, category: Category, now: Optional[float] = None) -> Optional[float]:
        ts = self._snapshot.updated_at.get(category)
        if ts is None:
            return None
        return seconds_since(ts, now)
