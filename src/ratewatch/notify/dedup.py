from __future__ import annotations

import time
from typing import Callable, Mapping, Optional

# Alert keys (`alert:{id}`) must stay suppressed for as long as a rule could
# plausibly be re-emitted; summary keys carry their own timestamp, so they
# only need to outlive a burst of duplicate ticks.
DEFAULT_KIND_TTLS: Mapping[str, float] = {
    "alert": 7 * 24 * 3600.0,
    "summary": 3600.0,
}


def key_kind(key: str) -> str:
    """`alert:42` -> `alert`; keys without a prefix are their own kind."""
    return key.split(":", 1)[0]


class TTLDeduper:
    """
    Remembers dedupe keys for a TTL chosen by the key's kind prefix.

    Bounded: past `max_size`, expired keys are purged first, then the
    oldest-marked keys are evicted.
    """
    def __init__(
        self,
        default_ttl_s: float = 24 * 3600.0,
        ttl_by_kind: Optional[Mapping[str, float]] = None,
        max_size: int = 50_000,
        clock: Callable[[], float] = time.time,
    ):
        if default_ttl_s <= 0 or max_size < 1:
            raise ValueError("default_ttl_s must be > 0 and max_size >= 1")
        self.default_ttl_s = float(default_ttl_s)
        self.ttl_by_kind = dict(DEFAULT_KIND_TTLS if ttl_by_kind is None else ttl_by_kind)
        self.max_size = max_size
        self._clock = clock
        self._expires: dict[str, float] = {}  # insertion order == mark order

    def ttl_for(self, key: str) -> float:
        return self.ttl_by_kind.get(key_kind(key), self.default_ttl_s)

    def check_and_mark(self, key: str) -> bool:
        """True the first time `key` is seen within its TTL (and remembers it), else False."""
        now = self._clock()
        exp = self._expires.get(key)
        if exp is not None and exp >= now:
            return False
        self._expires.pop(key, None)
        self._expires[key] = now + self.ttl_for(key)
        if len(self._expires) > self.max_size:
            self._evict(now)
        return True

    def _evict(self, now: float) -> None:
        for k in [k for k, exp in self._expires.items() if exp < now]:
            del self._expires[k]
        while len(self._expires) > self.max_size:
            del self._expires[next(iter(self._expires))]

    def __contains__(self, key: str) -> bool:
        exp = self._expires.get(key)
        return exp is not None and exp >= self._clock()

    def __len__(self) -> int:
        return len(self._expires)
