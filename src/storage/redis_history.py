# src/storage/redis_history.py
from __future__ import annotations

import math
from typing import List, Mapping, Optional, Tuple

import structlog
from redis.asyncio import Redis
from redis.exceptions import ResponseError

from ratewatch.data.records import AssetRecord, current_price
from ratewatch.utils.time import utc_now_s
from ratewatch.utils.types import Category, normalize_slug

log = structlog.get_logger("price_history")

RETENTION_MS = 30 * 24 * 60 * 60 * 1000  # keep 30 days


def key(category: str, slug: str) -> str:
    # ts:{CATEGORY}:{SLUG}:price
    return f"ts:{category}:{normalize_slug(slug)}:price"


def _finite(x) -> bool:
    return isinstance(x, (int, float)) and math.isfinite(x)


class RedisPriceHistory:
    """
    Append-only price history in RedisTimeSeries, one series per asset.

    TS.ADD creates missing series on the fly with the retention and labels
    given here, so there is no separate bootstrap step. Old points expire
    through the series retention.
    """
    def __init__(self, redis: Redis, retention_ms: int = RETENTION_MS):
        self.redis = redis
        self.retention_ms = retention_ms

    async def append_category(self, category: Category, records: Mapping[str, AssetRecord], ts: float) -> int:
        ts_ms = int(ts * 1000)
        p = self.redis.pipeline()
        n = 0
        for slug, record in records.items():
            price = current_price(record)
            if not _finite(price):
                continue
            p.execute_command(
                "TS.ADD", key(category, slug), ts_ms, price,
                "RETENTION", self.retention_ms,
                "ON_DUPLICATE", "LAST",
                "LABELS", "category", category, "slug", normalize_slug(slug),
            )
            n += 1
        if n:
            await p.execute()
        log.debug("history_appended", category=category, points=n)
        return n

    async def get_history(
        self,
        category: Category,
        slug: str,
        hours: float = 24,
        now: Optional[float] = None,
    ) -> List[Tuple[float, float]]:
        """
        Points in the last `hours`, ascending: [(epoch_s, price), ...].
        An unknown series yields an empty list.
        """
        end_s = utc_now_s() if now is None else now
        start_ms = max(0, int((end_s - hours * 3600) * 1000))
        end_ms = int(end_s * 1000)
        try:
            data = await self.redis.execute_command("TS.RANGE", key(category, slug), start_ms, end_ms)
        except ResponseError as e:
            # TSDB: the key does not exist
            if "does not exist" in str(e).lower():
                return []
            raise
        if not data:
            return []
        out: List[Tuple[float, float]] = []
        for ts, val in data:
            try:
                v = float(val if not isinstance(val, (bytes, bytearray)) else val.decode("utf-8"))
                out.append((int(ts) / 1000.0, v))
            except (TypeError, ValueError):
                # skip malformed points
                continue
        return out
