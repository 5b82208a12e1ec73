from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional, Protocol, Sequence

import structlog

from ratewatch.data.records import AssetRecord
from ratewatch.data.snapshot import SnapshotCache
from ratewatch.errors import FetchError
from ratewatch.utils.backoff import backoff_delay
from ratewatch.utils.periodic import PeriodicRunner
from ratewatch.utils.time import iso_utc, utc_now_s
from ratewatch.utils.types import CATEGORIES, Category

log = structlog.get_logger("sync")


class CategoryFetcher(Protocol):
    async def fetch(self, category: Category) -> Mapping[str, AssetRecord]: ...


class HistorySink(Protocol):
    async def append_category(self, category: Category, records: Mapping[str, AssetRecord], ts: float) -> None: ...


@dataclass(slots=True)
class SyncConfig:
    interval_s: float = 900.0           # 15 minutes
    retry_count: int = 3                # attempts per category per cycle
    backoff_base_s: float = 1.0
    backoff_cap_s: float = 30.0
    jitter_s: float = 0.5
    category_delay_s: float = 0.0       # spacing between categories (upstream rate limits)
    history_timeout_s: float = 5.0      # per history write; runs off the refresh path


@dataclass(slots=True)
class CategoryFailure:
    category: Category
    attempts: int
    error: str
    retryable: bool
    status: Optional[int]
    at: float


@dataclass(slots=True)
class SyncStats:
    cycles: int = 0
    skipped: int = 0
    published: int = 0
    failed: int = 0


class SyncScheduler:
    """
    Refreshes every category into the SnapshotCache.

    - tick() is single-flight: a tick that arrives while one is running is
      dropped (not queued) and returns False.
    - Each category is fetched independently with retry + exponential backoff
      (only for retryable FetchErrors). A category that ends in failure keeps
      its previous cached data; other categories are unaffected.
    - Nothing escapes tick() except cancellation.
    """
    def __init__(
        self,
        source: CategoryFetcher,
        cache: SnapshotCache,
        cfg: Optional[SyncConfig] = None,
        *,
        categories: Sequence[Category] = CATEGORIES,
        history: Optional[HistorySink] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = utc_now_s,
    ):
        self.source = source
        self.cache = cache
        self.cfg = cfg or SyncConfig()
        if self.cfg.retry_count < 1:
            raise ValueError("retry_count must be >= 1")
        self.categories = tuple(categories)
        self.history = history
        self._sleep = sleep
        self._clock = clock

        self._in_flight = False
        self.failures: dict[Category, CategoryFailure] = {}
        self.last_success_at: dict[Category, float] = {}
        self.stats = SyncStats()
        self._history_tasks: set[asyncio.Task] = set()
        self._runner = PeriodicRunner("sync", self.cfg.interval_s, self.tick)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def start(self) -> None:
        await self._runner.start()

    async def stop(self) -> None:
        await self._runner.stop()
        await self.drain_history()

    async def drain_history(self) -> None:
        """Wait for history writes already handed off; each is bounded by history_timeout_s."""
        if self._history_tasks:
            await asyncio.gather(*list(self._history_tasks), return_exceptions=True)

    # ---------------------------- refresh cycle ---------------------------- #

    async def tick(self) -> bool:
        if self._in_flight:
            self.stats.skipped += 1
            log.info("sync_tick_skipped", reason="refresh_in_flight")
            return False

        self._in_flight = True
        try:
            self.stats.cycles += 1
            for i, category in enumerate(self.categories):
                if i > 0 and self.cfg.category_delay_s > 0:
                    await self._sleep(self.cfg.category_delay_s)
                await self._refresh_category(category)
        finally:
            self._in_flight = False
        return True

    async def _refresh_category(self, category: Category) -> None:
        try:
            records, attempts = await self._fetch_with_retry(category)
        except asyncio.CancelledError:
            raise
        except FetchError as e:
            self._record_failure(category, e, e.attempts)
            return
        except Exception as e:
            # unexpected bug in the source / parser: isolate like a permanent error
            self._record_failure(category, FetchError(category, repr(e), retryable=False), 1)
            return

        now = self._clock()
        if not self.cache.publish(category, records, ts=now):
            # upstream answered with nothing; keep what we had
            self._record_failure(category, FetchError(category, "empty payload", retryable=False), attempts)
            return

        self.failures.pop(category, None)
        self.last_success_at[category] = now
        self.stats.published += 1
        log.info("category_refreshed", category=category, assets=len(records), attempts=attempts, at=iso_utc(now))

        if self.history is not None:
            # never awaited here: a stuck history backend must not hold the tick open
            t = asyncio.create_task(self._append_history(category, records, now), name=f"history-{category}")
            self._history_tasks.add(t)
            t.add_done_callback(self._history_tasks.discard)

    async def _append_history(self, category: Category, records: Mapping[str, AssetRecord], ts: float) -> None:
        assert self.history is not None
        try:
            await asyncio.wait_for(self.history.append_category(category, records, ts), timeout=self.cfg.history_timeout_s)
        except asyncio.TimeoutError:
            log.warning("history_append_timeout", category=category, timeout_s=self.cfg.history_timeout_s)
        except Exception as e:
            log.warning("history_append_failed", category=category, err=str(e))

    async def _fetch_with_retry(self, category: Category) -> tuple[Mapping[str, AssetRecord], int]:
        attempt = 1
        while True:
            try:
                return await self.source.fetch(category), attempt
            except FetchError as e:
                if not e.retryable or attempt >= self.cfg.retry_count:
                    e.attempts = attempt
                    raise
                delay = backoff_delay(
                    self.cfg.backoff_base_s, attempt,
                    jitter_s=self.cfg.jitter_s, cap=self.cfg.backoff_cap_s,
                )
                log.warning(
                    "fetch_retry", category=category, attempt=attempt,
                    status=e.status, err=str(e), backoff_s=round(delay, 3),
                )
                await self._sleep(delay)
                attempt += 1

    def _record_failure(self, category: Category, err: FetchError, attempts: int) -> None:
        self.stats.failed += 1
        self.failures[category] = CategoryFailure(
            category=category,
            attempts=attempts,
            error=str(err),
            retryable=err.retryable,
            status=err.status,
            at=self._clock(),
        )
        log.error(
            "category_refresh_failed", category=category, attempts=attempts,
            retryable=err.retryable, status=err.status, err=str(err),
        )
