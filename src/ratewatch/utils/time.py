from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now_s() -> float:
    """Unix epoch seconds (float)."""
    return time.time()


def monotonic_s() -> float:
    return time.monotonic()


def utc_dt(ts: float | int) -> datetime:
    """Epoch seconds -> timezone-aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)


def iso_utc(ts: float | int | None) -> str | None:
    if ts is None:
        return None
    return utc_dt(ts).isoformat()


def seconds_since(ts_past: float | None, now: float | None = None) -> float:
    """
    Non-negative time since past (clamped at 0).
    A missing timestamp counts as infinitely long ago.
    """
    if ts_past is None:
        return float("inf")
    now = utc_now_s() if now is None else now
    return max(0.0, now - ts_past)
