from __future__ import annotations

import random


def backoff_delay(base: float, attempt: int, *, jitter_s: float = 0.0, cap: float = 30.0) -> float:
    """
    Delay before retrying after failed `attempt` (1-based):
    base * 2^(attempt-1), capped, plus uniform [0, jitter_s) jitter.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    delay = min(base * (2.0 ** (attempt - 1)), cap)
    if jitter_s > 0:
        delay += jitter_s * random.random()
    return delay


def jittered(v: float, *, ratio: float = 0.2) -> float:
    """Scale by a random factor in [1-ratio, 1+ratio]."""
    return v * (1.0 - ratio + 2.0 * ratio * random.random())
