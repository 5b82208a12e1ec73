import asyncio

import pytest

from ratewatch.utils.periodic import PeriodicRunner

@pytest.mark.asyncio
async def test_runs_immediately_and_repeats():
    calls = []

    async def fn():
        calls.append(1)

    r = PeriodicRunner("t", 0.02, fn)
    await r.start()
    await asyncio.sleep(0.1)
    await r.stop()
    assert len(calls) >= 2
    assert r.running is False

@pytest.mark.asyncio
async def test_overrun_drops_missed_firings():
    calls = []

    async def slow():
        calls.append(1)
        await asyncio.sleep(0.12)

    r = PeriodicRunner("slow", 0.05, slow)
    await r.start()
    await asyncio.sleep(0.3)
    await r.stop()
    # runs never overlap and missed firings are not replayed
    assert 1 <= len(calls) <= 3
    assert r.dropped >= 2

@pytest.mark.asyncio
async def test_errors_do_not_stop_schedule():
    calls = []

    async def flaky():
        calls.append(1)
        raise RuntimeError("boom")

    r = PeriodicRunner("flaky", 0.02, flaky)
    await r.start()
    await asyncio.sleep(0.1)
    await r.stop()
    assert len(calls) >= 2

@pytest.mark.asyncio
async def test_stop_cancels_inflight_run():
    started = asyncio.Event()

    async def hang():
        started.set()
        await asyncio.sleep(60)

    r = PeriodicRunner("hang", 1.0, hang)
    await r.start()
    await asyncio.wait_for(started.wait(), timeout=1.0)
    await asyncio.wait_for(r.stop(), timeout=1.0)
    assert r.running is False

def test_interval_must_be_positive():
    async def fn():
        pass
    with pytest.raises(ValueError):
        PeriodicRunner("x", 0, fn)
