import pytest

from ratewatch.broadcast.scheduler import BroadcastConfig, BroadcastScheduler, summary_payload
from ratewatch.data.snapshot import SnapshotCache
from ratewatch.store.memory import InMemoryRuleStore
from tests.helpers.fake_source import FakeClock, crypto, currency, gold

T0 = 1_700_000_000.0

def _setup(cfg=None):
    store = InMemoryRuleStore()
    cache = SnapshotCache()
    cache.publish("gold", {"18ayar": gold("18ayar", 4_200_000.0, day_change=1.5)})
    cache.publish("crypto", {"btc": crypto("btc", 5e9, change_24h=-2.0)})
    cache.publish("currency", {"usd": currency("usd", 60_000.0)})
    events = []
    b = BroadcastScheduler(store, cache, events.append, cfg, clock=FakeClock(T0))
    return b, store, cache, events

def test_hourly_subscription_fires_once_per_window():
    b, store, cache, events = _setup()
    store.set_summary_interval("g1", 60)
    snap = cache.read()

    fired_at = []
    for minute in range(0, 121):
        now = T0 + minute * 60
        if b.tick(snap, now=now):
            fired_at.append(minute)

    # never sent before -> due on the first tick, then every 60 minutes
    assert fired_at == [0, 60, 120]
    assert store.get_summary("g1").last_sent_at == T0 + 120 * 60
    assert len(events) == 3
    assert all(e["destination_id"] == "g1" and e["kind"] == "summary" for e in events)

def test_disabled_subscription_is_ignored():
    b, store, cache, events = _setup()
    store.set_summary_interval("g1", 5)
    store.disable_summary("g1")
    assert b.tick(cache.read(), now=T0) == []

def test_last_sent_is_advanced_even_if_delivery_fails():
    store = InMemoryRuleStore()
    cache = SnapshotCache()
    cache.publish("currency", {"usd": currency("usd", 1.0)})

    def broken(evt):
        raise RuntimeError("transport down")

    b = BroadcastScheduler(store, cache, broken)
    store.set_summary_interval("g1", 10)
    assert b.tick(cache.read(), now=T0) == []
    assert store.get_summary("g1").last_sent_at == T0
    # no burst on the next tick
    assert store.claim_summary_slot("g1", T0 + 60) is False

def test_full_queue_drop_is_not_counted_as_sent():
    store = InMemoryRuleStore()
    cache = SnapshotCache()
    cache.publish("currency", {"usd": currency("usd", 1.0)})
    offered = []

    def full_queue(evt):
        offered.append(evt)
        return False

    b = BroadcastScheduler(store, cache, full_queue)
    store.set_summary_interval("g1", 10)
    assert b.tick(cache.read(), now=T0) == []
    assert len(offered) == 1
    assert b.sent == 0
    assert store.get_summary("g1").last_sent_at == T0

def test_global_channel_uses_its_own_interval():
    b, store, cache, events = _setup(BroadcastConfig(channel_id="@prices", channel_interval_minutes=30))
    snap = cache.read()
    for minute in range(0, 61):
        b.tick(snap, now=T0 + minute * 60)
    assert [int((e["ts"] - T0) // 60) for e in events if e["destination_id"] == "@prices"] == [0, 30, 60]
    assert store.list_active_summaries() == []
    assert b.channel.last_sent_at == T0 + 3600

def test_independent_destinations():
    b, store, cache, events = _setup()
    store.set_summary_interval("g1", 10)
    store.set_summary_interval("g2", 20)
    snap = cache.read()
    for minute in range(0, 21):
        b.tick(snap, now=T0 + minute * 60)
    per_dest = {}
    for e in events:
        per_dest.setdefault(e["destination_id"], []).append(int((e["ts"] - T0) // 60))
    assert per_dest == {"g1": [0, 10, 20], "g2": [0, 20]}

def test_empty_snapshot_does_not_consume_slot():
    store = InMemoryRuleStore()
    cache = SnapshotCache()
    events = []
    b = BroadcastScheduler(store, cache, events.append)
    store.set_summary_interval("g1", 60)
    assert b.tick(cache.read(), now=T0) == []
    assert store.get_summary("g1").last_sent_at is None

def test_summary_payload_lists_priced_assets_per_category():
    b, store, cache, _ = _setup()
    cache.publish("currency", {"usd": currency("usd", 60_000.0), "xxx": currency("xxx", None)})
    p = summary_payload(cache.read())
    assert [i["slug"] for i in p["categories"]["currency"]] == ["usd"]
    assert p["categories"]["gold"][0]["change"] == 1.5
    assert p["categories"]["crypto"][0]["change"] == -2.0
    assert p["snapshot_at"] == cache.read().last_updated_at

@pytest.mark.asyncio
async def test_periodic_entry_reads_cache():
    b, store, cache, events = _setup()
    store.set_summary_interval("g1", 60)
    await b._periodic()
    assert len(events) == 1
    assert events[0]["ts"] == T0
