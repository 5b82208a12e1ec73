from ratewatch.notify.dedup import TTLDeduper, key_kind
from tests.helpers.fake_source import FakeClock

def test_key_kind():
    assert key_kind("alert:42") == "alert"
    assert key_kind("summary:g1:1700000000") == "summary"
    assert key_kind("bare") == "bare"

def test_first_sighting_wins_until_ttl():
    clock = FakeClock(0.0)
    d = TTLDeduper(default_ttl_s=10.0, ttl_by_kind={}, clock=clock)
    assert d.check_and_mark("x:1") is True
    assert d.check_and_mark("x:1") is False
    clock.advance(10.5)
    assert d.check_and_mark("x:1") is True

def test_ttl_depends_on_key_kind():
    clock = FakeClock(0.0)
    d = TTLDeduper(default_ttl_s=100.0, ttl_by_kind={"alert": 1000.0, "summary": 10.0}, clock=clock)
    d.check_and_mark("alert:1")
    d.check_and_mark("summary:g1:0")
    d.check_and_mark("other:1")
    clock.advance(50.0)
    assert "alert:1" in d
    assert "summary:g1:0" not in d
    assert "other:1" in d
    clock.advance(100.0)
    assert "alert:1" in d
    assert "other:1" not in d

def test_default_ttls_keep_alerts_longer_than_summaries():
    d = TTLDeduper()
    assert d.ttl_for("alert:7") > d.ttl_for("summary:g1:0")
    assert d.ttl_for("unknown:1") == d.default_ttl_s

def test_size_bound_evicts_oldest():
    clock = FakeClock(0.0)
    d = TTLDeduper(default_ttl_s=100.0, ttl_by_kind={}, max_size=2, clock=clock)
    for k in ("a", "b", "c"):
        d.check_and_mark(k)
        clock.advance(1.0)
    assert len(d) == 2
    assert "a" not in d
    assert "b" in d and "c" in d
