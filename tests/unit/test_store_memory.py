import pytest

from ratewatch.errors import RuleValidationError, StoreError
from ratewatch.store.memory import InMemoryRuleStore

def test_ids_are_monotonic_and_slug_normalized():
    s = InMemoryRuleStore()
    a = s.add_alert("u1", " USD ", "currency", "above", 10, now=5.0)
    b = s.add_alert("u1", "btc", "crypto", "below", 1.5)
    assert b.id > a.id
    assert a.asset_slug == "usd"
    assert a.created_at == 5.0
    assert a.state == "armed"
    assert a.destination_id == "u1"

@pytest.mark.parametrize("args", [
    ("usd", "currency", "above", 0),
    ("usd", "currency", "above", -3),
    ("usd", "currency", "sideways", 10),
    ("usd", "stocks", "above", 10),
    ("", "currency", "above", 10),
    ("usd", "currency", "above", "abc"),
])
def test_invalid_rules_rejected(args):
    s = InMemoryRuleStore()
    with pytest.raises(RuleValidationError):
        s.add_alert("u1", *args)
    assert s.list_active_alerts() == []

def test_validation_error_is_a_store_error():
    assert issubclass(RuleValidationError, StoreError)

def test_delete_requires_matching_owner():
    s = InMemoryRuleStore()
    rule = s.add_alert("u1", "usd", "currency", "above", 10)
    assert s.delete_alert(rule.id, "intruder") == 0
    assert s.get_alert(rule.id) is not None
    assert s.delete_alert(rule.id, "u1") == 1
    assert s.get_alert(rule.id) is None
    assert s.delete_alert(rule.id, "u1") == 0
    assert s.list_alerts_by_owner("u1") == []

def test_mark_triggered_is_compare_and_set():
    s = InMemoryRuleStore()
    rule = s.add_alert("u1", "usd", "currency", "above", 10)
    first = s.mark_triggered(rule.id, 11.0, 100.0)
    assert first is not None and first.state == "triggered"
    assert s.mark_triggered(rule.id, 12.0, 101.0) is None
    stored = s.get_alert(rule.id)
    assert stored.triggered_price == 11.0
    assert stored.triggered_at == 100.0
    assert s.mark_triggered(9999, 1.0, 1.0) is None

def test_active_and_owner_listings_exclude_triggered_by_default():
    s = InMemoryRuleStore()
    a = s.add_alert("u1", "usd", "currency", "above", 10)
    b = s.add_alert("u1", "eur", "currency", "above", 10)
    s.add_alert("u2", "btc", "crypto", "above", 10)
    s.mark_triggered(a.id, 11.0, 1.0)
    assert [r.id for r in s.list_alerts_by_owner("u1")] == [b.id]
    assert [r.id for r in s.list_alerts_by_owner("u1", include_triggered=True)] == [a.id, b.id]
    assert {r.asset_slug for r in s.list_active_alerts()} == {"eur", "btc"}

def test_returned_rules_are_copies():
    s = InMemoryRuleStore()
    rule = s.add_alert("u1", "usd", "currency", "above", 10)
    rule.state = "triggered"
    assert s.get_alert(rule.id).state == "armed"

def test_summary_upsert_reenables_and_keeps_cadence():
    s = InMemoryRuleStore()
    s.set_summary_interval("g1", 30)
    assert s.claim_summary_slot("g1", 1000.0) is True
    assert s.disable_summary("g1") is True
    assert s.list_active_summaries() == []
    assert s.claim_summary_slot("g1", 99999.0) is False

    sub = s.set_summary_interval("g1", 60)
    assert sub.enabled is True
    assert sub.interval_minutes == 60
    assert sub.last_sent_at == 1000.0
    assert [x.destination_id for x in s.list_active_summaries()] == ["g1"]

def test_summary_interval_must_be_positive():
    s = InMemoryRuleStore()
    with pytest.raises(RuleValidationError):
        s.set_summary_interval("g1", 0)

def test_claim_summary_slot_respects_interval():
    s = InMemoryRuleStore()
    s.set_summary_interval("g1", 1)
    assert s.claim_summary_slot("g1", 0.0) is True
    assert s.claim_summary_slot("g1", 59.0) is False
    assert s.claim_summary_slot("g1", 60.0) is True
    assert s.get_summary("g1").last_sent_at == 60.0
    assert s.claim_summary_slot("unknown", 60.0) is False

def test_portfolio_upsert_and_delete_on_non_positive():
    s = InMemoryRuleStore()
    s.set_portfolio_item("u1", "USD", "currency", 100)
    s.set_portfolio_item("u1", "usd", "currency", 250)
    s.set_portfolio_item("u1", "btc", "crypto", 0.5)
    s.set_portfolio_item("u2", "btc", "crypto", 1)
    entries = {e.asset_slug: e.amount for e in s.get_portfolio("u1")}
    assert entries == {"usd": 250.0, "btc": 0.5}

    assert s.set_portfolio_item("u1", "usd", "currency", 0) is None
    assert [e.asset_slug for e in s.get_portfolio("u1")] == ["btc"]
    # deleting something that is not there is fine
    assert s.set_portfolio_item("u1", "eur", "currency", -1) is None
