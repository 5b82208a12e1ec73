import math

from ratewatch.utils.time import iso_utc, seconds_since

def test_seconds_since_clamps_and_handles_missing():
    assert seconds_since(100.0, now=160.0) == 60.0
    assert seconds_since(200.0, now=160.0) == 0.0
    assert math.isinf(seconds_since(None, now=160.0))

def test_iso_utc():
    assert iso_utc(None) is None
    assert iso_utc(0) == "1970-01-01T00:00:00+00:00"
