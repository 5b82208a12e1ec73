import asyncio

import aiohttp
import pytest

from ratewatch.notify.telegram import MAX_MESSAGE_LEN, ChatThrottle, TelegramConfig, TelegramNotifier
from tests.helpers.fake_http import FakeResponse, FakeSession

def _notifier(*responses):
    session = FakeSession(responses)
    cfg = TelegramConfig(bot_token="T0K", initial_backoff_s=0.001, max_backoff_s=0.002, max_retries=3)
    return TelegramNotifier(cfg, format_fn=lambda e: "hello", session=session), session

EVT = {"destination_id": "-100123", "kind": "summary", "payload": {}, "ts": 0.0, "dedupe_key": "k"}

@pytest.mark.asyncio
async def test_sends_to_event_destination():
    n, session = _notifier(FakeResponse(200))
    assert await n.send(EVT) is True
    method, url, kwargs = session.requests[0]
    assert method == "POST"
    assert url == "https://api.telegram.org/botT0K/sendMessage"
    assert kwargs["data"] == {"chat_id": "-100123", "text": "hello"}

@pytest.mark.asyncio
async def test_retries_server_errors_and_network_failures():
    n, session = _notifier(FakeResponse(502), aiohttp.ClientConnectionError("reset"), FakeResponse(200))
    assert await n.send(EVT) is True
    assert len(session.requests) == 3

@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    n, session = _notifier(FakeResponse(400, text="chat not found"))
    assert await n.send(EVT) is False
    assert len(session.requests) == 1

@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    n, session = _notifier(FakeResponse(500), FakeResponse(500), FakeResponse(500))
    assert await n.send(EVT) is False
    assert len(session.requests) == 3

@pytest.mark.asyncio
async def test_missing_destination_is_rejected():
    n, session = _notifier()
    assert await n.send({"kind": "alert", "payload": {}}) is False
    assert session.requests == []

@pytest.mark.asyncio
async def test_429_honours_retry_after():
    n, session = _notifier(
        FakeResponse(429, json_data={"ok": False, "parameters": {"retry_after": 0.01}}),
        FakeResponse(200),
    )
    assert await n.send(EVT) is True
    assert len(session.requests) == 2

@pytest.mark.asyncio
async def test_long_text_is_truncated():
    n, session = _notifier(FakeResponse(200))
    assert await n.send_text("42", "x" * 5000) is True
    assert len(session.requests[0][2]["data"]["text"]) == MAX_MESSAGE_LEN

def test_throttle_allows_burst_then_spaces_out():
    now = [100.0]
    t = ChatThrottle(rate_per_sec=1.0, burst=2, clock=lambda: now[0])
    assert t._take("c") == 0.0
    assert t._take("c") == 0.0
    assert t._take("c") == pytest.approx(1.0)
    # other chats have their own bucket
    assert t._take("d") == 0.0
    now[0] += 5.0
    assert t._take("c") == 0.0

@pytest.mark.asyncio
async def test_excessive_retry_after_gives_up_without_waiting():
    n, session = _notifier(
        FakeResponse(429, json_data={"ok": False, "parameters": {"retry_after": 3600}}),
        FakeResponse(200),
    )
    assert await asyncio.wait_for(n.send(EVT), timeout=1.0) is False
    assert len(session.requests) == 1
