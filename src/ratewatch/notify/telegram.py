from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

import aiohttp
import structlog

from ratewatch.notify.formatting import format_event
from ratewatch.utils.backoff import backoff_delay, jittered
from ratewatch.utils.time import monotonic_s
from ratewatch.utils.types import NotificationEvent

log = structlog.get_logger("telegram")

# Telegram rejects longer messages outright
MAX_MESSAGE_LEN = 4096


class ChatThrottle:
    """Token bucket per chat id. Telegram allows roughly one message/sec per chat."""
    def __init__(self, rate_per_sec: float, burst: int = 1, clock: Callable[[], float] = monotonic_s):
        if rate_per_sec <= 0 or burst < 1:
            raise ValueError("rate_per_sec must be > 0 and burst >= 1")
        self.rate = float(rate_per_sec)
        self.burst = int(burst)
        self._clock = clock
        self._buckets: dict[str, tuple[float, float]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _take(self, chat_id: str) -> float:
        """Consume one token; returns how long the caller must wait first."""
        now = self._clock()
        tokens, last = self._buckets.get(chat_id, (float(self.burst), now))
        tokens = min(float(self.burst), tokens + (now - last) * self.rate)
        wait = 0.0 if tokens >= 1.0 else (1.0 - tokens) / self.rate
        self._buckets[chat_id] = (tokens - 1.0 + wait * self.rate, now + wait)
        return wait

    async def acquire(self, chat_id: str) -> None:
        lock = self._locks.setdefault(chat_id, asyncio.Lock())
        async with lock:
            wait = self._take(chat_id)
            if wait > 0:
                await asyncio.sleep(wait)


@dataclass(slots=True)
class TelegramConfig:
    bot_token: str
    parse_mode: Optional[str] = None  # "HTML" / "MarkdownV2" / None
    timeout_s: float = 8.0
    per_chat_rate_per_sec: float = 1.0
    per_chat_burst: int = 3
    max_retries: int = 5
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0
    # a 429 asking for a longer pause than this is treated as final
    max_retry_after_s: float = 30.0
    api_base: str = "https://api.telegram.org"


def _truncate(text: str, limit: int = MAX_MESSAGE_LEN) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


async def _retry_after(resp: aiohttp.ClientResponse) -> Optional[float]:
    """Seconds Telegram asked us to back off for (429 body), if it said."""
    try:
        data = await resp.json(content_type=None)
        ra = data["parameters"]["retry_after"]
        return float(ra)
    except (ValueError, TypeError, KeyError, aiohttp.ClientError):
        return None


async def _body(resp: aiohttp.ClientResponse) -> str:
    try:
        return (await resp.text())[:300]
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "<no body>"


class TelegramNotifier:
    """
    Delivers NotificationEvents through the Bot API to the chat named by
    evt["destination_id"] (a user id, group id or @channel).

    429 (honouring retry_after), 5xx and network errors are retried with
    capped exponential backoff; any other 4xx is final. Giving up is logged
    and reported as False; nothing upstream re-emits the event.
    """
    def __init__(
        self,
        cfg: TelegramConfig,
        format_fn: Optional[Callable[[NotificationEvent], str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.cfg = cfg
        self._format_fn = format_fn or format_event
        self._session = session
        self._owns_session = session is None
        self._throttle = ChatThrottle(cfg.per_chat_rate_per_sec, cfg.per_chat_burst)
        self.sent = 0
        self.failed = 0

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.cfg.timeout_s))
            self._owns_session = True

    async def stop(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    @property
    def _url(self) -> str:
        return f"{self.cfg.api_base}/bot{self.cfg.bot_token}/sendMessage"

    async def send(self, evt: NotificationEvent) -> bool:
        chat_id = str(evt.get("destination_id") or "")
        if not chat_id:
            log.warning("telegram_missing_destination", dedupe_key=evt.get("dedupe_key"))
            return False
        await self._throttle.acquire(chat_id)
        ok = await self.send_text(chat_id, self._format_fn(evt))
        if ok:
            self.sent += 1
        else:
            self.failed += 1
        return ok

    async def send_text(self, chat_id: str, text: str) -> bool:
        if self._session is None:
            await self.start()
        form = {"chat_id": chat_id, "text": _truncate(text)}
        if self.cfg.parse_mode:
            form["parse_mode"] = self.cfg.parse_mode

        for attempt in range(1, self.cfg.max_retries + 1):
            delay: Optional[float]
            try:
                async with self._session.post(self._url, data=form) as resp:
                    if resp.status == 200:
                        return True
                    log.warning(
                        "telegram_send_failed", chat_id=chat_id, status=resp.status,
                        attempt=attempt, body=await _body(resp),
                    )
                    if resp.status == 429:
                        delay = await _retry_after(resp)
                        if delay is not None and delay > self.cfg.max_retry_after_s:
                            log.error("telegram_retry_after_too_long", chat_id=chat_id, retry_after=delay)
                            return False
                    elif resp.status >= 500:
                        delay = None
                    else:
                        # bad chat id, bot kicked, malformed markup...
                        return False
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                log.warning("telegram_network_error", chat_id=chat_id, attempt=attempt, err=str(e))
                delay = None

            if attempt < self.cfg.max_retries:
                if delay is None:
                    delay = jittered(backoff_delay(self.cfg.initial_backoff_s, attempt, cap=self.cfg.max_backoff_s))
                await asyncio.sleep(delay)

        log.error("telegram_give_up", chat_id=chat_id, attempts=self.cfg.max_retries)
        return False
