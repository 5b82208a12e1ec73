from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

import aiohttp
import structlog

from ratewatch.data.records import AssetRecord, parse_category_payload
from ratewatch.errors import FetchError, MalformedPayloadError
from ratewatch.utils.types import Category

log = structlog.get_logger("rate_source")


def _default_endpoints() -> dict[str, str]:
    return {
        "gold": "/market/acgold",
        "crypto": "/market/accrypto",
        "currency": "/market/accurrencies",
    }


@dataclass(slots=True)
class RateSourceConfig:
    base_url: str
    api_key: Optional[str] = None
    timeout_s: float = 15.0
    endpoints: dict[str, str] = field(default_factory=_default_endpoints)


class RateSource:
    """
    Price gateway client. One fetch() is one HTTP GET for one category;
    retrying is the caller's business (see SyncScheduler).

    Failures are raised as FetchError with `retryable` set:
      - network error / timeout / 429 / 5xx  -> retryable
      - other 4xx / undecodable or malformed body -> permanent
    """
    def __init__(self, cfg: RateSourceConfig, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = cfg
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.cfg.timeout_s)
            headers = {"x-api-key": self.cfg.api_key} if self.cfg.api_key else None
            self._session = aiohttp.ClientSession(timeout=timeout, headers=headers)
            self._owns_session = True

    async def stop(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _url(self, category: Category) -> str:
        path = self.cfg.endpoints.get(category)
        if path is None:
            raise ValueError(f"no endpoint configured for category {category!r}")
        return self.cfg.base_url.rstrip("/") + "/" + path.lstrip("/")

    async def fetch(self, category: Category) -> dict[str, AssetRecord]:
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = self._url(category)

        try:
            async with self._session.get(url) as resp:
                if resp.status != 200:
                    body = await _maybe_text(resp)
                    raise FetchError.from_status(category, resp.status, body)
                try:
                    payload = await resp.json(content_type=None)
                except ValueError as e:
                    raise MalformedPayloadError(category, f"invalid JSON: {e}") from e
        except FetchError:
            raise
        except asyncio.TimeoutError as e:
            raise FetchError(category, "request timed out", retryable=True) from e
        except aiohttp.ClientError as e:
            raise FetchError(category, f"network error: {e}", retryable=True) from e

        records = parse_category_payload(category, payload)
        log.debug("category_fetched", category=category, assets=len(records))
        return records


async def _maybe_text(resp: aiohttp.ClientResponse) -> str:
    try:
        return await resp.text()
    except Exception:
        return "<no body>"
