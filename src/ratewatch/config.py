from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from ratewatch.alerts.engine import AlertEngineConfig
from ratewatch.broadcast.scheduler import BroadcastConfig
from ratewatch.errors import ConfigError
from ratewatch.ingest.rate_source import RateSourceConfig
from ratewatch.ingest.sync import SyncConfig

DEFAULT_API_BASE_URL = "https://price-gateway.liara.run/api/v1"


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    v = env.get(name)
    if v is None:
        return None
    v = v.strip()
    return v or None


def _float(env: Mapping[str, str], name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        v = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if v < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {v}")
    return v


def _int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 0) -> int:
    raw = _get(env, name)
    if raw is None:
        return default
    try:
        v = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if v < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {v}")
    return v


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(env, name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass(slots=True)
class AppConfig:
    source: RateSourceConfig
    sync: SyncConfig = field(default_factory=SyncConfig)
    alerts: AlertEngineConfig = field(default_factory=AlertEngineConfig)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    bot_token: Optional[str] = None
    redis_url: str = "redis://localhost:6379/0"
    redis_timeout_s: float = 5.0
    history_enabled: bool = False
    notify_queue_size: int = 2000
    tz_name: str = "Asia/Tehran"
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AppConfig":
        env = os.environ if env is None else env
        return cls(
            source=RateSourceConfig(
                base_url=_get(env, "API_BASE_URL") or DEFAULT_API_BASE_URL,
                api_key=_get(env, "API_KEY"),
                timeout_s=_float(env, "HTTP_TIMEOUT_S", 15.0, minimum=0.1),
            ),
            sync=SyncConfig(
                interval_s=_float(env, "REFRESH_INTERVAL_S", 900.0, minimum=1.0),
                retry_count=_int(env, "RETRY_COUNT", 3, minimum=1),
                backoff_base_s=_float(env, "BACKOFF_BASE_S", 1.0),
                backoff_cap_s=_float(env, "BACKOFF_CAP_S", 30.0),
                jitter_s=_float(env, "BACKOFF_JITTER_S", 0.5),
                category_delay_s=_float(env, "CATEGORY_DELAY_S", 0.0),
                history_timeout_s=_float(env, "HISTORY_TIMEOUT_S", 5.0, minimum=0.1),
            ),
            alerts=AlertEngineConfig(
                interval_s=_float(env, "ALERT_INTERVAL_S", 60.0, minimum=1.0),
            ),
            broadcast=BroadcastConfig(
                tick_s=_float(env, "BROADCAST_TICK_S", 60.0, minimum=1.0),
                channel_id=_get(env, "BROADCAST_CHANNEL_ID"),
                channel_interval_minutes=_int(env, "BROADCAST_INTERVAL_MIN", 60, minimum=1),
            ),
            bot_token=_get(env, "BOT_TOKEN"),
            redis_url=_get(env, "REDIS_URL") or "redis://localhost:6379/0",
            redis_timeout_s=_float(env, "REDIS_TIMEOUT_S", 5.0, minimum=0.1),
            history_enabled=_bool(env, "HISTORY_ENABLED", False),
            notify_queue_size=_int(env, "NOTIFY_QUEUE_SIZE", 2000, minimum=1),
            tz_name=_get(env, "TZ_NAME") or "Asia/Tehran",
            log_level=(_get(env, "LOG_LEVEL") or "INFO").upper(),
            log_json=_bool(env, "LOG_JSON", False),
        )
