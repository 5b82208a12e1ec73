# src/ratewatch/main.py
import asyncio
import signal

import structlog
from dotenv import load_dotenv
from redis.asyncio import Redis

from ratewatch.alerts.engine import AlertEngine
from ratewatch.broadcast.scheduler import BroadcastScheduler
from ratewatch.config import AppConfig
from ratewatch.data.snapshot import SnapshotCache
from ratewatch.ingest.rate_source import RateSource
from ratewatch.ingest.sync import SyncScheduler
from ratewatch.logging_setup import configure_logging
from ratewatch.notify.console import ConsoleNotifier
from ratewatch.notify.formatting import format_event
from ratewatch.notify.queue import NotifyQueue
from ratewatch.notify.router import NotificationRouter
from ratewatch.notify.telegram import TelegramConfig, TelegramNotifier
from ratewatch.store.memory import InMemoryRuleStore
from storage.redis_history import RedisPriceHistory

log = structlog.get_logger()


async def main(cfg: AppConfig | None = None, store: InMemoryRuleStore | None = None):
    cfg = cfg or AppConfig.from_env()
    store = store or InMemoryRuleStore()

    # Shared state: snapshot (written by sync only) + outbound events
    cache = SnapshotCache()
    notify_q = NotifyQueue(maxsize=cfg.notify_queue_size)

    # ----- Notifications -----
    fmt = lambda e: format_event(e, cfg.tz_name)
    notifiers = [ConsoleNotifier(format_fn=fmt)]
    tg_notifier = None
    if cfg.bot_token:
        tg_notifier = TelegramNotifier(TelegramConfig(bot_token=cfg.bot_token), format_fn=fmt)
        notifiers.append(tg_notifier)
        log.info("telegram_enabled")
    else:
        log.info("telegram_disabled_missing_env")
    router = NotificationRouter(notify_q, notifiers)

    # ----- Optional price history (RedisTimeSeries) -----
    redis_client = None
    history = None
    if cfg.history_enabled:
        redis_client = Redis.from_url(
            cfg.redis_url,
            socket_timeout=cfg.redis_timeout_s,
            socket_connect_timeout=cfg.redis_timeout_s,
        )
        history = RedisPriceHistory(redis_client)
        log.info("price_history_enabled", url=cfg.redis_url)

    # ----- Core loops -----
    source = RateSource(cfg.source)
    sync = SyncScheduler(source, cache, cfg.sync, history=history)
    alerts = AlertEngine(store, cache, notify_q.try_put, cfg.alerts)
    broadcast = BroadcastScheduler(store, cache, notify_q.try_put, cfg.broadcast)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # e.g. Windows event loops
            pass

    started = []
    try:
        for obj in (source, tg_notifier, router, sync, alerts, broadcast):
            if obj is None:
                continue
            await obj.start()
            started.append(obj)
        log.info("ratewatch_started", refresh_s=cfg.sync.interval_s, alert_s=cfg.alerts.interval_s)
        await stop.wait()
    finally:
        # timers first, then in-flight I/O, then transports
        for obj in reversed(started):
            if obj is router:
                # flush what the schedulers already emitted
                await notify_q.drain(timeout_s=5.0)
            try:
                await obj.stop()
            except Exception as e:
                log.warning("shutdown_stop_failed", component=type(obj).__name__, err=str(e))
        if redis_client is not None:
            await redis_client.aclose()
        log.info("ratewatch_stopped")


def run():
    load_dotenv()
    cfg = AppConfig.from_env()
    configure_logging(cfg.log_level, cfg.log_json)
    try:
        asyncio.run(main(cfg))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
