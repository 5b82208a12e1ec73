from __future__ import annotations

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from ratewatch.utils.types import NotificationEvent

DEFAULT_TZ = "Asia/Tehran"

_CATEGORY_TITLES = {
    "gold": "🥇 Gold & Coins",
    "crypto": "🪙 Crypto",
    "currency": "💱 Currencies",
}


def _fmt_ts(ts_s: float, tz_name: str) -> str:
    return datetime.fromtimestamp(ts_s, ZoneInfo(tz_name)).strftime("%Y-%m-%d %H:%M")


def fmt_price(v: Optional[float]) -> str:
    if v is None:
        return "-"
    if abs(v) >= 100:
        return f"{v:,.0f}"
    return f"{v:,.4f}".rstrip("0").rstrip(".")


def _trend(change: Optional[float]) -> str:
    if change is None or change == 0:
        return "⚪"
    return "🟢" if change > 0 else "🔴"


def format_alert(evt: NotificationEvent, tz_name: str = DEFAULT_TZ) -> str:
    p = evt.get("payload", {})
    word = "above" if p.get("direction") == "above" else "below"
    return (
        f"🔔 Alert #{p.get('alert_id')}: {str(p.get('slug', '?')).upper()} is {word} "
        f"{fmt_price(p.get('target_price'))} Toman\n"
        f"💲 Now: {fmt_price(p.get('price'))} Toman\n"
        f"🕒 {_fmt_ts(float(evt.get('ts', 0.0)), tz_name)}"
    )


def format_summary(evt: NotificationEvent, tz_name: str = DEFAULT_TZ) -> str:
    p = evt.get("payload", {})
    lines = ["📊 Market summary"]
    for category, items in p.get("categories", {}).items():
        if not items:
            continue
        lines.append("")
        lines.append(_CATEGORY_TITLES.get(category, category))
        for it in items:
            change = it.get("change")
            pct = f" ({change:+.2f}%)" if change is not None else ""
            lines.append(f"{_trend(change)} {it.get('name') or it.get('slug')}: {fmt_price(it.get('price'))}{pct}")
    at = p.get("snapshot_at")
    if at is not None:
        lines.append("")
        lines.append(f"🕒 Updated {_fmt_ts(float(at), tz_name)}")
    return "\n".join(lines)


def format_event(evt: NotificationEvent, tz_name: str = DEFAULT_TZ) -> str:
    if evt.get("kind") == "alert":
        return format_alert(evt, tz_name)
    if evt.get("kind") == "summary":
        return format_summary(evt, tz_name)
    return f"[{evt.get('kind')}] {evt.get('payload')}"
