from __future__ import annotations

import sys
from typing import Callable, Collection, Optional, TextIO

import structlog

from ratewatch.notify.formatting import format_event
from ratewatch.utils.types import EventKind, NotificationEvent

log = structlog.get_logger("notifier")


class ConsoleNotifier:
    """Writes events to a text stream; the local sink when no bot token is configured."""
    def __init__(
        self,
        format_fn: Optional[Callable[[NotificationEvent], str]] = None,
        *,
        stream: Optional[TextIO] = None,
        kinds: Optional[Collection[EventKind]] = None,
    ):
        self._format_fn = format_fn or format_event
        self._stream = stream
        self._kinds = frozenset(kinds) if kinds is not None else None

    async def send(self, evt: NotificationEvent) -> bool:
        if self._kinds is not None and evt.get("kind") not in self._kinds:
            return False
        out = self._stream or sys.stdout
        header = f"--> {evt.get('destination_id')} ({evt.get('kind', '?')})"
        try:
            body = self._format_fn(evt)
        except Exception as e:
            log.warning("console_format_failed", dedupe_key=evt.get("dedupe_key"), err=str(e))
            body = repr(evt.get("payload"))
        print(f"{header}\n{body}", file=out, flush=True)
        return True
