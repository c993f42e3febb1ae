"""Bounded, append-only activity log shown next to the device snapshot."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from collections.abc import Callable, Iterator
from datetime import datetime

from coldchain_monitor.const import LOCAL_TZ
from coldchain_monitor.logging_abstraction import get_logger
from coldchain_monitor.models import LogEntry, Severity

logger = get_logger(__name__)

_LEVELS: dict[Severity, int] = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class LogBuffer:
    """Ring buffer of `LogEntry`, newest first.

    Entries are only ever appended; the oldest entry is evicted once
    `capacity` is reached. Every entry is mirrored to the process logger.
    """

    def __init__(self, capacity: int = 50, now: Callable[[], datetime] | None = None) -> None:
        self.capacity: int = capacity
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._ids: Iterator[int] = itertools.count(1)
        self._now: Callable[[], datetime] = now or (lambda: datetime.now(LOCAL_TZ))

    def append(self, severity: Severity, message: str) -> LogEntry:
        entry = LogEntry(id=next(self._ids), timestamp=self._now(), severity=severity, message=message)
        # appendleft on a bounded deque drops from the right, i.e. the oldest entry
        self._entries.appendleft(entry)
        logger.log(_LEVELS[severity], "[%s] %s", severity.value, message)
        return entry

    def entries(self) -> list[LogEntry]:
        """Snapshot of the retained entries, newest first."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(list(self._entries))
