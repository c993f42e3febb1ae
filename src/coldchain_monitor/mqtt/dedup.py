"""Short-lived memory of recently accepted messages.

QoS 1 delivery and flaky links redeliver; re-merging the same payload is
harmless but the repeated log lines are not, so exact `(topic, payload)`
repeats inside the window are dropped.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from coldchain_monitor.logging_abstraction import get_logger

logger = get_logger(__name__)

type MessageKey = tuple[str, str]


class RecentMessageCache:
    """Set of recently seen `(topic, payload)` pairs with passive expiry.

    Each accepted pair schedules its own removal `window` seconds later on the
    running loop. Arrival times are kept too, so the duplicate decision stays
    exact when the caller supplies its own timestamps.
    """

    def __init__(self, window: float = 2.0, clock: Callable[[], float] | None = None) -> None:
        self.window: float = window
        self._clock: Callable[[], float] = clock or time.monotonic
        self._seen: dict[MessageKey, float] = {}
        self._expiry: dict[MessageKey, asyncio.TimerHandle] = {}
        self._closed: bool = False

    def check_and_remember(self, topic: str, payload: str, now: float | None = None) -> bool:
        """Return True if the pair is a duplicate; otherwise remember it and return False."""
        key: MessageKey = (topic, payload)
        arrived = self._clock() if now is None else now
        seen_at = self._seen.get(key)
        if seen_at is not None and arrived - seen_at < self.window:
            return True

        self._seen[key] = arrived
        self._schedule_expiry(key, arrived)
        return False

    def _schedule_expiry(self, key: MessageKey, arrived: float) -> None:
        if self._closed:
            self._prune(arrived)
            return
        old = self._expiry.pop(key, None)
        if old is not None:
            old.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (plain sync use): expire lazily on the next insert
            self._prune(arrived)
            return
        self._expiry[key] = loop.call_later(self.window, self._expire, key, arrived)

    def _prune(self, now: float) -> None:
        expired = [key for key, seen_at in self._seen.items() if now - seen_at >= self.window]
        for key in expired:
            del self._seen[key]

    def _expire(self, key: MessageKey, arrived: float) -> None:
        self._expiry.pop(key, None)
        if self._seen.get(key) == arrived:
            del self._seen[key]

    def close(self) -> None:
        """Cancel every pending expiry timer and forget all pairs."""
        self._closed = True
        for handle in self._expiry.values():
            handle.cancel()
        if self._expiry:
            logger.debug("Cancelled %d pending dedup expiry timers", len(self._expiry))
        self._expiry.clear()
        self._seen.clear()

    @property
    def pending_expiries(self) -> int:
        return len(self._expiry)

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: object) -> bool:
        return key in self._seen
