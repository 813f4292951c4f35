"""Fixed-window per-sender rate limiting.

Counters live behind the RateWindowStore protocol. The in-memory store
guards each sender's window with a lock chosen by key; a shared store
(Redis INCR + PEXPIRE, a SQL upsert) can replace it without touching callers.

Window boundary: a call made exactly at `reset_at` still counts against the
old window; the reset happens only when `now > reset_at`.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from anotatudo.observability.logging import get_logger
from anotatudo.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)

# Seconds between sweeps of expired windows
PURGE_INTERVAL = 300.0


@dataclass
class RateWindow:
    """Mutable counter for one sender. Only touched under the key's lock."""

    count: int
    reset_at: float


class RateWindowStore(Protocol):
    """Atomic fixed-window counter keyed by sender address."""

    def hit(self, key: str, now: float, window_seconds: float) -> int:
        """Register one call and return the count in the current window."""
        ...

    def purge_expired(self, now: float) -> int:
        """Drop windows whose reset time has passed. Returns how many."""
        ...


class InMemoryRateWindowStore:
    """Process-local store. Re-initialized on restart.

    Keys map onto a fixed set of striped locks, so the same sender always
    takes the same lock and the lock table stays bounded however many
    senders come and go.
    """

    def __init__(self, stripes: int = 64) -> None:
        self._windows: dict[str, RateWindow] = {}
        self._locks = tuple(threading.Lock() for _ in range(stripes))

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def hit(self, key: str, now: float, window_seconds: float) -> int:
        with self._lock_for(key):
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                self._windows[key] = RateWindow(count=1, reset_at=now + window_seconds)
                return 1
            window.count += 1
            return window.count

    def get(self, key: str) -> RateWindow | None:
        """Snapshot of a sender's window (tests/diagnostics)."""
        with self._lock_for(key):
            window = self._windows.get(key)
            return RateWindow(window.count, window.reset_at) if window else None

    def purge_expired(self, now: float) -> int:
        keys = list(self._windows.keys())
        purged = 0
        for key in keys:
            with self._lock_for(key):
                window = self._windows.get(key)
                if window is not None and now > window.reset_at:
                    del self._windows[key]
                    purged += 1
        return purged


class RateLimiter:
    """Decides whether a sender's message may enter the pipeline.

    Args:
        store: Counter storage (defaults to in-memory).
        max_requests: Default calls allowed per window.
        window_seconds: Default window length.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        store: RateWindowStore | None = None,
        *,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._store = store if store is not None else InMemoryRateWindowStore()
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._next_purge = clock() + PURGE_INTERVAL

    def allow(
        self,
        sender_address: str,
        max_count: int | None = None,
        window_seconds: float | None = None,
    ) -> bool:
        """Count one message for sender_address; True if within the limit."""
        limit = max_count if max_count is not None else self._max_requests
        window = window_seconds if window_seconds is not None else self._window_seconds
        now = self._clock()

        count = self._store.hit(sender_address, now, window)
        allowed = count <= limit

        if not allowed:
            logger.info(
                "rate limit exceeded",
                extra={
                    "extra_fields": safe_log_context(
                        sender_hash=hash_identifier(sender_address),
                        count=count,
                        limit=limit,
                        window_seconds=window,
                    )
                },
            )

        self._maybe_purge(now)
        return allowed

    def _maybe_purge(self, now: float) -> None:
        if now < self._next_purge:
            return
        self._next_purge = now + PURGE_INTERVAL
        purged = self._store.purge_expired(now)
        if purged:
            logger.debug(
                "expired rate windows purged",
                extra={"extra_fields": safe_log_context(purged=purged)},
            )
