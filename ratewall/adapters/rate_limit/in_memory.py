"""In-memory counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis store for anything horizontally scaled.
- Thread-safe: increment and conditional expiry happen under one lock, so the
  store honours the same atomic contract as the Redis script.
- Bounded by live keys: expired counters are reclaimed on every increment
  through a min-heap of expiry deadlines.
"""

from __future__ import annotations

import heapq
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ratewall.adapters.rate_limit.base import CounterStore
from ratewall.core.errors import ConfigurationAppError


@dataclass
class _CounterState:
    count: int
    expires_at: float | None


class InMemoryCounterStore(CounterStore):
    """Counter store backed by a dict with store-side expiries.

    Expired counters behave as absent and are evicted by the store itself,
    mirroring a native TTL: the limiter never deletes keys.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _CounterState] = {}
        # (expires_at, key); entries go stale when a key is recreated
        self._deadlines: list[tuple[float, str]] = []
        self._expiries_set = 0
        self._evictions = 0

    def _evict_single(self, key: str) -> None:
        if self._state_by_key.pop(key, None) is not None:
            self._evictions += 1

    def _evict_expired_locked(self, now: float) -> None:
        while self._deadlines and self._deadlines[0][0] <= now:
            expires_at, key = heapq.heappop(self._deadlines)
            state = self._state_by_key.get(key)
            if state is not None and state.expires_at == expires_at:
                self._evict_single(key)

    def _get_live_state(self, key: str, now: float) -> _CounterState | None:
        state = self._state_by_key.get(key)
        if state is not None and state.expires_at is not None and now >= state.expires_at:
            self._evict_single(key)
            return None
        return state

    def increment(self, key: str, window_seconds: int) -> int:
        """Atomically increment key, setting its expiry when it is created.

        Args:
            key: Fully prefixed storage key.
            window_seconds: TTL applied on the first increment of a window.

        Returns:
            The post-increment count.

        Raises:
            ConfigurationAppError: If window_seconds is not positive.
        """
        if window_seconds < 1:
            raise ConfigurationAppError(
                code="invalid_window_policy",
                message="window_seconds must be >= 1",
            )

        with self._lock:
            now = self._clock()
            self._evict_expired_locked(now)
            state = self._get_live_state(key, now)
            if state is None:
                state = _CounterState(count=0, expires_at=None)
                self._state_by_key[key] = state

            state.count += 1
            if state.count == 1:
                state.expires_at = now + window_seconds
                heapq.heappush(self._deadlines, (state.expires_at, key))
                self._expiries_set += 1
            return state.count

    def ttl(self, key: str) -> float | None:
        """Return seconds until key expires, or None when it is absent."""
        with self._lock:
            now = self._clock()
            state = self._get_live_state(key, now)
            if state is None or state.expires_at is None:
                return None
            return state.expires_at - now

    def get(self, key: str) -> int | None:
        """Return the live count at key without incrementing it."""
        with self._lock:
            state = self._get_live_state(key, self._clock())
            return None if state is None else state.count

    def stats(self) -> dict[str, int]:
        """Return lightweight store metrics without exposing keys."""
        with self._lock:
            self._evict_expired_locked(self._clock())
            return {
                "keys": len(self._state_by_key),
                "expiries_set": self._expiries_set,
                "evictions": self._evictions,
            }

    def clear(self) -> None:
        """Remove all counters and reset metrics."""
        with self._lock:
            self._state_by_key.clear()
            self._deadlines.clear()
            self._expiries_set = 0
            self._evictions = 0
