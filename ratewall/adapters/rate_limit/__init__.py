"""Rate limiting adapters.

This package separates the counting strategy (fixed window today) from the
counter store holding the shared state (Redis in production, an in-memory
store for single-process development), so either side can be swapped without
changing the HTTP layer.
"""

from ratewall.adapters.rate_limit.base import AbstractRateLimiter, CounterStore, WindowPolicy
from ratewall.adapters.rate_limit.fixed_window import (
    FixedWindowRateLimiter,
    fixed_window_rate_limiter_middleware,
)
from ratewall.adapters.rate_limit.in_memory import InMemoryCounterStore
from ratewall.adapters.rate_limit.redis_store import RedisCounterStore

__all__ = [
    "AbstractRateLimiter",
    "CounterStore",
    "FixedWindowRateLimiter",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "WindowPolicy",
    "fixed_window_rate_limiter_middleware",
]
