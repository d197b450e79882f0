"""Rate limiting wiring for the FastAPI app.

This module builds the configured limiter from settings and installs its
middleware.

Design goals:
- Minimal coupling: the app only sees a middleware function.
- Swap-friendly: the counter store is chosen by configuration behind the
  CounterStore interface.
- Safe defaults: Redis shared store, per-caller buckets, health exempt.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from ratewall.adapters.rate_limit.base import AbstractRateLimiter, CounterStore, WindowPolicy
from ratewall.adapters.rate_limit.fixed_window import FixedWindowRateLimiter
from ratewall.adapters.rate_limit.in_memory import InMemoryCounterStore
from ratewall.adapters.rate_limit.redis_store import RedisCounterStore
from ratewall.core.config import RateLimitSettings, RedisSettings, settings
from ratewall.core.errors import ConfigurationAppError

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("redis", "memory")

_limiter: AbstractRateLimiter | None = None
_limiter_config: tuple | None = None


def build_counter_store(
    rate_limit_settings: RateLimitSettings,
    redis_settings: RedisSettings,
) -> CounterStore:
    """Create the counter store selected by ``rate_limit_settings.backend``.

    Raises:
        ConfigurationAppError: If the backend name is unknown.
    """

    backend = rate_limit_settings.backend.strip().lower()
    if backend == "redis":
        return RedisCounterStore.from_settings(redis_settings)
    if backend == "memory":
        return InMemoryCounterStore()

    raise ConfigurationAppError(
        code="unknown_rate_limit_backend",
        message=f"Unsupported rate limit backend: {rate_limit_settings.backend!r}",
        details={
            "field": "backend",
            "actual_value": rate_limit_settings.backend,
            "hint": f"Use one of: {', '.join(SUPPORTED_BACKENDS)}",
        },
    )


def get_rate_limiter() -> AbstractRateLimiter:
    """Return a process-wide rate limiter instance.

    The instance is cached in-module so the store client (and the in-memory
    counters, when used) persist across requests. If configuration changes
    (primarily in tests), the limiter is rebuilt.

    Returns:
        AbstractRateLimiter: Configured limiter instance.
    """

    global _limiter, _limiter_config

    rl = settings.rate_limit
    config = (
        rl.backend,
        rl.window_seconds,
        rl.max_requests,
        rl.use_origin_address,
        settings.redis.url,
        settings.redis.socket_timeout_seconds,
        settings.redis.socket_connect_timeout_seconds,
    )

    if _limiter is None or _limiter_config != config:
        policy = WindowPolicy(
            window_seconds=rl.window_seconds,
            max_requests=rl.max_requests,
            use_origin_address=rl.use_origin_address,
        )
        _limiter = FixedWindowRateLimiter(policy, build_counter_store(rl, settings.redis))
        _limiter_config = config
        logger.info(
            "rate_limit.limiter_built",
            extra={
                "backend": rl.backend,
                "limit": rl.max_requests,
                "window_s": rl.window_seconds,
                "use_origin_address": rl.use_origin_address,
            },
        )

    return _limiter


def reset_rate_limiter() -> None:
    """Drop the cached limiter so the next call rebuilds it."""

    global _limiter, _limiter_config
    _limiter = None
    _limiter_config = None


def install_rate_limiter(app: FastAPI, limiter: AbstractRateLimiter | None = None) -> None:
    """Register the rate limiting middleware on ``app`` when enabled.

    Args:
        app: FastAPI application instance.
        limiter: Limiter to install; defaults to the configured one.
    """

    rl = settings.rate_limit
    if not rl.enabled:
        logger.info("rate_limit.disabled")
        return

    limiter = limiter or get_rate_limiter()
    middleware = limiter.apply(
        trust_forwarded_headers=rl.trust_forwarded_headers,
        include_resource_id=rl.include_resource_id,
        resource_id_param=rl.resource_id_param,
        exempt_paths=rl.exempt_path_set(),
    )
    app.middleware("http")(middleware)
