"""Fixed-window rate limiter.

Each bucket key owns one counter in the shared store. The first request of a
window creates the counter and attaches a TTL of ``window_seconds``; later
requests only increment it. When the store expires the counter the window
resets. Requests beyond ``max_requests`` in a window are denied.

Storage failures fail open: a limiter outage must never become an API outage.
"""

from __future__ import annotations

import logging
from typing import Iterable

from ratewall.adapters.rate_limit.base import AbstractRateLimiter, CounterStore, WindowPolicy
from ratewall.core.errors import StorageAppError
from ratewall.core.interception import Interceptor
from ratewall.core.keys import hash_bucket_key

logger = logging.getLogger(__name__)

FIXED_WINDOW_KEY_PREFIX = "FWLimiter:"


class FixedWindowRateLimiter(AbstractRateLimiter):
    """Fixed-window strategy over an atomic increment-with-expiry store."""

    key_prefix = FIXED_WINDOW_KEY_PREFIX

    def __init__(self, policy: WindowPolicy, store: CounterStore) -> None:
        super().__init__(policy)
        self._store = store

    @property
    def store(self) -> CounterStore:
        return self._store

    def storage_key(self, key: str) -> str:
        """Namespace a bucket key so other strategies can share the store."""
        return f"{self.key_prefix}{key}"

    def has_limit_exceeded(self, key: str) -> bool:
        key_hash = hash_bucket_key(key)
        try:
            count = self._store.increment(self.storage_key(key), self._policy.window_seconds)
        except StorageAppError as exc:
            logger.warning(
                "rate_limit.storage_failed",
                extra={
                    "key_hash": key_hash,
                    "error_code": exc.code,
                    "error_type": (exc.details or {}).get("error_type"),
                    "fail_open": True,
                },
            )
            return False

        if count > self._policy.max_requests:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "key_hash": key_hash,
                    "count": count,
                    "limit": self._policy.max_requests,
                    "window_s": self._policy.window_seconds,
                },
            )
            return True

        logger.debug(
            "rate_limit.allowed",
            extra={
                "key_hash": key_hash,
                "count": count,
                "limit": self._policy.max_requests,
                "remaining": self._policy.max_requests - count,
            },
        )
        return False


def fixed_window_rate_limiter_middleware(
    window_seconds: int,
    max_requests: int,
    store: CounterStore,
    use_origin_address: bool,
    *,
    trust_forwarded_headers: bool = False,
    include_resource_id: bool = False,
    resource_id_param: str = "api_id",
    exempt_paths: Iterable[str] = (),
) -> Interceptor:
    """Build a fixed-window limiter and return its HTTP middleware.

    Raises:
        ConfigurationAppError: If window_seconds or max_requests is invalid.
    """
    limiter = FixedWindowRateLimiter(
        WindowPolicy(
            window_seconds=window_seconds,
            max_requests=max_requests,
            use_origin_address=use_origin_address,
        ),
        store,
    )
    return limiter.apply(
        trust_forwarded_headers=trust_forwarded_headers,
        include_resource_id=include_resource_id,
        resource_id_param=resource_id_param,
        exempt_paths=exempt_paths,
    )
