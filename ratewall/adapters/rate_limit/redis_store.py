"""Redis-backed counter store.

The increment and the first-increment expiry run as one Lua script on the
Redis server, so concurrent callers on every node observe linearizable counts
and the TTL is attached exactly once per window.
"""

from __future__ import annotations

import logging

import redis
from redis.exceptions import RedisError

from ratewall.adapters.rate_limit.base import CounterStore
from ratewall.core.config import RedisSettings
from ratewall.core.errors import StorageAppError

logger = logging.getLogger(__name__)


INCREMENT_WITH_EXPIRY_LUA = """
local current = redis.call("INCR", KEYS[1])
if tonumber(current) == 1 then
    redis.call("EXPIRE", KEYS[1], ARGV[1])
end
return current
"""


def _coerce_count(reply: object) -> int:
    """Validate the script reply as a positive integer count.

    Raises:
        StorageAppError: If the reply is not numeric.
    """

    # Integer or numeric-string replies only; bool and float are malformed.
    if isinstance(reply, bool) or not isinstance(reply, (int, bytes, str)):
        raise StorageAppError(
            code="counter_store_bad_reply",
            message="Counter store returned a non-numeric reply",
            details={"backend": "redis", "error_type": type(reply).__name__},
        )
    if isinstance(reply, bytes):
        reply = reply.decode("ascii", errors="replace")
    try:
        count = int(reply)
    except ValueError as exc:
        raise StorageAppError(
            code="counter_store_bad_reply",
            message="Counter store returned a non-numeric reply",
            details={"backend": "redis", "error_type": type(reply).__name__},
        ) from exc
    if count < 1:
        raise StorageAppError(
            code="counter_store_bad_reply",
            message="Counter store returned an out-of-range count",
            details={"backend": "redis", "actual_value": count},
        )
    return count


class RedisCounterStore(CounterStore):
    """Counter store running the atomic increment script on Redis."""

    def __init__(self, client: redis.Redis) -> None:
        """Register the increment script against a client.

        Registration is local; the script is loaded into Redis on first use
        and invoked by SHA afterwards.

        Args:
            client: Synchronous redis-py client. Its socket timeouts bound
                every increment.
        """
        self._client = client
        self._increment_script = client.register_script(INCREMENT_WITH_EXPIRY_LUA)

    @classmethod
    def from_settings(cls, redis_settings: RedisSettings) -> "RedisCounterStore":
        """Build a store with a client configured from settings."""
        client = redis.from_url(
            redis_settings.url,
            socket_timeout=redis_settings.socket_timeout_seconds,
            socket_connect_timeout=redis_settings.socket_connect_timeout_seconds,
        )
        logger.info(
            "counter_store.redis_configured",
            extra={
                "redis_url": redis_settings.url,
                "socket_timeout_s": redis_settings.socket_timeout_seconds,
            },
        )
        return cls(client)

    @property
    def client(self) -> redis.Redis:
        return self._client

    def increment(self, key: str, window_seconds: int) -> int:
        try:
            reply = self._increment_script(keys=[key], args=[window_seconds])
        except RedisError as exc:
            raise StorageAppError(
                code="counter_store_unavailable",
                message="Counter store operation failed",
                details={"backend": "redis", "error_type": type(exc).__name__},
            ) from exc
        return _coerce_count(reply)
