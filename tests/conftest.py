"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any import that might build settings, so
tests never need a running Redis.
"""

import os
import threading
from unittest.mock import Mock

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_WINDOW_SECONDS", "60")
os.environ.setdefault("RATE_LIMIT_MAX_REQUESTS", "3")
os.environ.setdefault("RATE_LIMIT_USE_ORIGIN_ADDRESS", "true")
os.environ.setdefault("LOG_FORMAT", "plain")

import pytest

from ratewall.adapters.rate_limit.in_memory import InMemoryCounterStore
from ratewall.core.rate_limit import reset_rate_limiter


class FakeTime:
    """Deterministic clock used to test window expiry."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def time(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class ScriptedRedis:
    """Mock redis client whose registered script emulates INCR + first EXPIRE.

    ``counts`` and ``expire_calls`` record what the Lua script would have done
    on a real server; ``script`` is the Mock returned by register_script.
    """

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.expire_calls: list[tuple[str, int]] = []
        self._lock = threading.Lock()
        self.script = Mock(side_effect=self._run)
        self.client = Mock()
        self.client.register_script = Mock(return_value=self.script)

    def _run(self, keys, args):
        key, ttl = keys[0], int(args[0])
        with self._lock:
            self.counts[key] = self.counts.get(key, 0) + 1
            current = self.counts[key]
            if current == 1:
                self.expire_calls.append((key, ttl))
            return current

    def expire(self, key: str) -> None:
        """Simulate the server evicting key when its TTL elapses."""
        with self._lock:
            self.counts.pop(key, None)


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def memory_store(fake_time: FakeTime) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=fake_time.time)


@pytest.fixture
def scripted_redis() -> ScriptedRedis:
    return ScriptedRedis()


@pytest.fixture(autouse=True)
def _fresh_rate_limiter():
    reset_rate_limiter()
    yield
    reset_rate_limiter()
