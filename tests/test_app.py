"""End-to-end tests for the assembled application and limiter wiring."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from ratewall.adapters.rate_limit.base import WindowPolicy
from ratewall.adapters.rate_limit.fixed_window import FixedWindowRateLimiter
from ratewall.adapters.rate_limit.in_memory import InMemoryCounterStore
from ratewall.adapters.rate_limit.redis_store import RedisCounterStore
from ratewall.core import rate_limit
from ratewall.core.app_factory import create_app
from ratewall.core.config import RateLimitSettings, RedisSettings, settings
from ratewall.core.errors import ConfigurationAppError


def _limiter(limit: int = 2) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(
        WindowPolicy(window_seconds=60, max_requests=limit, use_origin_address=True),
        InMemoryCounterStore(),
    )


def test_sample_route_is_limited_per_api() -> None:
    client = TestClient(create_app(_limiter()))

    assert [client.get("/v1/apis/a").status_code for _ in range(3)] == [200, 200, 429]
    assert client.get("/v1/apis/b").json() == {"api_id": "b", "status": "ok"}


def test_rejections_carry_request_id() -> None:
    client = TestClient(create_app(_limiter(limit=1)))
    client.get("/v1/apis/a")

    response = client.get("/v1/apis/a", headers={"X-Request-ID": "req-429"})

    assert response.status_code == 429
    assert response.headers["X-Request-ID"] == "req-429"
    assert "X-Request-Duration-ms" in response.headers


def test_health_is_exempt_by_default() -> None:
    client = TestClient(create_app(_limiter(limit=1)))

    assert all(client.get("/health").status_code == 200 for _ in range(5))


def test_uses_configured_limiter_when_none_given() -> None:
    client = TestClient(create_app())
    limit = settings.rate_limit.max_requests

    statuses = [client.get("/v1/apis/cfg").status_code for _ in range(limit + 1)]

    assert statuses == [200] * limit + [429]


def test_disabled_rate_limit_installs_nothing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings.rate_limit, "enabled", False)
    client = TestClient(create_app(_limiter(limit=1)))

    assert all(client.get("/v1/apis/a").status_code == 200 for _ in range(3))


def test_get_rate_limiter_is_cached_until_config_changes(monkeypatch: pytest.MonkeyPatch) -> None:
    first = rate_limit.get_rate_limiter()
    assert rate_limit.get_rate_limiter() is first

    monkeypatch.setattr(settings.rate_limit, "max_requests", 99)
    rebuilt = rate_limit.get_rate_limiter()

    assert rebuilt is not first
    assert rebuilt.policy.max_requests == 99


@pytest.mark.parametrize("field", ["socket_timeout_seconds", "socket_connect_timeout_seconds"])
def test_get_rate_limiter_rebuilds_when_redis_timeouts_change(
    monkeypatch: pytest.MonkeyPatch, field: str
) -> None:
    monkeypatch.setattr(settings.rate_limit, "backend", "redis")
    with patch("ratewall.adapters.rate_limit.redis_store.redis.from_url") as from_url:
        first = rate_limit.get_rate_limiter()
        monkeypatch.setattr(settings.redis, field, 2.5)
        rebuilt = rate_limit.get_rate_limiter()

    assert rebuilt is not first
    assert from_url.call_count == 2
    assert from_url.call_args.kwargs[field.removesuffix("_seconds")] == 2.5


def test_build_counter_store_memory_backend() -> None:
    store = rate_limit.build_counter_store(RateLimitSettings(backend="memory"), RedisSettings())
    assert isinstance(store, InMemoryCounterStore)


def test_build_counter_store_redis_backend() -> None:
    with patch("ratewall.adapters.rate_limit.redis_store.redis.from_url"):
        store = rate_limit.build_counter_store(RateLimitSettings(backend=" Redis "), RedisSettings())
    assert isinstance(store, RedisCounterStore)


def test_build_counter_store_rejects_unknown_backend() -> None:
    with pytest.raises(ConfigurationAppError) as exc_info:
        rate_limit.build_counter_store(RateLimitSettings(backend="memcached"), RedisSettings())

    assert exc_info.value.code == "unknown_rate_limit_backend"


@pytest.mark.parametrize(
    "overrides",
    [{"window_seconds": 0}, {"max_requests": 0}, {"max_requests": -3}],
)
def test_settings_reject_non_positive_policy(overrides: dict) -> None:
    with pytest.raises(ValueError):
        RateLimitSettings(**overrides)


def test_exempt_path_set_parses_comma_list() -> None:
    cfg = RateLimitSettings(exempt_paths=" /health, /ready ,,")
    assert cfg.exempt_path_set() == frozenset({"/health", "/ready"})
