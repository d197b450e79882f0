"""HTTP-level tests for the rate limiting interception wrapper."""

from __future__ import annotations

from unittest.mock import Mock

from fastapi import FastAPI
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from ratewall.adapters.rate_limit.base import WindowPolicy
from ratewall.adapters.rate_limit.fixed_window import (
    FixedWindowRateLimiter,
    fixed_window_rate_limiter_middleware,
)
from ratewall.adapters.rate_limit.in_memory import InMemoryCounterStore
from ratewall.adapters.rate_limit.redis_store import RedisCounterStore
from ratewall.core.interception import REJECTION_MESSAGE, build_rejection_body, wrap


def _build_app(middleware) -> tuple[FastAPI, list[str]]:
    calls: list[str] = []
    app = FastAPI()

    @app.get("/orders")
    def orders() -> dict:
        calls.append("orders")
        return {"orders": []}

    @app.get("/v1/apis/{api_id}")
    def get_api(api_id: str) -> dict:
        calls.append(api_id)
        return {"api_id": api_id}

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    app.middleware("http")(middleware)
    return app, calls


def _fixed_window(store, *, use_origin_address: bool = False, **options):
    return fixed_window_rate_limiter_middleware(
        window_seconds=60,
        max_requests=3,
        store=store,
        use_origin_address=use_origin_address,
        **options,
    )


def test_rejects_fourth_request_without_calling_handler(memory_store) -> None:
    app, calls = _build_app(_fixed_window(memory_store))
    client = TestClient(app)

    statuses = [client.get("/orders").status_code for _ in range(4)]

    assert statuses == [200, 200, 200, 429]
    assert calls == ["orders"] * 3
    assert client.get("/orders").json() == {"message": REJECTION_MESSAGE}


def test_window_reset_allows_again(memory_store, fake_time) -> None:
    app, _ = _build_app(_fixed_window(memory_store))
    client = TestClient(app)

    for _ in range(4):
        client.get("/orders")
    fake_time.advance(60)

    assert client.get("/orders").status_code == 200


def test_query_string_is_not_part_of_the_key(memory_store) -> None:
    app, _ = _build_app(_fixed_window(memory_store))
    client = TestClient(app)

    for page in range(3):
        assert client.get(f"/orders?page={page}").status_code == 200
    assert client.get("/orders?page=9").status_code == 429


def test_each_origin_address_has_its_own_quota(memory_store) -> None:
    app, _ = _build_app(
        _fixed_window(memory_store, use_origin_address=True, trust_forwarded_headers=True)
    )
    client = TestClient(app)
    caller_a = {"X-Forwarded-For": "203.0.113.1"}
    caller_b = {"X-Forwarded-For": "203.0.113.2"}

    assert [client.get("/orders", headers=caller_a).status_code for _ in range(4)] == [200, 200, 200, 429]
    assert [client.get("/orders", headers=caller_b).status_code for _ in range(4)] == [200, 200, 200, 429]


def test_forwarded_headers_ignored_unless_trusted(memory_store) -> None:
    app, _ = _build_app(_fixed_window(memory_store, use_origin_address=True))
    client = TestClient(app)

    for ip in ("203.0.113.1", "203.0.113.2", "203.0.113.3"):
        assert client.get("/orders", headers={"X-Forwarded-For": ip}).status_code == 200
    assert client.get("/orders", headers={"X-Forwarded-For": "203.0.113.4"}).status_code == 429


def test_routes_have_separate_buckets(memory_store) -> None:
    app, _ = _build_app(_fixed_window(memory_store))
    client = TestClient(app)

    for _ in range(3):
        client.get("/v1/apis/1")

    assert client.get("/v1/apis/1").status_code == 429
    assert client.get("/v1/apis/12").status_code == 200
    assert client.get("/orders").status_code == 200


def test_rejection_includes_resource_id_when_enabled(memory_store) -> None:
    app, _ = _build_app(_fixed_window(memory_store, include_resource_id=True))
    client = TestClient(app)

    for _ in range(3):
        client.get("/v1/apis/42")
    response = client.get("/v1/apis/42")

    assert response.status_code == 429
    assert response.json() == {"message": REJECTION_MESSAGE, "resourceID": "42"}


def test_resource_id_omitted_when_route_has_no_param(memory_store) -> None:
    app, _ = _build_app(_fixed_window(memory_store, include_resource_id=True))
    client = TestClient(app)

    for _ in range(3):
        client.get("/orders")

    assert client.get("/orders").json() == {"message": REJECTION_MESSAGE}


def test_exempt_paths_bypass_the_limiter(memory_store) -> None:
    app, _ = _build_app(_fixed_window(memory_store, exempt_paths={"/health"}))
    client = TestClient(app)

    assert all(client.get("/health").status_code == 200 for _ in range(10))
    assert memory_store.stats()["keys"] == 0


def test_storage_outage_lets_traffic_through() -> None:
    client_mock = Mock()
    client_mock.register_script.return_value = Mock(side_effect=RedisConnectionError("down"))
    app, calls = _build_app(_fixed_window(RedisCounterStore(client_mock)))
    client = TestClient(app)

    responses = [client.get("/orders") for _ in range(5)]

    assert [r.status_code for r in responses] == [200] * 5
    assert len(calls) == 5
    assert "down" not in responses[-1].text


def test_wrap_accepts_any_decide_callable() -> None:
    seen: list[str] = []

    def deny_everything(key: str) -> bool:
        seen.append(key)
        return True

    app, calls = _build_app(wrap(deny_everything, use_origin_address=True))
    response = TestClient(app).get("/orders")

    assert response.status_code == 429
    assert calls == []
    assert seen == ["/orders:testclient"]


def test_apply_uses_policy_origin_setting() -> None:
    store = InMemoryCounterStore()
    limiter = FixedWindowRateLimiter(
        WindowPolicy(window_seconds=60, max_requests=1, use_origin_address=True),
        store,
    )
    app, _ = _build_app(limiter.apply())
    client = TestClient(app)

    client.get("/orders")

    assert store.get("FWLimiter:/orders:testclient") == 1


def test_build_rejection_body_shapes() -> None:
    assert build_rejection_body() == {"message": "Too many requests"}
    assert build_rejection_body("api-7") == {"message": "Too many requests", "resourceID": "api-7"}
