import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from usdt_billing import middleware
from usdt_billing.middleware import RateLimitMiddleware, RequestIDMiddleware


class FakeRedis:
    def __init__(self):
        self.counts = {}
        self.expiries = {}

    def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    def expire(self, key, seconds):
        self.expiries[key] = seconds


def build_app(limit: int) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limit_per_minute=limit)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/entitlements")
    def entitlements():
        return {"ok": True}

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    return app


@pytest.fixture
def fake_redis(monkeypatch):
    redis_client = FakeRedis()
    monkeypatch.setattr(middleware, "get_redis", lambda: redis_client)
    return redis_client


def test_requests_over_the_limit_are_rejected(fake_redis):
    client = TestClient(build_app(limit=2))

    assert client.get("/entitlements").status_code == 200
    assert client.get("/entitlements").status_code == 200
    response = client.get("/entitlements")

    assert response.status_code == 429
    assert response.json()["code"] == "rate_limited"
    assert list(fake_redis.expiries.values()) == [60]


def test_clients_are_counted_separately(fake_redis):
    client = TestClient(build_app(limit=1))

    assert client.get("/entitlements", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
    assert client.get("/entitlements", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
    assert client.get("/entitlements", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429


def test_health_checks_are_exempt(fake_redis):
    client = TestClient(build_app(limit=1))
    for _ in range(3):
        assert client.get("/healthz").status_code == 200
    assert fake_redis.counts == {}


def test_redis_outage_fails_open(monkeypatch):
    def unavailable():
        raise ConnectionError("redis down")

    monkeypatch.setattr(middleware, "get_redis", unavailable)
    client = TestClient(build_app(limit=1))

    for _ in range(3):
        assert client.get("/entitlements").status_code == 200


def test_request_id_is_echoed(fake_redis):
    client = TestClient(build_app(limit=10))
    response = client.get("/entitlements", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
