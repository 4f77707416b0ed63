import pytest
import redis
from fastapi import HTTPException
from starlette.requests import Request

from bookingsync import rate_limiter


class FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))

    def ttl(self, key):
        self.ops.append(("ttl", key))

    def execute(self):
        results = []
        for op, key in self.ops:
            if op == "incr":
                self.store.counts[key] = self.store.counts.get(key, 0) + 1
                results.append(self.store.counts[key])
            else:
                results.append(self.store.ttls.get(key, -1))
        return results


class FakeRedis:
    def __init__(self):
        self.counts = {}
        self.ttls = {}

    def pipeline(self):
        return FakePipeline(self)

    def expire(self, key, seconds):
        self.ttls[key] = seconds


class DownRedis:
    def pipeline(self):
        raise redis.ConnectionError("connection refused")


def make_request(ip="203.0.113.9", forwarded=None) -> Request:
    headers = [(b"x-forwarded-for", forwarded.encode())] if forwarded else []
    return Request({"type": "http", "method": "POST", "path": "/bookings/lock", "headers": headers, "client": (ip, 1234)})


def test_client_ip_prefers_forwarded_header():
    assert rate_limiter.client_ip(make_request(forwarded="198.51.100.1, 10.0.0.1")) == "198.51.100.1"
    assert rate_limiter.client_ip(make_request()) == "203.0.113.9"


def test_check_rate_limit_counts_and_sets_window():
    client = FakeRedis()

    assert rate_limiter.check_rate_limit("k", 2, 60, client) == (True, 1, 60)
    assert rate_limiter.check_rate_limit("k", 2, 60, client) == (True, 2, 60)
    assert rate_limiter.check_rate_limit("k", 2, 60, client)[0] is False


@pytest.mark.asyncio
async def test_limiter_rejects_over_limit(monkeypatch):
    monkeypatch.setattr(rate_limiter, "RATE_LIMIT_ENABLED", True)
    store = FakeRedis()
    monkeypatch.setattr(rate_limiter, "get_redis_client", lambda: store)
    limiter = rate_limiter.create_rate_limiter(limit=1, window_seconds=60, key_prefix="test")

    await limiter(make_request())
    with pytest.raises(HTTPException) as exc_info:
        await limiter(make_request())

    assert exc_info.value.status_code == 429
    assert exc_info.value.headers["Retry-After"] == "60"


@pytest.mark.asyncio
async def test_limiter_fails_open_when_redis_is_down(monkeypatch):
    monkeypatch.setattr(rate_limiter, "RATE_LIMIT_ENABLED", True)
    monkeypatch.setattr(rate_limiter, "get_redis_client", lambda: DownRedis())
    limiter = rate_limiter.create_rate_limiter(limit=1, window_seconds=60, key_prefix="test")

    assert await limiter(make_request()) is None
    assert await limiter(make_request()) is None


@pytest.mark.asyncio
async def test_limiter_disabled(monkeypatch):
    monkeypatch.setattr(rate_limiter, "RATE_LIMIT_ENABLED", False)
    monkeypatch.setattr(rate_limiter, "get_redis_client", lambda: DownRedis())
    limiter = rate_limiter.create_rate_limiter(limit=0, window_seconds=60)

    assert await limiter(make_request()) is None
