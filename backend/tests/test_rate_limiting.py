import pytest

from multishop.core import rate_limiter as rl
from multishop.core.rate_limit_config import (
    AUTH_LIMITS,
    DASHBOARD_LIMITS,
    ORDER_LIMITS,
    PUBLIC_LIMITS,
    API_LIMITS,
    RateLimit,
    get_limit_tier_for_path,
    rate_limit_settings,
)


def test_tier_for_path():
    assert get_limit_tier_for_path("/api/auth/login") is AUTH_LIMITS
    assert get_limit_tier_for_path("/api/public/products") is PUBLIC_LIMITS
    assert get_limit_tier_for_path("/api/orders/1/cancel") is ORDER_LIMITS
    assert get_limit_tier_for_path("/api/dashboard/overview") is DASHBOARD_LIMITS
    assert get_limit_tier_for_path("/api/products") is API_LIMITS


@pytest.mark.anyio
async def test_fixed_window_blocks_after_limit():
    limiter = rl.InMemoryRateLimiter()
    limit = RateLimit(requests=2, window_seconds=60)

    first = await limiter.check_rate_limit("ip:1.2.3.4:orders", limit)
    second = await limiter.check_rate_limit("ip:1.2.3.4:orders", limit)
    third = await limiter.check_rate_limit("ip:1.2.3.4:orders", limit)

    assert first.allowed and second.allowed
    assert second.remaining == 0
    assert not third.allowed
    assert third.retry_after >= 1

    # Other keys have their own window
    other = await limiter.check_rate_limit("ip:5.6.7.8:orders", limit)
    assert other.allowed

    limiter.reset()
    assert limiter.get_stats()["active_windows"] == 0


@pytest.mark.anyio
async def test_middleware_returns_429(client, monkeypatch):
    monkeypatch.setattr(rate_limit_settings, "ENABLED", True)
    monkeypatch.setattr(rl, "_rate_limiter", rl.InMemoryRateLimiter())
    monkeypatch.setattr(AUTH_LIMITS, "anonymous", RateLimit(requests=1, window_seconds=60))

    payload = {"email": "nobody@example.com", "password": "whatever"}
    first = await client.post("/api/auth/login", json=payload)
    assert first.status_code == 401

    second = await client.post("/api/auth/login", json=payload)
    assert second.status_code == 429
    assert "Retry-After" in second.headers
