"""
Rate Limiter

Fixed windows counted in process memory, keyed by caller and route group
(`ip:10.0.0.7:orders`, `user:42:products`). Each API instance counts only
its own traffic.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional

from multishop.core.rate_limit_config import RateLimit, get_limit_tier_for_path, rate_limit_settings
from multishop.core.logging import api_logger


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_after: int
    limit: int

    @property
    def retry_after(self) -> int:
        """Value for the Retry-After header; zero while the caller is still allowed."""
        return 0 if self.allowed else self.reset_after


UNLIMITED = RateLimitResult(allowed=True, remaining=999, reset_after=0, limit=999)


@dataclass
class WindowEntry:
    started: float = field(default_factory=time.time)
    hits: int = 0

    def expired(self, now: float, span: int) -> bool:
        return now - self.started >= span


class InMemoryRateLimiter:
    def __init__(self):
        self._windows: dict[str, WindowEntry] = {}
        self._lock = asyncio.Lock()
        self._last_cleanup = time.time()

    async def check_rate_limit(self, key: str, limit: RateLimit) -> RateLimitResult:
        """Count one request against `key` and report whether it fits in the window."""
        async with self._lock:
            now = time.time()
            window = self._windows.get(key)
            if window is None or window.expired(now, limit.window_seconds):
                window = self._windows[key] = WindowEntry(started=now)

            reset_after = max(0, int(limit.window_seconds - (now - window.started)))
            if window.hits >= limit.requests:
                return RateLimitResult(False, 0, reset_after, limit.requests)

            window.hits += 1
            return RateLimitResult(True, limit.requests - window.hits, reset_after, limit.requests)

    async def cleanup_expired(self):
        async with self._lock:
            now = time.time()
            stale = [
                key for key, window in self._windows.items()
                if window.expired(now, rate_limit_settings.CLEANUP_INTERVAL)
            ]
            for key in stale:
                del self._windows[key]
            self._last_cleanup = now
        if stale:
            api_logger.debug("Rate limiter cleanup", removed=len(stale))

    def reset(self):
        self._windows.clear()

    def get_stats(self) -> dict:
        return {"active_windows": len(self._windows), "last_cleanup": self._last_cleanup}


_rate_limiter: Optional[InMemoryRateLimiter] = None


def get_rate_limiter() -> InMemoryRateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = InMemoryRateLimiter()
    return _rate_limiter


def _route_group(path: str) -> str:
    # /api/orders/12/cancel -> orders
    parts = [p for p in path.split("/") if p]
    if len(parts) >= 2 and parts[0] == "api":
        return parts[1]
    return parts[0] if parts else "root"


async def check_rate_limit(
    identifier: str,
    identifier_type: str,
    path: str,
    is_owner: bool = False,
) -> RateLimitResult:
    """
    Apply the tier for `path` to one caller.

    identifier_type is "ip" for anonymous callers and "user" once a bearer
    token names a user; shop owners get the owner allowance.
    """
    if not rate_limit_settings.ENABLED:
        return UNLIMITED
    if identifier_type == "ip" and identifier in rate_limit_settings.WHITELIST_IPS:
        return UNLIMITED

    tier = get_limit_tier_for_path(path)
    if is_owner:
        limit = tier.owner
    elif identifier_type == "user":
        limit = tier.authenticated
    else:
        limit = tier.anonymous

    key = f"{identifier_type}:{identifier}:{_route_group(path)}"
    return await get_rate_limiter().check_rate_limit(key, limit)


def get_client_ip(request) -> str:
    """First address of the proxy header when present, else the socket peer."""
    forwarded = request.headers.get(rate_limit_settings.REAL_IP_HEADER)
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def rate_limit_cleanup_task():
    """Runs for the app's lifetime; started and cancelled by the lifespan handler."""
    while True:
        await asyncio.sleep(rate_limit_settings.CLEANUP_INTERVAL)
        try:
            await get_rate_limiter().cleanup_expired()
        except Exception as e:
            api_logger.error("Rate limit cleanup failed", error=e)
