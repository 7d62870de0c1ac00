"""
Rate limit tiers.

Every route group has three allowances: anonymous callers (counted per IP),
signed-in shop users and shop owners (both counted per user).
"""
from dataclasses import dataclass
import os


@dataclass
class RateLimit:
    requests: int
    window_seconds: int

    @property
    def requests_per_minute(self) -> float:
        return (self.requests / self.window_seconds) * 60


@dataclass
class RateLimitTier:
    anonymous: RateLimit
    authenticated: RateLimit
    owner: RateLimit


def _per_minute(anonymous: int, authenticated: int, owner: int) -> RateLimitTier:
    return RateLimitTier(
        anonymous=RateLimit(anonymous, 60),
        authenticated=RateLimit(authenticated, 60),
        owner=RateLimit(owner, 60),
    )


# Login and register stay tight against credential stuffing
AUTH_LIMITS = _per_minute(10, 20, 50)
PUBLIC_LIMITS = _per_minute(120, 120, 300)
ORDER_LIMITS = _per_minute(30, 60, 200)
DASHBOARD_LIMITS = _per_minute(20, 60, 120)
API_LIMITS = _per_minute(60, 120, 300)

# First matching path segment wins; anything else falls back to API_LIMITS
ROUTE_TIERS = (
    ('auth', AUTH_LIMITS),
    ('public', PUBLIC_LIMITS),
    ('orders', ORDER_LIMITS),
    ('dashboard', DASHBOARD_LIMITS),
)


class RateLimitSettings:
    ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

    # Comma-separated IPs that are never limited (health checkers, internal jobs)
    WHITELIST_IPS: list[str] = [
        ip.strip()
        for ip in os.getenv("RATE_LIMIT_WHITELIST_IPS", "").split(",")
        if ip.strip()
    ]

    # Set by the reverse proxy in front of the API
    REAL_IP_HEADER: str = os.getenv("RATE_LIMIT_REAL_IP_HEADER", "X-Forwarded-For")

    # Seconds between sweeps of idle windows
    CLEANUP_INTERVAL: int = int(os.getenv("RATE_LIMIT_CLEANUP_INTERVAL", "300"))


rate_limit_settings = RateLimitSettings()


def get_limit_tier_for_path(path: str) -> RateLimitTier:
    segments = [s for s in path.lower().split('/') if s]
    for segment, tier in ROUTE_TIERS:
        if segment in segments:
            return tier
    return API_LIMITS
