"""Named rate limit policies shared across the API surface."""
from __future__ import annotations

from types import MappingProxyType
from typing import List, Mapping

from .rate_limiter import RateLimitConfig

MINUTE_MS = 60 * 1000


class UnknownPolicyError(KeyError):
    """Raised when a rate limit policy name is not defined."""


RATE_LIMIT_CONFIGS: Mapping[str, RateLimitConfig] = MappingProxyType(
    {
        "api": RateLimitConfig(window_ms=MINUTE_MS, max_requests=100),
        "general_api": RateLimitConfig(window_ms=MINUTE_MS, max_requests=200),
        # Brute-force protection for login and password reset.
        "auth": RateLimitConfig(window_ms=15 * MINUTE_MS, max_requests=5),
        "chat": RateLimitConfig(window_ms=MINUTE_MS, max_requests=30),
    }
)


def get_policy(name: str) -> RateLimitConfig:
    try:
        return RATE_LIMIT_CONFIGS[name]
    except KeyError as exc:
        raise UnknownPolicyError(f"Unknown rate limit policy '{name}'") from exc


def describe_policies() -> List[dict]:
    """Return the policy table in a JSON friendly shape."""

    return [
        {"name": name, "windowMs": config.window_ms, "maxRequests": config.max_requests}
        for name, config in RATE_LIMIT_CONFIGS.items()
    ]
