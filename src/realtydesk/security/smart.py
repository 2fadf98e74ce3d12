"""Tiered quotas for identified callers and anonymous IP addresses."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from .policies import get_policy
from .rate_limiter import FixedWindowRateLimiter

IP_KEY_PREFIX = "ip:"
AUTHENTICATED_MULTIPLIER = 2


@dataclass(frozen=True, slots=True)
class QuotaDecision:
    """Outcome of a tiered quota check."""

    allowed: bool
    limit: int
    remaining: int
    reset_time: datetime


class SmartRateLimiter:
    """Applies named policies on top of a shared fixed-window store.

    Authenticated callers get ``AUTHENTICATED_MULTIPLIER`` times the policy
    ceiling. IP buckets always use the base ceiling and are keyed separately,
    so a client can be held by both at once.
    """

    def __init__(self, limiter: FixedWindowRateLimiter) -> None:
        self.limiter = limiter

    def check_business_user_limit(
        self,
        identifier: str,
        policy: str = "api",
        is_authenticated: bool = False,
    ) -> QuotaDecision:
        config = get_policy(policy)
        ceiling = config.max_requests * AUTHENTICATED_MULTIPLIER if is_authenticated else config.max_requests
        return self._check(identifier, config.window_ms, ceiling)

    def check_ip_limit(self, ip: str, policy: str = "api") -> QuotaDecision:
        config = get_policy(policy)
        return self._check(f"{IP_KEY_PREFIX}{ip}", config.window_ms, config.max_requests)

    def check_combined(
        self,
        identifier: str,
        ip: str,
        policy: str = "api",
        is_authenticated: bool = False,
    ) -> QuotaDecision:
        """Check the identity bucket and the IP bucket; both are always counted."""

        user_decision = self.check_business_user_limit(identifier, policy, is_authenticated)
        ip_decision = self.check_ip_limit(ip, policy)
        if not user_decision.allowed:
            return user_decision
        return ip_decision

    def destroy(self) -> None:
        self.limiter.destroy()

    def _check(self, key: str, window_ms: int, ceiling: int) -> QuotaDecision:
        entry, allowed = self.limiter.consume(key, window_ms, ceiling)
        return QuotaDecision(
            allowed=allowed,
            limit=ceiling,
            remaining=max(0, ceiling - entry.count),
            reset_time=datetime.fromtimestamp(entry.reset_at / 1000, tz=timezone.utc),
        )
