"""Fixed-window in-memory rate limiting."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple

logger = logging.getLogger("realtydesk.rate_limiter")

DEFAULT_CLEANUP_INTERVAL_MS = 5 * 60 * 1000
UNKNOWN_CLIENT = "unknown"


class _Headers(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...


class SupportsHeaders(Protocol):
    """Anything exposing a case-insensitive ``headers.get``, e.g. a Starlette request."""

    @property
    def headers(self) -> _Headers: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


def default_key(request: SupportsHeaders) -> str:
    """Return the client address used as the default quota key."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    return real_ip or UNKNOWN_CLIENT


@dataclass(slots=True)
class CounterEntry:
    """Requests observed for one key in its current window."""

    count: int
    reset_at: int


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """Window length and request ceiling for one policy."""

    window_ms: int
    max_requests: int
    key_generator: Optional[Callable[[SupportsHeaders], str]] = None

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {self.window_ms}")
        if self.max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got {self.max_requests}")


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_time: int
    blocked: bool


class FixedWindowRateLimiter:
    """Per-key fixed-window counters held in process memory.

    Stale entries are swept opportunistically on access, at most once per
    ``cleanup_interval_ms``; nothing runs in the background. Each instance owns
    its store, so quotas are per process.
    """

    def __init__(
        self,
        *,
        cleanup_interval_ms: int = DEFAULT_CLEANUP_INTERVAL_MS,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.cleanup_interval_ms = cleanup_interval_ms
        self._clock = clock
        self._store: Dict[str, CounterEntry] = {}
        self._last_cleanup = 0

    @property
    def store(self) -> Mapping[str, CounterEntry]:
        return MappingProxyType(self._store)

    def __len__(self) -> int:
        return len(self._store)

    def now(self) -> int:
        """Current time in epoch milliseconds, as seen by this limiter."""

        return self._clock()

    def check_rate_limit(self, request: SupportsHeaders, config: RateLimitConfig) -> RateLimitResult:
        """Admit or deny ``request`` under ``config``."""

        if config.key_generator is not None:
            key = config.key_generator(request)
        else:
            key = default_key(request)
        entry, admitted = self.consume(key, config.window_ms, config.max_requests)
        if not admitted:
            return RateLimitResult(
                success=False,
                limit=config.max_requests,
                remaining=0,
                reset_time=entry.reset_at,
                blocked=True,
            )
        return RateLimitResult(
            success=True,
            limit=config.max_requests,
            remaining=config.max_requests - entry.count,
            reset_time=entry.reset_at,
            blocked=False,
        )

    def consume(self, key: str, window_ms: int, ceiling: int) -> Tuple[CounterEntry, bool]:
        """Count one request for ``key`` against ``ceiling``.

        Returns the live entry and whether the request was admitted. A denied
        request leaves the count untouched.
        """

        now = self._clock()
        if now - self._last_cleanup > self.cleanup_interval_ms:
            self._sweep(now)
            self._last_cleanup = now

        entry = self._store.get(key)
        if entry is None or entry.reset_at <= now:
            entry = CounterEntry(count=0, reset_at=now + window_ms)
            self._store[key] = entry

        if entry.count >= ceiling:
            return entry, False
        entry.count += 1
        return entry, True

    def cleanup(self) -> int:
        """Evict every entry whose window has elapsed; return how many were removed."""

        return self._sweep(self._clock())

    def destroy(self) -> None:
        self._store.clear()

    def _sweep(self, now: int) -> int:
        stale = [key for key, entry in self._store.items() if entry.reset_at <= now]
        for key in stale:
            del self._store[key]
        if stale:
            logger.debug("Evicted %s expired rate limit entries", len(stale))
        return len(stale)
