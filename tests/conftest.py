"""Shared fixtures for RealtyDesk tests."""
from __future__ import annotations

import time
from types import SimpleNamespace
from typing import Optional

import pytest
from starlette.datastructures import Headers

from realtydesk.security.rate_limiter import FixedWindowRateLimiter


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start: Optional[int] = None) -> None:
        self.now = start if start is not None else int(time.time() * 1000)

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def _make_request(ip: Optional[str] = "192.168.1.1", **headers: str) -> SimpleNamespace:
    values = {name.replace("_", "-"): value for name, value in headers.items()}
    if ip is not None:
        values.setdefault("x-forwarded-for", ip)
        values.setdefault("x-real-ip", ip)
    return SimpleNamespace(headers=Headers(values))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock: FakeClock):
    instance = FixedWindowRateLimiter(clock=clock)
    yield instance
    instance.destroy()


@pytest.fixture
def make_request():
    return _make_request
