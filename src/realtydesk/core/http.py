"""HTTP utilities for RealtyDesk integrations."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from .config import Settings


@asynccontextmanager
async def get_async_client(settings: Settings) -> AsyncIterator[httpx.AsyncClient]:
    headers = {"User-Agent": settings.user_agent, "Content-Type": "application/json"}
    async with httpx.AsyncClient(timeout=settings.telemetry_timeout_seconds, headers=headers) as client:
        yield client
