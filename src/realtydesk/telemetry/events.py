"""Telemetry event collection for RealtyDesk."""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..core.config import Settings
from ..core.http import get_async_client

logger = logging.getLogger("realtydesk.telemetry")


@dataclass(slots=True)
class TelemetryEvent:
    """Represents a single telemetry data point."""

    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=lambda: time.time())


class TelemetryClient:
    """Logs events and optionally forwards them to a collector."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._events: asyncio.Queue[TelemetryEvent] = asyncio.Queue()
        self._sender_task: Optional[asyncio.Task[None]] = None

    @property
    def forwarding(self) -> bool:
        return self._settings.telemetry_endpoint is not None

    async def start(self) -> None:
        if self.forwarding and self._sender_task is None:
            self._sender_task = asyncio.create_task(self._forward_events())

    async def stop(self) -> None:
        if self._sender_task:
            self._sender_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sender_task
            self._sender_task = None

    async def record(self, event: TelemetryEvent) -> None:
        logger.debug("Telemetry event %s %s", event.name, event.attributes)
        if self.forwarding:
            await self._events.put(event)

    async def _forward_events(self) -> None:
        assert self._settings.telemetry_endpoint is not None
        async with get_async_client(self._settings) as client:
            while True:
                event = await self._events.get()
                payload = json.dumps(asdict(event), default=str)
                try:
                    await client.post(str(self._settings.telemetry_endpoint), content=payload)
                except httpx.HTTPError as exc:
                    logger.warning("Dropped telemetry event %s: %s", event.name, exc)
