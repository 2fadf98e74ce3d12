"""Edge admission control for RealtyDesk API routes."""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from ..core.config import Settings
from ..security.auth import resolve_identity
from ..security.rate_limiter import default_key
from ..security.smart import QuotaDecision, SmartRateLimiter
from ..telemetry.events import TelemetryClient, TelemetryEvent

logger = logging.getLogger("realtydesk.api.rate_limit")


def rate_limit_headers(
    limit: int,
    remaining: int,
    reset_time: datetime,
    now_ms: Optional[int] = None,
) -> Dict[str, str]:
    """Quota headers for a response; ``Retry-After`` is added when ``now_ms`` is given."""

    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": reset_time.isoformat(),
    }
    if now_ms is not None:
        headers["Retry-After"] = str(retry_after_seconds(reset_time, now_ms))
    return headers


def retry_after_seconds(reset_time: datetime, now_ms: int) -> int:
    reset_ms = round(reset_time.timestamp() * 1000)
    return max(0, math.ceil((reset_ms - now_ms) / 1000))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Applies tiered quotas to every request under ``/api/``.

    Authentication routes are held by both the caller bucket and the IP
    bucket. Chat routes use the chat policy; everything else general_api.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        limiter: SmartRateLimiter,
        settings: Settings,
        telemetry: TelemetryClient,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.settings = settings
        self.telemetry = telemetry

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not self.settings.rate_limit_enabled or not path.startswith("/api/"):
            return await call_next(request)

        client_ip = default_key(request)
        identity = resolve_identity(request, self.settings)
        identifier = identity or client_ip
        decision = self._evaluate(path, identifier, client_ip, identity is not None)

        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded for %s on %s (limit=%s, ip=%s)",
                identifier,
                path,
                decision.limit,
                client_ip,
            )
            await self.telemetry.record(
                TelemetryEvent(
                    name="security.rate_limit_exceeded",
                    attributes={
                        "path": path,
                        "identifier": identifier,
                        "ip": client_ip,
                        "limit": decision.limit,
                        "authenticated": identity is not None,
                    },
                )
            )
            headers = rate_limit_headers(
                decision.limit, decision.remaining, decision.reset_time, now_ms=self.limiter.limiter.now()
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": "Rate limit exceeded", "resetTime": decision.reset_time.isoformat()},
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(rate_limit_headers(decision.limit, decision.remaining, decision.reset_time))
        return response

    def _evaluate(self, path: str, identifier: str, client_ip: str, authenticated: bool) -> QuotaDecision:
        # Caller buckets are scoped per policy so windows never mix.
        if "/api/auth" in path:
            return self.limiter.check_combined(f"auth:{identifier}", client_ip, "auth", authenticated)
        if "/api/chat" in path:
            return self.limiter.check_business_user_limit(f"chat:{identifier}", "chat", authenticated)
        return self.limiter.check_business_user_limit(f"general_api:{identifier}", "general_api", authenticated)
