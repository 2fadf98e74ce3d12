"""FastAPI application entrypoint for RealtyDesk."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import Settings, get_settings
from ..core.logging import setup_logging
from ..security.auth import resolve_identity, verify_api_key
from ..security.policies import describe_policies, get_policy
from ..security.rate_limiter import FixedWindowRateLimiter, RateLimitConfig, default_key
from ..security.smart import SmartRateLimiter
from ..telemetry.events import TelemetryClient, TelemetryEvent
from .middleware import RateLimitMiddleware, rate_limit_headers

logger = logging.getLogger("realtydesk.api")


def _route_key(request: Request) -> str:
    return f"route:{default_key(request)}"


def enforce_rate_limit(policy: str = "api") -> Callable[[Request], None]:
    """Build a dependency that applies a named policy with the plain evaluator."""

    base = get_policy(policy)
    config = RateLimitConfig(window_ms=base.window_ms, max_requests=base.max_requests, key_generator=_route_key)

    def dependency(request: Request) -> None:
        limiter: FixedWindowRateLimiter = request.app.state.rate_limiter
        result = limiter.check_rate_limit(request, config)
        if result.blocked:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded",
                headers=rate_limit_headers(
                    result.limit,
                    result.remaining,
                    datetime.fromtimestamp(result.reset_time / 1000, tz=timezone.utc),
                    now_ms=limiter.now(),
                ),
            )

    return dependency


def create_app(
    settings: Optional[Settings] = None,
    limiter: Optional[FixedWindowRateLimiter] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    if limiter is None:
        limiter = FixedWindowRateLimiter(cleanup_interval_ms=settings.rate_limit_cleanup_interval_ms)
    smart_limiter = SmartRateLimiter(limiter)
    telemetry = TelemetryClient(settings)

    app = FastAPI(title=settings.app_name, version="1.0.0")
    app.state.settings = settings
    app.state.rate_limiter = limiter
    app.state.smart_limiter = smart_limiter
    app.state.telemetry = telemetry

    app.add_middleware(RateLimitMiddleware, limiter=smart_limiter, settings=settings, telemetry=telemetry)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Initialising %s API", settings.app_name)
        await telemetry.start()
        await telemetry.record(TelemetryEvent(name="app.startup", attributes={"environment": settings.environment}))

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Shutting down %s API; clearing %s rate limit entries", settings.app_name, len(limiter))
        smart_limiter.destroy()
        await telemetry.record(TelemetryEvent(name="app.shutdown"))
        await telemetry.stop()

    @app.get("/", dependencies=[Depends(enforce_rate_limit())])
    async def root() -> dict:
        return {"service": settings.app_name, "message": "RealtyDesk API is online."}

    @app.get("/health", dependencies=[Depends(enforce_rate_limit())])
    async def health() -> dict:
        return {"status": "ok"}

    @app.get(f"{settings.api_v1_prefix}/rate-limits", dependencies=[Depends(verify_api_key)])
    async def list_rate_limits() -> dict:
        return {"policies": describe_policies()}

    @app.get("/api/auth/whoami")
    async def whoami(request: Request) -> dict:
        identity = resolve_identity(request, settings)
        return {
            "authenticated": identity is not None,
            "identifier": identity or default_key(request),
        }

    return app


app = create_app()
