"""Caller identification for RealtyDesk quotas."""
from __future__ import annotations

import hashlib
from typing import Optional

from fastapi import HTTPException, Request, status

from ..core.config import Settings
from .rate_limiter import SupportsHeaders


def resolve_identity(request: SupportsHeaders, settings: Settings) -> Optional[str]:
    """Return a stable identifier for a caller presenting a known API key."""

    api_key = request.headers.get(settings.api_key_header)
    if not api_key or api_key not in settings.api_keys:
        return None
    digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()
    return f"key:{digest[:16]}"


def verify_api_key(request: Request) -> None:
    settings: Settings = request.app.state.settings
    if not settings.api_keys:
        return
    if resolve_identity(request, settings) is not None:
        return
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")
