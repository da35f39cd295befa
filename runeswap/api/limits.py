"""Per-route admission checks for the HTTP surface."""

from __future__ import annotations

from typing import TYPE_CHECKING

from runeswap.errors import RateLimitedError
from runeswap.execution.rate_limiter import client_identity, rate_limit_key

if TYPE_CHECKING:
    from fastapi import Request

    from runeswap.api.services import Services


def enforce_rate_limit(request: Request, services: Services, route_key: str) -> None:
    """Raise RateLimitedError when the caller's window for ``route_key`` is full.

    Called inside handlers, so body validation has already run and a
    malformed request never consumes a slot.
    """
    identity = client_identity(request.headers)
    decision = services.limiter.admit(
        rate_limit_key(route_key, identity),
        services.rate_limit,
        services.rate_window_ms,
    )
    if not decision.allowed:
        raise RateLimitedError(retry_after_seconds=decision.retry_after_seconds)
