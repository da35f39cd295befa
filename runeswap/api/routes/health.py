"""Liveness check."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

import runeswap
from runeswap.api.responses import EnvelopeRoute, ok
from runeswap.api.services import Services, get_services

router = APIRouter(tags=["health"], route_class=EnvelopeRoute)


@router.get("/health")
async def health(services: Services = Depends(get_services)) -> JSONResponse:
    """Process is up; the cache is reported but never fails the check."""
    data: dict[str, Any] = {"status": "ok", "version": runeswap.__version__}
    if services.cache is not None:
        data["cache"] = "ok" if await services.cache.ping() else "unavailable"
    return ok(data)
