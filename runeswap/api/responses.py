"""Uniform JSON envelope for every route, and the route class that applies it.

Every failure leaves as ``{success: false, error: {...}}``. Typed errors
keep their status; anything else is classified like a venue failure and
falls back to a 500 carrying the route's default message.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from runeswap.config.loader import ConfigError
from runeswap.core.logging import get_logger
from runeswap.errors import RateLimitedError, RuneSwapError, classify_venue_error

log = get_logger(__name__)

DEFAULT_ERROR_MESSAGES: dict[str, str] = {
    "/quote": "Failed to fetch quote",
    "/psbt/create": "Failed to generate PSBT",
    "/psbt/confirm": "Failed to confirm PSBT",
    "/liquidium/challenge": "Failed to get Liquidium challenge",
    "/liquidium/auth": "Liquidium authentication failed",
    "/liquidium/borrow/prepare": "Liquidium prepare borrow error",
    "/liquidium/borrow/submit": "Liquidium submit borrow error",
    "/liquidium/borrow/quotes": "Failed to fetch borrow quotes",
    "/liquidium/borrow/ranges": "Failed to fetch borrow ranges",
    "/liquidium/repay": "Failed to process repayment",
    "/liquidium/portfolio": "Failed to fetch Liquidium portfolio",
    "/fees/recommended": "Failed to fetch fee rates",
}


def ok(data: Any, status: int = 200) -> JSONResponse:
    return JSONResponse({"success": True, "data": jsonable_encoder(data)}, status_code=status)


def fail(
    message: str,
    status: int = 500,
    code: str | None = None,
    details: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {"message": message}
    if code:
        error["code"] = code
    if details:
        error["details"] = details
    return JSONResponse({"success": False, "error": error}, status_code=status, headers=headers)


def fail_from(exc: RuneSwapError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitedError) and exc.retry_after_seconds is not None:
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return fail(exc.message, exc.status_code, exc.code, exc.details, headers)


def typed_failure(request: Request, exc: RuneSwapError) -> JSONResponse:
    level = log.error if exc.status_code >= 500 else log.warning
    level(
        "api.request_failed",
        path=request.url.path,
        status=exc.status_code,
        code=exc.code,
        error=exc.message,
        details=exc.details,
    )
    return fail_from(exc)


class EnvelopeRoute(APIRoute):
    """Route class that turns handler exceptions into error envelopes."""

    def get_route_handler(self) -> Callable[[Request], Awaitable[Response]]:
        original = super().get_route_handler()
        default_message = DEFAULT_ERROR_MESSAGES.get(self.path_format, "Request failed")

        async def handler(request: Request) -> Response:
            try:
                return await original(request)
            except (RequestValidationError, StarletteHTTPException):
                raise
            except RuneSwapError as exc:
                return typed_failure(request, exc)
            except ConfigError as exc:
                log.error("api.config_error", path=request.url.path, error=str(exc))
                return fail(str(exc), 500, "config_error")
            except Exception as exc:
                error = classify_venue_error(exc, default_message)
                log.error(
                    "api.unhandled_error",
                    path=request.url.path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    mapped_code=error.code,
                )
                return fail_from(error)

        return handler
