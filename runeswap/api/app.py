"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

import runeswap
from runeswap.api.responses import fail, typed_failure
from runeswap.api.routes import health, liquidity, liquidium
from runeswap.api.services import Services, build_services
from runeswap.config.loader import ConfigLoader
from runeswap.core.logging import get_logger
from runeswap.errors import RuneSwapError

log = get_logger(__name__)

_HTTP_ERROR_CODES = {404: "not_found", 405: "method_not_allowed"}


async def _validation_handler(request: Request, exc: RequestValidationError) -> Response:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query"))
        problems.append(f"{loc}: {err.get('msg', 'invalid')}" if loc else str(err.get("msg")))
    log.warning("api.validation_failed", path=request.url.path, problems=problems)
    return fail("Invalid request", 400, "validation_error", "; ".join(problems))


async def _runeswap_error_handler(request: Request, exc: RuneSwapError) -> Response:
    return typed_failure(request, exc)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Unknown routes and disallowed methods still answer with an envelope."""
    log.warning(
        "api.http_error", path=request.url.path, method=request.method, status=exc.status_code,
    )
    code = _HTTP_ERROR_CODES.get(exc.status_code, "http_error")
    headers = dict(exc.headers) if exc.headers else None
    return fail(str(exc.detail), exc.status_code, code, headers=headers)


def create_app(services: Services | None = None, config_dir: str = "config") -> FastAPI:
    """Build the application.

    Pass ``services`` to run against injected collaborators; otherwise they
    are built from the TOML config on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.services is None:
            loader = ConfigLoader(config_dir)
            loader.load()
            loader.validate_ranges()
            app.state.services = build_services(loader)
        await app.state.services.startup()
        log.info("api.startup", version=runeswap.__version__)
        try:
            yield
        finally:
            await app.state.services.shutdown()

    app = FastAPI(title="RuneSwap API", version=runeswap.__version__, lifespan=lifespan)
    app.state.services = services
    app.exception_handler(RequestValidationError)(_validation_handler)
    app.exception_handler(RuneSwapError)(_runeswap_error_handler)
    app.exception_handler(StarletteHTTPException)(_http_error_handler)
    app.include_router(liquidity.router)
    app.include_router(liquidium.router)
    app.include_router(health.router)
    return app
