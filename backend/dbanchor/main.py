import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.concurrency import run_in_threadpool

from dbanchor.api.main import api_router
from dbanchor.bootstrap import bootstrap
from dbanchor.core.config import settings
from dbanchor.core.exceptions import NoBackendAvailable, PoolClosedError, PoolExhausted
from dbanchor.core.selector import BackendSelector

_logger = logging.getLogger(__name__)


def custom_generate_unique_id(route: APIRoute) -> str:
    return f"{route.tags[0]}-{route.name}"


if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Resolve the backend (migrating and seeding it) before serving traffic."""
    selector = BackendSelector.from_settings(settings)
    app.state.selector = selector
    try:
        await run_in_threadpool(
            bootstrap,
            selector,
            settings,
            migrate=settings.RUN_MIGRATIONS_ON_STARTUP,
            seed=settings.SEED_ON_STARTUP,
        )
        yield
    finally:
        await run_in_threadpool(selector.close)


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    generate_unique_id_function=custom_generate_unique_id,
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Global exception handlers: standardized error response format
# ---------------------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 422 with a human-readable detail string instead of raw Pydantic errors."""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", []) if part != "body")
        msg = err.get("msg", "Invalid value")
        messages.append(f"{loc}: {msg}" if loc else msg)
    return JSONResponse(
        status_code=422,
        content={"detail": "; ".join(messages)},
    )


@app.exception_handler(PoolExhausted)
async def pool_exhausted_handler(request: Request, exc: PoolExhausted) -> JSONResponse:
    """Transient saturation: tell the client to back off and retry."""
    _logger.warning("Pool exhausted on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc)},
        headers={"Retry-After": "1"},
    )


@app.exception_handler(PoolClosedError)
async def pool_closed_handler(request: Request, exc: PoolClosedError) -> JSONResponse:
    """The handle was swapped by a reconnect mid-request; the retry gets the new pool."""
    _logger.warning("Pool closed under %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc)},
        headers={"Retry-After": "1"},
    )


@app.exception_handler(NoBackendAvailable)
async def no_backend_handler(request: Request, exc: NoBackendAvailable) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={
            "detail": str(exc),
            "backends": [p.model_dump(mode="json") for p in exc.probes],
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Catch-all for unhandled exceptions: log and return 500 with safe message."""
    _logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = "Internal server error"
    if settings.ENVIRONMENT == "local":
        detail = f"Internal server error: {exc}"
    return JSONResponse(
        status_code=500,
        content={"detail": detail},
    )


app.include_router(api_router, prefix=settings.API_V1_STR)
