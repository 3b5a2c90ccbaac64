"""Storefront API application.

Wires the order and administrator routers, the middleware stack and the
error envelope ``{error_code, message, details, request_id}`` shared by
every failure response.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storefront.api.admin import router as admin_router
from storefront.api.health import router as health_router
from storefront.api.middleware import setup_middleware
from storefront.api.orders import router as orders_router
from storefront.domain.exceptions import LockTimeoutError
from storefront.infrastructure.config import settings
from storefront.infrastructure.logging import configure_logging

configure_logging()

logger = structlog.get_logger()

# Seconds a client should wait before retrying after a lock timeout
LOCK_RETRY_AFTER = 1


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(
        "Starting storefront API",
        version=settings.api_version,
        debug=settings.debug,
        storage_backend=settings.storage_backend,
    )

    yield

    if settings.storage_backend == "postgres":
        from storefront.infrastructure.database import dispose_engine

        await dispose_engine()
    logger.info("Storefront API stopped")


app = FastAPI(
    title="Storefront API",
    description="Order cancellation, partial cancellation and returns",
    version=settings.api_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
setup_middleware(app)

app.include_router(health_router, tags=["Health"])
app.include_router(orders_router)
app.include_router(admin_router)


# ============================================================================
# Error Envelope
# ============================================================================


def error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build the JSON error envelope for ``request``."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details or {},
            "request_id": getattr(request.state, "request_id", None),
        },
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Unpack the detail dicts raised by the routers."""
    if isinstance(exc.detail, dict):
        return error_response(
            request,
            exc.status_code,
            exc.detail.get("error_code", "ERROR"),
            exc.detail.get("message", ""),
            exc.detail.get("details"),
            headers=exc.headers,
        )
    return error_response(request, exc.status_code, "ERROR", str(exc.detail), headers=exc.headers)


@app.exception_handler(LockTimeoutError)
async def lock_timeout_handler(request: Request, exc: LockTimeoutError) -> JSONResponse:
    """Locks stayed contended through every retry; the client may try again."""
    logger.warning("Lock timeout", path=request.url.path, resource=exc.resource)
    return error_response(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        exc.error_code,
        str(exc),
        {"resource": exc.resource, "retryable": exc.retryable},
        headers={"Retry-After": str(LOCK_RETRY_AFTER)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", path=request.url.path, method=request.method)
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An internal error occurred",
    )
