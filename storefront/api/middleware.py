"""Request correlation and administrator authentication middleware."""

import time
from typing import Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.infrastructure.config import settings

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"

# Only paths under this prefix need the administrator key
ADMIN_PREFIX = "/admin"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID and log one access line for it.

    The ID is taken from ``X-Request-ID`` when the caller sends one. It is
    stored on ``request.state`` for the error envelope, bound into the
    structlog context for every log line of the request, and echoed back in
    the response headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def is_admin_path(path: str) -> bool:
    path = path.rstrip("/")
    return path == ADMIN_PREFIX or path.startswith(ADMIN_PREFIX + "/")


def _reject(request: Request, error_code: str, message: str) -> JSONResponse:
    logger.warning(
        "Administrator request rejected",
        error_code=error_code,
        method=request.method,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={
            "error_code": error_code,
            "message": message,
            "details": {},
            "request_id": getattr(request.state, "request_id", None),
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


class AdminKeyMiddleware(BaseHTTPMiddleware):
    """Require ``Authorization: Bearer <admin_api_key>`` on /admin routes.

    Shopper routes identify the caller through ``X-User-Id`` and are not
    inspected here.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not is_admin_path(request.url.path):
            return await call_next(request)

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if not scheme:
            return _reject(request, "UNAUTHORIZED", "Missing Authorization header")
        if scheme.lower() != "bearer" or not token:
            return _reject(
                request,
                "UNAUTHORIZED",
                "Invalid Authorization header format. Use 'Bearer <api_key>'",
            )
        if token != settings.admin_api_key:
            return _reject(request, "INVALID_API_KEY", "Invalid API key")

        return await call_next(request)


def setup_middleware(app: FastAPI) -> None:
    """Install the middleware stack; the last one added runs first."""
    app.add_middleware(AdminKeyMiddleware)
    app.add_middleware(RequestIdMiddleware)
