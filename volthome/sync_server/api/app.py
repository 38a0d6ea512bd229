"""
FastAPI application factory for the VoltHome sync server.

This module creates the FastAPI app with:
- CORS configuration for web clients
- Sync service and rate limiter shared through app.state
- Project and sync routes under /v1/projects
- Error mapping: every error body is {error, message, details, cid}

Usage:
    uvicorn --factory volthome.sync_server.api.app:create_app
"""

import logging
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .._version import __version__
from ..config import ServerConfig
from ..errors import (
    ConstraintError,
    GroupUnresolvedError,
    InvalidIdError,
    NotFoundError,
    ReferentialError,
    SyncError,
    TransientStoreError,
    ValidationError,
)
from ..ratelimit import RateLimitedError, SlidingWindowRateLimiter
from ..service import ProjectSyncService
from .routes import router
from .settings import ApiSettings

logger = logging.getLogger(__name__)

# Most specific first
_ERROR_MAP: list[tuple[type[SyncError], int, str]] = [
    (InvalidIdError, 400, "invalid_id"),
    (ValidationError, 400, "bad_request"),
    (ReferentialError, 400, "referential_error"),
    (GroupUnresolvedError, 400, "group_unresolved"),
    (ConstraintError, 400, "constraint_violation"),
    (NotFoundError, 404, "not_found"),
    (RateLimitedError, 429, "rate_limited"),
    (TransientStoreError, 503, "db_timeout"),
]

_HTTP_ERRORS = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


def classify_error(exc: SyncError) -> tuple[int, str]:
    """HTTP status and wire error code for a sync error."""
    for error_type, status_code, error in _ERROR_MAP:
        if isinstance(exc, error_type):
            return status_code, error
    return 500, "server_error"


def _error_body(error: str, message: str, details: dict, cid: str) -> dict:
    return {"error": error, "message": message, "details": details, "cid": cid}


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    cid = str(uuid.uuid4())
    status_code, error = classify_error(exc)
    log_extra = {
        "cid": cid,
        "path": request.url.path,
        "code": exc.code,
        "details": exc.details,
    }

    if status_code >= 500:
        logger.error(f"Request failed: {exc.message}", extra=log_extra, exc_info=exc)
        message = "Store temporarily unavailable" if status_code == 503 else "Internal error"
        details: dict = {}
    else:
        logger.warning(f"Request rejected: {exc.message}", extra=log_extra)
        message = exc.message
        details = exc.details

    headers = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after)
    elif status_code == 503:
        headers["Retry-After"] = "1"

    return JSONResponse(
        status_code=status_code,
        content=_error_body(error, message, details, cid),
        headers=headers,
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    cid = str(uuid.uuid4())
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger.warning("Request rejected: invalid body", extra={"cid": cid, "path": request.url.path})
    return JSONResponse(
        status_code=400,
        content=_error_body("bad_request", "Invalid request", {"errors": errors}, cid),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    cid = str(uuid.uuid4())
    error = _HTTP_ERRORS.get(exc.status_code, "http_error")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(error, str(exc.detail), {}, cid),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    cid = str(uuid.uuid4())
    logger.error(
        f"Unhandled error: {exc}",
        extra={"cid": cid, "path": request.url.path},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content=_error_body("server_error", "Internal error", {}, cid),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Log service lifecycle."""
    logger.info(
        "Sync API started",
        extra={"data_dir": app.state.config.storage.data_dir},
    )
    yield
    logger.info("Sync API stopped", extra={"stats": app.state.service.get_stats()})


def create_app(
    config: ServerConfig | None = None,
    settings: ApiSettings | None = None,
    service: ProjectSyncService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration (loaded from env if not provided)
        settings: HTTP settings (loaded from env if not provided)
        service: Pre-built sync service (built from config if not provided)
    """
    config = config or ServerConfig.from_env()
    settings = settings or ApiSettings()

    app = FastAPI(
        title="VoltHome Sync",
        description="Project synchronization: batch apply and delta retrieval.",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.settings = settings
    app.state.service = service or ProjectSyncService(config)
    app.state.rate_limiter = SlidingWindowRateLimiter(window_seconds=60)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SyncError, sync_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router, prefix="/v1/projects")

    # Health endpoint at root
    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "volthome-sync", "version": __version__}

    return app
