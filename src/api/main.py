"""
EMPORIUM REST API - Main Application.

FastAPI-based REST API for the EMPORIUM trading card marketplace.

Usage:
    # Development
    uvicorn src.api.main:create_app --factory --reload --port 8000

    # Production
    uvicorn src.api.main:create_app --factory --host 0.0.0.0 --port 8000 --workers 4
"""
import os
import time
import uuid
import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Optional

import redis
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..auth.backup_codes import BackupCodeStore
from ..auth.errors import AuthError, InvalidInput, Unauthenticated
from ..auth.gate import RequestGate, RoutePolicy
from ..auth.repositories import Clock
from ..auth.revocation import RevocationList
from ..auth.service import ADMIN, USER, AccountKind, AuthService
from ..auth.tokens import TokenService
from ..auth.types import TokenPurpose, utc_now
from ..database.auth_db import AuthDB, SqlAccountRepository, SqlBackupCodeRepository
from ..utils.settings import Settings, load_settings
from .deps import AuthRateLimiter, Services, connect_redis
from .routes import (
    admin_public_router,
    admin_router,
    auth_public_router,
    auth_router,
    health_router,
    mfa_router,
    status_router,
)

# Configure logging with request context support
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
)

# Custom filter to add request_id to all log records
class RequestIdFilter(logging.Filter):
    """Add request_id to log records."""
    def filter(self, record):
        if not hasattr(record, 'request_id'):
            record.request_id = '-'
        return True

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format=LOG_FORMAT,
)
# Add the filter to the root handlers so records from every logger get a request_id
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger(__name__)

# API metadata
API_TITLE = "EMPORIUM API"
API_DESCRIPTION = """
**EMPORIUM Marketplace**

Authentication core of the trading card marketplace.

## Authentication

1. Register: `POST /api/v1/public/auth/register`
2. Login: `POST /api/v1/public/auth/login` (sets the `auth_token` cookie)
3. If MFA is enabled: `POST /api/v1/private/mfa/verify` with the code

The token is read from the `auth_token` cookie, or from
`Authorization: Bearer <token>`.
"""


def build_services(
    settings: Settings,
    clock: Clock = utc_now,
    db: Optional[AuthDB] = None,
    redis_client: Optional[redis.Redis] = None,
) -> Services:
    """
    Wire repositories, stores and services from settings.

    Raises:
        ConfigurationError: If the token signing secret is missing.
    """
    auth = settings.auth
    if db is None:
        db = AuthDB(settings.database.url, clock=clock)
    if redis_client is None:
        redis_client = connect_redis(settings.redis)

    tokens = TokenService(auth, clock=clock, revocations=RevocationList(redis_client, clock=clock))

    def backup_store(table: str) -> BackupCodeStore:
        return BackupCodeStore(
            SqlBackupCodeRepository(db, table),
            clock=clock,
            rounds=auth.backup_code_bcrypt_rounds,
            count=auth.backup_code_count,
            ttl_days=auth.backup_code_ttl_days,
        )

    kinds = [
        AccountKind(
            name=USER,
            accounts=SqlAccountRepository(db, "users"),
            backup_codes=backup_store("mfa_backup_codes"),
            success_purpose=TokenPurpose.ACCESS,
        ),
        AccountKind(
            name=ADMIN,
            accounts=SqlAccountRepository(db, "admin_users"),
            backup_codes=backup_store("admin_mfa_backup_codes"),
            success_purpose=TokenPurpose.ADMIN,
        ),
    ]

    return Services(
        settings=settings,
        db=db,
        tokens=tokens,
        auth=AuthService(kinds, tokens, auth, clock=clock),
        gate=RequestGate(tokens, RoutePolicy.from_settings(settings.routing)),
        rate_limiter=AuthRateLimiter(settings.rate_limit, redis_client),
        redis_client=redis_client,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup and shutdown.
    """
    # Startup
    logger.info(f"Starting EMPORIUM API v{__version__}")

    # Initialize database schema
    try:
        app.state.services.db.init_schema()
    except Exception as e:
        logger.warning(f"Database initialization skipped: {e}")

    yield

    # Shutdown
    logger.info("Shutting down EMPORIUM API")


def _error_content(error: str, detail: Optional[str], code: str) -> dict:
    return {"error": error, "detail": detail, "code": code}


def create_app(
    settings: Optional[Settings] = None,
    clock: Clock = utc_now,
    db: Optional[AuthDB] = None,
    redis_client: Optional[redis.Redis] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Explicit configuration. Loaded from the environment if omitted.
        clock: Time source for every service.
        db: Database to use instead of one built from settings.
        redis_client: Redis client to use instead of connecting from settings.

    Returns:
        Configured FastAPI instance.
    """
    if settings is None:
        settings = load_settings()

    services = build_services(settings, clock=clock, db=db, redis_client=redis_client)

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        openapi_url=None if settings.is_production else "/openapi.json",
    )
    app.state.settings = settings
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request tracking and security headers middleware
    @app.middleware("http")
    async def add_request_tracking_and_security(request: Request, call_next):
        # Generate or extract request ID for tracing
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])

        # Store in request state for access in route handlers
        request.state.request_id = request_id

        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"[{request_id}] Request failed: {e}", exc_info=True)
            raise

        process_time = (time.time() - start_time) * 1000

        # Request tracking headers
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"

        # Log request completion (skip health checks to reduce noise)
        if not request.url.path.startswith("/health"):
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} "
                f"-> {response.status_code} ({process_time:.1f}ms)"
            )

        # Security headers
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        response.headers["Cache-Control"] = "no-store"
        # CSP for API (restrictive)
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

    # Exception handlers
    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        if exc.status_code >= 500:
            request_id = getattr(request.state, 'request_id', 'unknown')
            logger.error(f"[{request_id}] {type(exc).__name__}: {exc}")

        if isinstance(exc, InvalidInput):
            detail = "; ".join(exc.errors)
        elif exc.expose_message:
            detail = str(exc)
        else:
            detail = exc.public_message

        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_content(HTTPStatus(exc.status_code).phrase, detail, exc.code),
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_content(
                HTTPStatus(exc.status_code).phrase,
                str(exc.detail) if exc.detail is not None else None,
                "RATE_LIMITED" if exc.status_code == 429 else f"HTTP_{exc.status_code}",
            ),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            loc = " -> ".join(str(l) for l in error["loc"])
            errors.append(f"{loc}: {error['msg']}")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_content("Validation Error", "; ".join(errors), "VALIDATION_ERROR"),
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(f"[{request_id}] Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal Server Error",
                "request_id": request_id,
                "detail": str(exc) if settings.app_env == "development" else None,
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    routing = settings.routing
    app.include_router(health_router)
    app.include_router(status_router, prefix=routing.public_prefix)
    app.include_router(auth_public_router, prefix=routing.public_prefix)
    app.include_router(admin_public_router, prefix=routing.public_prefix)
    app.include_router(auth_router, prefix=routing.private_prefix)
    app.include_router(mfa_router, prefix=routing.private_prefix)
    app.include_router(admin_router, prefix=routing.admin_prefix)

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": API_TITLE,
            "version": __version__,
            "health": "/health",
        }

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.api.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
