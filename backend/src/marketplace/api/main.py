"""Main FastAPI application for the referral API."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware

from marketplace.api.rate_limit import limiter
from marketplace.api.v1.leaderboard import router as leaderboard_router
from marketplace.api.v1.ledger import router as ledger_router
from marketplace.api.v1.referral import router as referral_router
from marketplace.api.v1.rewards import router as rewards_router
from marketplace.logging_config import bind_log_context, clear_log_context, configure_logging, get_logger
from marketplace.policy.snapshot import PolicyConfigError
from marketplace.settings import settings
from marketplace.storage.db import db

logger = get_logger(__name__)

API_VERSION = "1.0.0"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only, nothing to load
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        return response


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request path and viewer to every log event of the request."""

    async def dispatch(self, request: Request, call_next):
        clear_log_context()
        bind_log_context(
            method=request.method,
            path=request.url.path,
            viewer_id=request.headers.get("X-User-Id"),
        )
        try:
            return await call_next(request)
        finally:
            clear_log_context()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    configure_logging()
    logger.info("app_starting", env=settings.env)

    db.create_tables()
    logger.info("database_tables_created")

    yield

    logger.info("app_shutting_down")


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI app
    """
    # Hide API docs in production
    is_production = settings.env == "production"

    app = FastAPI(
        title="Marketplace Referral API",
        description="Referral attribution, rewards and leaderboard",
        version=API_VERSION,
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    allowed_origins = [
        origin.strip()
        for origin in settings.allowed_origins.split(",")
        if origin.strip()
    ]

    if is_production and "*" in allowed_origins:
        logger.error("cors_wildcard_blocked", message="Wildcard CORS not allowed in production")
        allowed_origins = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-User-Id"],
        max_age=3600,
    )

    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many requests. Please try again later."},
        )

    @app.exception_handler(PolicyConfigError)
    async def policy_error_handler(request: Request, exc: PolicyConfigError):
        logger.error("referral_policy_invalid", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content={"detail": "Referral policy is misconfigured"},
        )

    app.include_router(referral_router, prefix="/api/v1")
    app.include_router(rewards_router, prefix="/api/v1")
    app.include_router(ledger_router, prefix="/api/v1")
    app.include_router(leaderboard_router, prefix="/api/v1")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": API_VERSION,
            "env": settings.env,
        }

    return app


# Create app instance
app = create_app()
