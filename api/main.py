"""
api/main.py -- FastAPI application factory for Markpost.

Run with:  uvicorn asgi:app --reload
           python main.py serve

create_app(settings) builds the app from an explicit Settings value. Nothing
below this module reads configuration on its own: each component gets what it
needs through its constructor.

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency, client IP
  2. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. global_rate_limit     -- shared TokenBucket, 429 when empty (/health exempt)
  5. SlowAPIMiddleware     -- per-route limits from api.limiter (login)
Starlette makes the LAST add_middleware() call the outermost layer, so they
are registered below in reverse.

The write-endpoint windows (api.limiter.WriteRateLimiter) are not middleware:
they run as a dependency of POST /{post_key} only.

Lifespan handles startup (engine, stores, services, cleanup task) and
shutdown (stop the sweeper, dispose the engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import Engine

from api.limiter import (
    RateLimitRejected,
    RateLimitUnavailable,
    TokenBucket,
    WriteRateLimiter,
    limiter,
)
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.posts import api_router as posts_api_router
from api.routes.posts import write_router as posts_write_router
from auth.oauth import GitHubOAuthClient
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings
from core.database import create_db_engine
from core.errors import PUBLIC_MESSAGES, ServiceError
from posts.cleanup import DEFAULT_BATCH_SIZE, RetentionSweeper
from posts.service import PostService
from posts.store import PostStore

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("markpost.api")

VERSION = "0.1.0"


def _error(status_code: int, code: str, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def wire_components(app: FastAPI, engine: Engine) -> None:
    """Build the stores and services on top of engine and attach them to app.state.

    Called by the lifespan. Tests call it directly with an in-memory engine.
    """
    settings: Settings = app.state.settings
    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.post_store = PostStore(engine)

    github = None
    if settings.github_configured:
        github = GitHubOAuthClient(
            settings.github_client_id,
            settings.github_client_secret,
            settings.github_redirect_url,
        )
    app.state.auth_service = AuthService(app.state.user_store, app.state.token_service, github)
    app.state.post_service = PostService(
        app.state.post_store,
        title_max_size=settings.title_max_size,
        body_max_size=settings.body_max_size,
    )
    app.state.sweeper = RetentionSweeper(app.state.post_store)


# ---------------------------------------------------------------------------
# Background cleanup task
# ---------------------------------------------------------------------------


async def _cleanup_loop(app: FastAPI, interval_hours: int, stop_event: threading.Event) -> None:
    """Run the retention sweep every interval_hours.

    The sweep itself is blocking, so it runs in a worker thread. stop_event
    lets shutdown interrupt a sweep between batches; CancelledError from
    task.cancel() unwinds the sleep.
    """
    settings: Settings = app.state.settings
    while True:
        await asyncio.sleep(interval_hours * 60 * 60)
        try:
            await asyncio.to_thread(
                app.state.sweeper.cleanup_expired,
                settings.post_retention_days,
                DEFAULT_BATCH_SIZE,
                stop_event,
            )
        except Exception:  # noqa: BLE001 -- keep the loop alive; next run retries
            logger.exception("Scheduled cleanup failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters: the engine before the stores, the stores before the
    services, the sweeper before the cleanup task that references it.
    """
    settings: Settings = app.state.settings
    logger.info("Markpost API starting up (database=%s)", settings.database_type)
    engine = create_db_engine(settings.sqlalchemy_url)
    wire_components(app, engine)
    logger.info(
        "Components initialized (users=%d, github_oauth=%s, api_rate_limit=%d/min)",
        app.state.user_store.count_users(),
        settings.github_configured,
        settings.api_rate_limit,
    )

    stop_event = threading.Event()
    cleanup_task = None
    if settings.cleanup_interval_hours > 0:
        cleanup_task = asyncio.create_task(_cleanup_loop(app, settings.cleanup_interval_hours, stop_event))

    yield

    stop_event.set()
    if cleanup_task is not None:
        cleanup_task.cancel()
    engine.dispose()
    logger.info("Markpost API shutdown complete")


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings) -> FastAPI:
    app = FastAPI(
        title="Markpost API",
        description="A pastebin for Markdown.",
        version=VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    # Components that need no database live for the whole app, not the lifespan.
    app.state.settings = settings
    app.state.token_service = TokenService(
        settings.secret_key,
        access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
        refresh_ttl=timedelta(seconds=settings.refresh_token_expire_seconds),
    )
    app.state.write_limiter = WriteRateLimiter.from_settings(settings)
    app.state.token_bucket = TokenBucket(settings.api_rate_limit)
    # SlowAPI looks for app.state.limiter by convention.
    app.state.limiter = limiter

    # -----------------------------------------------------------------------
    # Middleware stack, innermost first
    # -----------------------------------------------------------------------

    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def global_rate_limit(request: Request, call_next):
        if request.url.path != "/health" and not request.app.state.token_bucket.allow():
            logger.warning("Global rate limit exceeded: %s %s", request.method, request.url.path)
            return _error(429, "rate_limited", "Too many requests.", headers={"Retry-After": "1"})
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Oauth-State"],
        max_age=3600,
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
        return response

    # -----------------------------------------------------------------------
    # Exception handlers -- every error uses the ErrorResponse envelope
    # -----------------------------------------------------------------------

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc.__cause__
            )
        return _error(exc.status_code, exc.code.value, PUBLIC_MESSAGES[exc.code])

    @app.exception_handler(RateLimitRejected)
    async def write_limit_handler(request: Request, exc: RateLimitRejected) -> JSONResponse:
        # Never name the dimension in the response.
        return _error(429, "rate_limited", "Too many requests.", headers={"Retry-After": str(exc.retry_after)})

    @app.exception_handler(RateLimitUnavailable)
    async def limiter_unavailable_handler(request: Request, exc: RateLimitUnavailable) -> JSONResponse:
        return _error(503, "rate_limit_unavailable", "Service temporarily unavailable.")

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """429 for slowapi per-route limits. slowapi stores the wait on exc.retry_after."""
        retry_after = int(getattr(exc, "retry_after", 60))
        return _error(429, "rate_limited", "Too many requests.", headers={"Retry-After": str(retry_after)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Validation failed on %s %s: %s", request.method, request.url.path, exc.errors())
        return _error(400, "validation", "Request validation failed.")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Structured dict details are used as-is; anything else is wrapped."""
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
        return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all. The traceback goes to the log, never to the client."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return _error(500, "internal", "An unexpected error occurred.")

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    # Defined directly on the app and before the catch-all /{...} routes.
    # Exempt from the global token bucket.
    @app.get("/health", tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse()

    app.include_router(auth_router, prefix="/api", tags=["Auth"])
    app.include_router(posts_api_router, prefix="/api", tags=["Posts"])
    app.include_router(posts_write_router, tags=["Posts"])
    # GET /{post_id} is mounted by asgi.py from web/routes.py.
    # api/ and web/ are independent layers -- only the top-level asgi.py imports both.
    return app
