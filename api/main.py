"""
api/main.py -- FastAPI application entry point for DocRoom.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every long-lived object once and stores it on app.state:
  user_store, team_store   -- SQLAlchemy repositories
  services                 -- optional provider adapters (services/registry.py)
  tasks                    -- background TaskQueue for post-response work
  slack_events             -- SlackEventManager bound to the team store
Shutdown tears them down in reverse order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.feature_flags import router as feature_flags_router
from api.routes.v1.account import router as account_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.integrations import router as integrations_router
from api.routes.v1.jobs import router as jobs_router
from api.routes.v1.links import router as links_router
from api.routes.v1.passkeys import router as passkeys_router
from api.routes.v1.teams import router as teams_router
from auth.store import UserStore
from core.config import get_settings
from integrations.slack.events import SlackEventManager
from services.registry import build_services
from tasks.jobs import purge_expired
from tasks.queue import TaskQueue
from teams.store import TeamStore

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("docroom.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired verification tokens and temp entries every hour.

    Expired rows are already ignored on read; this only keeps the tables
    small. CancelledError from shutdown propagates out of asyncio.sleep.
    """
    while True:
        await asyncio.sleep(60 * 60)
        try:
            await asyncio.to_thread(purge_expired, app.state)
        except Exception:
            logger.exception("Purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build stores, adapters and the task queue; tear them down on exit.

    Startup order matters:
      1. Stores first -- the Slack event manager reads integrations from the
         team store.
      2. Services -- picks live or disabled adapters from Settings.
      3. Task queue -- started before any request can enqueue work.
      4. Purge task last -- references the stores and services.
    """
    settings = get_settings()
    logger.info("%s API starting up (environment=%s)", settings.app_name, settings.environment)

    if settings.database_url:
        app.state.user_store = UserStore(settings.database_url)
        app.state.team_store = TeamStore(settings.database_url)
    else:
        app.state.user_store = UserStore()
        app.state.team_store = TeamStore()

    app.state.services = build_services(settings)
    app.state.tasks = TaskQueue(max_attempts=settings.task_max_attempts, eager=settings.tasks_eager)
    await app.state.tasks.start()
    app.state.slack_events = SlackEventManager(app.state.services.slack_client, app.state.team_store)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    await app.state.tasks.stop()
    app.state.services.close()
    app.state.team_store.close()
    app.state.user_store.close()
    logger.info("%s API shutdown complete", settings.app_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title=f"{_settings.app_name} API",
    description="Document sharing with per-team limits, notifications and account flows.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.trusted_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(account_router, prefix="/api/v1", tags=["Account"])
app.include_router(teams_router, prefix="/api/v1", tags=["Teams"])
app.include_router(links_router, prefix="/api/v1", tags=["Links"])
app.include_router(integrations_router, prefix="/api/v1", tags=["Integrations"])
app.include_router(passkeys_router, prefix="/api/v1", tags=["Passkeys"])
app.include_router(jobs_router, prefix="/api/v1", tags=["Jobs"])
app.include_router(feature_flags_router, prefix="/api", tags=["Feature Flags"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a per-IP limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code", "message"}. When
    detail is already a dict, use it directly as the error field rather than
    stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged, never written to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- load balancer checks must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and the state of every component."""
    components = {"app": "ok"}
    try:
        request.app.state.team_store.ping()
        request.app.state.user_store.has_users()
        components["database"] = "ok"
    except Exception as e:
        logger.error("Health check database error: %s", e)
        components["database"] = "error"
    components.update(request.app.state.services.components())
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=__version__, components=components)
