"""
api/main.py -- FastAPI application entry point for the Barcomp CMS backend.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost, as a request meets it):
  1. log_requests          -- method, path, status, latency, client
  2. auth_gate             -- AuthGate.dispatch: guards the /admin area
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds every auth component from Settings exactly once and parks it
on app.state; handlers and the gate read it from there. Tests replace the
lifespan to inject in-memory stores and a fixed secret.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.dependencies import require_super_admin
from auth.errors import StoreUnavailable
from auth.gate import AuthGate
from auth.models import User
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("barcomp.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired session rows every SESSION_PURGE_INTERVAL_SECONDS.

    Expiry is already enforced at read time; this only keeps the table from
    growing without bound. A store outage skips one round instead of killing
    the loop. CancelledError from task.cancel() during shutdown propagates out
    of asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(app.state.settings.session_purge_interval_seconds)
        try:
            removed = await asyncio.get_running_loop().run_in_executor(None, app.state.session_store.purge_expired)
        except StoreUnavailable:
            logger.warning("Session purge skipped: session store unavailable")
            continue
        if removed:
            logger.info("Purged %d expired session(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth components on startup and release them on shutdown.

    Startup order matters:
      1. Stores first -- the gate holds a reference to the session store.
      2. Codec and gate -- the middleware reads app.state.gate on every request.
      3. Purge task last -- references app.state.session_store.
    """
    logger.info("Barcomp API starting up")
    app.state.settings = settings
    app.state.user_store = UserStore(settings.database_url)
    app.state.session_store = SessionStore(settings.database_url, settings.secret_key)
    app.state.codec = TokenCodec.from_settings(settings)
    app.state.gate = AuthGate(settings, app.state.codec, app.state.session_store)
    if not app.state.user_store.has_users():
        logger.warning("No users exist yet -- create one with: python main.py create-superadmin")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))
    logger.info("Auth initialized (protected=%s)", ", ".join(settings.protected_prefixes))

    yield

    app.state.purge_task.cancel()
    app.state.session_store.close()
    app.state.user_store.close()
    logger.info("Barcomp API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Barcomp CMS API",
    description="Content management backend for the Barcomp company profile site.",
    version=__version__,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by super-admin-only versions.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware both insert at the OUTSIDE of the
# stack, so the last one registered is the first one a request meets.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def auth_gate(request: Request, call_next):
    """Route every request through the AuthGate built in lifespan."""
    gate: AuthGate = request.app.state.gate
    return await gate.dispatch(request, call_next)


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
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
# Web UI router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Super-admin-only API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(admin: User = Depends(require_super_admin)):
    """Swagger UI -- requires a live super admin session."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Barcomp CMS API")


@app.get("/redoc", include_in_schema=False)
async def redoc(admin: User = Depends(require_super_admin)):
    """ReDoc UI -- requires a live super admin session."""
    return get_redoc_html(openapi_url="/openapi.json", title="Barcomp CMS API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and Retry-After."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(code="rate_limited", message="Too many requests.", detail=str(exc))
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    """Session store outage: 503, logged as infrastructure, never reported as a permission problem."""
    logger.warning("Session store unavailable on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error=ErrorDetail(code="store_unavailable", message="Session service is temporarily unavailable.")
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
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

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit and no auth -- load balancers must be able to poll it.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and database reachability."""
    try:
        request.app.state.user_store.ping()
        database = "ok"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
