"""
Tastemate — FastAPI application.

Wires the API router behind CORS and a single request-context middleware,
configures structlog JSON output, and owns the process lifecycle: the
database pool is warmed on startup, and on shutdown in-flight requests are
drained before network clients and the pool are closed.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.api.deps import get_explanation_cache, shutdown_services
from app.api.router import router as api_router
from app.config import Settings, get_settings
from app.database import async_session_factory, engine

REQUEST_ID_HEADER = "X-Request-ID"
DRAIN_TIMEOUT_SECONDS = 15.0


def configure_logging(level_name: str) -> None:
    """JSON logs to stdout; request context is merged from contextvars."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(get_settings().LOG_LEVEL)
logger = structlog.get_logger("tastemate")


# ──────────────────────────────────────────────────────────────────────────────
# In-flight request tracking
# ──────────────────────────────────────────────────────────────────────────────

class RequestTracker:
    """Counts requests being served so shutdown can wait for them."""

    def __init__(self) -> None:
        self.in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def started(self) -> None:
        self.in_flight += 1
        self._idle.clear()

    def finished(self) -> None:
        self.in_flight -= 1
        if self.in_flight <= 0:
            self.in_flight = 0
            self._idle.set()

    async def drain(self, timeout: float) -> bool:
        """Wait for the count to reach zero; ``False`` if ``timeout`` ran out."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("drain_timeout_exceeded", in_flight=self.in_flight)
            return False
        return True


request_tracker = RequestTracker()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Per-request id, wall-clock limit, in-flight tracking and access log.

    The id comes from the ``X-Request-ID`` header when the caller sends one
    and is echoed on the response.  It is bound into structlog's
    contextvars, so every log line emitted while serving carries it.
    """

    def __init__(self, app, timeout_seconds: float, tracker: RequestTracker) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds
        self.tracker = tracker

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()

        with structlog.contextvars.bound_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        ):
            self.tracker.started()
            try:
                response = await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning("request_timeout", timeout_seconds=self.timeout_seconds)
                response = JSONResponse(status_code=504, content={"detail": "Request timed out"})
            except Exception:
                logger.exception("request_error")
                raise
            finally:
                self.tracker.finished()

            logger.info(
                "request_handled",
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


# ──────────────────────────────────────────────────────────────────────────────
# Lifespan
# ──────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info("startup_begin", environment=settings.ENVIRONMENT)

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database_pool_initialised")

    # Matching works without the cache; a dead Redis only costs regeneration.
    cache = get_explanation_cache()
    if not cache.enabled:
        logger.info("redis_not_configured")
    else:
        try:
            await cache.ping()
            logger.info("redis_connected")
        except Exception:
            logger.exception("redis_unavailable_cache_degraded")

    yield

    logger.info("shutdown_begin", in_flight=request_tracker.in_flight)
    await request_tracker.drain(DRAIN_TIMEOUT_SECONDS)
    await shutdown_services()
    await engine.dispose()
    logger.info("shutdown_complete")


# ──────────────────────────────────────────────────────────────────────────────
# Health checks
# ──────────────────────────────────────────────────────────────────────────────

async def _database_status() -> str:
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_db_failure", error=str(exc))
        return f"error: {exc}"
    return "connected"


async def _cache_status() -> str:
    try:
        reachable = await get_explanation_cache().ping()
    except Exception as exc:
        logger.error("health_redis_failure", error=str(exc))
        return f"error: {exc}"
    return "connected" if reachable else "not_configured"


async def health_liveness() -> dict:
    return {"status": "healthy"}


async def health_deep() -> dict:
    """Readiness: database and cache reachability.  An unconfigured cache
    is not a failure."""
    database, redis = await asyncio.gather(_database_status(), _cache_status())
    degraded = database.startswith("error") or redis.startswith("error")
    return {
        "status": "degraded" if degraded else "healthy",
        "database": database,
        "redis": redis,
    }


# ──────────────────────────────────────────────────────────────────────────────
# Application
# ──────────────────────────────────────────────────────────────────────────────

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    application = FastAPI(
        title="Tastemate",
        description="Taste-based social matching",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
    )

    # Last added runs first: CORS wraps the request context.
    application.add_middleware(
        RequestContextMiddleware,
        timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS,
        tracker=request_tracker,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )

    application.add_api_route("/health", health_liveness, methods=["GET"], tags=["health"])
    application.add_api_route("/health/deep", health_deep, methods=["GET"], tags=["health"])
    application.include_router(api_router, prefix="/api/v1")
    return application


app = create_app()
