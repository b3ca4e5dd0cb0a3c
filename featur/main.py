"""
Featur: FastAPI Application Entry Point

Application with:
- Async lifespan management (DB engine, change feed, service container)
- CORS, timeout, and structured-logging middleware
- Health-check endpoints (liveness + deep readiness)
- Active-request tracking for graceful shutdown
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from featur.config import Settings, get_settings
from featur.container import Container, build_container
from featur.database import create_engine_from_settings, create_schema
from featur.realtime import RedisChangeFeed, build_change_feed

# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def configure_logging(level: str = "INFO") -> None:
    level_no = logging.getLevelName(level.upper())
    if not isinstance(level_no, int):
        level_no = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(get_settings().LOG_LEVEL)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("featur")

# ---------------------------------------------------------------------------
# Active request counter for graceful shutdown
# ---------------------------------------------------------------------------

_active_requests: int = 0
_active_requests_lock = asyncio.Lock()

DRAIN_TIMEOUT_SECONDS = 15


async def _increment_active() -> None:
    global _active_requests
    async with _active_requests_lock:
        _active_requests += 1


async def _decrement_active() -> None:
    global _active_requests
    async with _active_requests_lock:
        _active_requests -= 1


async def _drain_active_requests() -> None:
    """Wait until all in-flight requests complete or timeout expires."""
    deadline = time.monotonic() + DRAIN_TIMEOUT_SECONDS
    while True:
        async with _active_requests_lock:
            if _active_requests <= 0:
                break
        if time.monotonic() >= deadline:
            logger.warning(
                "drain_timeout_exceeded",
                remaining_requests=_active_requests,
            )
            break
        await asyncio.sleep(0.25)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

def _make_lifespan(settings: Settings, container: Optional[Container]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage startup and shutdown of long-lived resources."""
        logger.info(
            "startup_begin",
            environment=settings.ENVIRONMENT,
            log_level=settings.LOG_LEVEL,
        )

        owned = container is None
        if owned:
            # 1. Database engine; local SQLite databases get their tables here.
            engine = create_engine_from_settings(settings)
            if settings.DATABASE_URL.startswith("sqlite"):
                await create_schema(engine)
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("database_pool_initialised")

            # 2. Change feed (Redis when configured)
            feed = build_change_feed(settings.REDIS_URL)
            if isinstance(feed, RedisChangeFeed):
                await feed.ping()
                logger.info("redis_connected")

            # 3. Services
            app.state.container = build_container(settings, engine, feed)

        logger.info("startup_complete")

        yield

        logger.info("shutdown_begin")
        await _drain_active_requests()
        if owned:
            await app.state.container.aclose()
            logger.info("database_pool_closed")
        logger.info("shutdown_complete")

    return lifespan


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Abort requests that exceed a configurable wall-clock timeout."""

    def __init__(self, app, timeout_seconds: float = 30.0) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(
                call_next(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "request_timeout",
                method=request.method,
                path=request.url.path,
                timeout=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=504,
                content={"detail": "Request timed out"},
            )


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()

        await _increment_active()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.exception(
                "request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
            )
            raise
        finally:
            await _decrement_active()

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request_handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    container: Optional[Container] = None,
) -> FastAPI:
    """Build the FastAPI application.

    When ``container`` is given it is used as-is and left open on shutdown
    (tests own its lifecycle); otherwise the lifespan builds one from
    ``settings``.
    """
    settings = settings or (container.settings if container else get_settings())

    app = FastAPI(
        title="Featur",
        description="Creator discovery, matching and messaging",
        version="1.0.0",
        lifespan=_make_lifespan(settings, container),
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )
    if container is not None:
        app.state.container = container

    # -- Middleware (applied in reverse order, last added runs first) ---- #

    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(TimeoutMiddleware, timeout_seconds=30.0)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Health-check endpoints ------------------------------------------ #

    @app.get("/health", tags=["health"])
    async def health_liveness() -> dict:
        """Lightweight liveness probe."""
        return {"status": "healthy"}

    @app.get("/health/deep", tags=["health"])
    async def health_deep(request: Request) -> dict:
        """Deep readiness probe: database, change feed and media storage."""
        current: Container = request.app.state.container
        result: dict = {
            "status": "healthy",
            "database": "connected",
            "feed": type(current.feed).__name__,
            "storage": "configured" if current.storage else "not_configured",
        }

        try:
            async with current.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("health_db_failure", error=str(exc))
            result["database"] = f"error: {exc}"
            result["status"] = "degraded"

        if isinstance(current.feed, RedisChangeFeed):
            try:
                await current.feed.ping()
            except Exception as exc:
                logger.error("health_redis_failure", error=str(exc))
                result["feed"] = f"error: {exc}"
                result["status"] = "degraded"

        return result

    # -- API router ------------------------------------------------------ #

    from featur.api.router import router as api_router

    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
