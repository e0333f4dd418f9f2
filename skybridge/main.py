"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from skybridge import __version__
from skybridge.api.accounts import router as accounts_router
from skybridge.api.health import router as health_router
from skybridge.api.posts import router as posts_router
from skybridge.config import Settings
from skybridge.crosspost.base import (
    AuthError,
    DestinationClient,
    NetworkError,
    RateLimitedError,
    SourceClient,
)
from skybridge.crosspost.bluesky import BlueskyClient
from skybridge.crosspost.oauth_state import PendingAuthStateStore
from skybridge.crosspost.x import XClient
from skybridge.database import check_connectivity, create_engine
from skybridge.exceptions import (
    ConflictError,
    InternalServerError,
    NotConnectedError,
    NotFoundError,
)
from skybridge.models.base import Base
from skybridge.services.scheduler_service import AutoRepostScheduler
from skybridge.services.sync_service import SyncEngine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def init_services(
    app: FastAPI,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    source_client: SourceClient | None = None,
    destination_client: DestinationClient | None = None,
) -> SyncEngine:
    """Attach network clients, the OAuth state store and the sync engine to app state."""
    if source_client is None:
        source_client = XClient(
            settings.x_client_id,
            settings.x_client_secret,
            settings.x_redirect_uri,
            scopes=settings.x_scopes,
            api_base_url=settings.x_api_base_url,
            timeout=settings.http_timeout_seconds,
        )
    if destination_client is None:
        destination_client = BlueskyClient(
            settings.bluesky_service_url,
            timeout=settings.http_timeout_seconds,
        )

    engine = SyncEngine(
        session_factory,
        source_client,
        destination_client,
        secret_key=settings.secret_key,
        fetch_limit=settings.source_fetch_limit,
    )
    app.state.session_factory = session_factory
    app.state.source_client = source_client
    app.state.destination_client = destination_client
    app.state.oauth_state_store = PendingAuthStateStore(
        session_factory,
        settings.secret_key,
        ttl_seconds=settings.oauth_state_ttl_seconds,
    )
    app.state.sync_engine = engine
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting SkyBridge (debug=%s)", settings.debug)

    db_url = settings.database_url
    if db_url.startswith("sqlite"):
        db_path = db_url.split("///", 1)[-1] if "///" in db_url else None
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await check_connectivity(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    sync_engine = init_services(app, settings, session_factory)

    scheduler: AutoRepostScheduler | None = None
    if settings.scheduler_enabled:
        scheduler = AutoRepostScheduler(
            sync_engine,
            session_factory,
            interval=settings.scheduler_interval_seconds,
            max_concurrency=settings.scheduler_max_concurrency,
        )
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        try:
            await scheduler.stop()
        except Exception as exc:
            logger.error("Error during scheduler shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("SkyBridge stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="SkyBridge",
        description="Cross-posts X posts to Bluesky through linked accounts",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.scheduler = None

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:5173", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(posts_router)
    app.include_router(accounts_router)

    # Global exception handlers

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc) or "Not found"})

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc) or "Conflict"})

    @app.exception_handler(NotConnectedError)
    async def not_connected_handler(request: Request, exc: NotConnectedError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc) or "Account not connected; reconnect required"},
        )

    @app.exception_handler(AuthError)
    async def upstream_auth_handler(request: Request, exc: AuthError) -> JSONResponse:
        logger.warning("AuthError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=502,
            content={"detail": f"Upstream authentication failed; reconnect required: {exc}"},
        )

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
        logger.warning("RateLimitedError in %s %s: %s", request.method, request.url.path, exc)
        headers = {}
        if exc.retry_after is not None:
            headers["Retry-After"] = str(int(exc.retry_after))
        return JSONResponse(
            status_code=503,
            content={"detail": "Upstream rate limit reached; try again later"},
            headers=headers,
        )

    @app.exception_handler(NetworkError)
    async def network_error_handler(request: Request, exc: NetworkError) -> JSONResponse:
        logger.error("NetworkError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=502,
            content={"detail": "Upstream service unavailable"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "skybridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
