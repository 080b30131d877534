"""FastAPI application wiring for the session service."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from psycopg_pool import ConnectionPool

from .api.dependencies import build_rate_limiter
from .api.errors import register_exception_handlers
from .api.routes import router as v1_router
from .config import Settings, get_settings
from .domain.service import SessionManager
from .logging_setup import configure_logging
from .memory_repository import InMemoryAccountRepository, InMemorySessionRepository
from .repository import AccountRepository, SessionRepository


def install_rate_limiters(app: FastAPI, settings: Settings) -> None:
    """Attach the strict (credential) and lenient (general API) limiters to ``app.state``."""
    app.state.auth_rate_limiter = build_rate_limiter(
        settings,
        max_requests=settings.auth_rate_limit_requests,
        window_seconds=settings.auth_rate_limit_window_seconds,
        key_prefix="auth",
    )
    app.state.api_rate_limiter = build_rate_limiter(
        settings,
        max_requests=settings.api_rate_limit_requests,
        window_seconds=settings.api_rate_limit_window_seconds,
        key_prefix="api",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, stores, limiters) for the app lifecycle."""
    settings: Settings = app.state.settings
    install_rate_limiters(app, settings)
    if settings.store_backend == "memory":
        app.state.session_manager = SessionManager(
            InMemoryAccountRepository(), InMemorySessionRepository(), settings=settings
        )
        yield
        return

    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    app.state.session_manager = SessionManager(
        AccountRepository(pool), SessionRepository(pool), settings=settings
    )
    try:
        yield
    finally:
        pool.close()
        pool.wait_close()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application; configuration is validated before anything starts."""
    settings = settings or get_settings()
    settings.validate()
    configure_logging(settings.log_level)

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.settings = settings

    # CORS for local frontend dev; credentials are needed for the refresh cookie
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    @app.get("/healthz", tags=["health"])
    def healthz() -> dict[str, str]:
        """Return a minimal readiness indicator used by orchestration systems."""
        return {"status": "ok"}

    register_exception_handlers(app)
    app.include_router(v1_router)

    # Prometheus metrics endpoint for Prometheus scrapes
    try:
        from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

        @app.get("/metrics")
        def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
    except ImportError:  # pragma: no cover - metrics are optional in dev
        pass

    return app


app = create_app()
