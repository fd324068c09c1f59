"""FastAPI application initialization."""

from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from authflow import __version__
from authflow.api.auth import router as auth_router
from authflow.api.error_handling import register_exception_handlers
from authflow.api.health import router as health_router
from authflow.api.middleware import CorrelationIdMiddleware
from authflow.config import get_settings
from authflow.database import Database, close_database, init_database, run_migrations
from authflow.services.auth_service import AuthService
from authflow.services.email_service import await_pending_sends
from authflow.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    logger = get_logger("main")

    pool = await init_database(settings)
    await run_migrations(pool)
    logger.info("database_initialized")

    db = Database(pool)
    auth_service = AuthService.from_database(settings, db)
    app.state.pool = pool
    app.state.auth_service = auth_service

    purged_sessions = await auth_service.sessions.purge_expired()
    purged_tokens = await auth_service.one_time_tokens.purge_expired()
    logger.info(
        "application_started",
        log_level=settings.log_level,
        email_enabled=settings.email_enabled,
        refresh_token_rotation=settings.refresh_token_rotation,
        purged_sessions=purged_sessions,
        purged_tokens=purged_tokens,
    )

    yield

    # Shutdown
    # Let in-flight notification emails finish before closing connections
    await await_pending_sends(timeout=5.0)
    await close_database(pool)
    logger.info("application_shutdown")


app = FastAPI(
    title="Authflow - Credential and Session API",
    description="Registration, email verification, login with MFA, sessions and password reset",
    version=__version__,
    lifespan=lifespan,
)

register_exception_handlers(app)

# CORS middleware for browser clients
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Correlation ID middleware for request tracking and observability
app.add_middleware(CorrelationIdMiddleware)

app.include_router(auth_router)
app.include_router(health_router)


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "authflow.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
