"""Main FastAPI application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from alembic import script
from alembic.config import Config
from alembic.runtime import migration
from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy import text
from sqlalchemy.engine import Connection

from app import __version__
from app.api import users
from app.api.errors import register_exception_handlers
from app.core.config import settings
from app.core.database import dispose_engine, get_engine
from app.core.logging import configure_logging
from app.core.telemetry import get_tracer_provider, shutdown_tracer_provider
from app.middleware import AccessLoggingMiddleware
from app.web import pages

# Configure logging at module level so Uvicorn startup logs go through structlog
configure_logging(log_level=settings.LOG_LEVEL)

logger = structlog.get_logger(__name__)


def _check_alembic_migrations(sync_conn: Connection) -> str | None:
    """
    Validate that the database is at the expected Alembic revision.

    Args:
        sync_conn: Synchronous SQLAlchemy connection

    Returns:
        Current revision ID

    Raises:
        RuntimeError: If database is not initialized or migrations are needed
    """
    context = migration.MigrationContext.configure(sync_conn)
    current_rev = context.get_current_revision()

    alembic_ini_path = Path(settings.ALEMBIC_INI_PATH)
    if not alembic_ini_path.exists():
        logger.warning("alembic_ini_not_found", path=settings.ALEMBIC_INI_PATH, action="skipping migration validation")
        return current_rev

    alembic_cfg = Config(str(alembic_ini_path))
    head_rev = script.ScriptDirectory.from_config(alembic_cfg).get_current_head()

    if current_rev is None:
        msg = "Database has not been initialized! Please run: alembic upgrade head"
        raise RuntimeError(msg)
    if current_rev != head_rev:
        msg = (
            f"Database migration required!\n"
            f"  Current revision: {current_rev}\n"
            f"  Expected revision: {head_rev}\n"
            f"Please run: alembic upgrade head"
        )
        raise RuntimeError(msg)

    return current_rev


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan - install the tracer provider and validate the database."""
    if settings.OTEL_ENABLED and (provider := get_tracer_provider()):
        trace.set_tracer_provider(provider)
        logger.info("otel_tracer_provider_initialized")

    # Tests run in DEBUG against a throwaway database, skip validation there
    if settings.DEBUG:
        logger.info("debug_mode_startup", message="skipping database validation")
    else:
        logger.info("startup_initializing", message="validating database")
        try:
            async with get_engine().begin() as conn:
                await conn.execute(text("SELECT 1"))
                logger.info("database_connection_successful")

                current_rev = await conn.run_sync(_check_alembic_migrations)
                logger.info("database_migration_valid", revision=current_rev)
        except RuntimeError as e:
            logger.error("migration_validation_failed", error=str(e))
            raise
        except Exception as e:
            logger.error("startup_failed", error=str(e))
            raise
        logger.info("startup_complete")

    yield

    logger.info("shutdown_starting")
    if settings.OTEL_ENABLED:
        shutdown_tracer_provider()
    await dispose_engine()
    logger.info("shutdown_complete")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    description="Create, search, update and delete user records",
    version=__version__,
    lifespan=lifespan,
)

if settings.OTEL_ENABLED:
    FastAPIInstrumentor().instrument_app(
        app,
        excluded_urls=",".join(settings.OTEL_EXCLUDED_URLS),
    )
    logger.info("otel_fastapi_instrumented", excluded_urls=settings.OTEL_EXCLUDED_URLS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(AccessLoggingMiddleware)

register_exception_handlers(app)

app.include_router(users.router, prefix=settings.API_PREFIX)
app.include_router(pages.router)
app.mount("/static", StaticFiles(directory=pages.STATIC_DIR), name="static")


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/ready")
async def readiness_check() -> dict[str, str]:
    """Readiness check endpoint - verify the database answers."""
    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        # Details stay in the logs
        logger.error("readiness_check_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unavailable",
        ) from e
    return {"status": "ready"}
