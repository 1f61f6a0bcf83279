"""
QueryLens FastAPI Application

Main FastAPI application entry point.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.core.config import settings
from src.core.exceptions import PermissionsConfigError
from src.core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

APP_DESCRIPTION = "Conversational data analyst with table-level access control and read-only SQL guardrails"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Lifespan context manager for FastAPI application.

    Handles startup and shutdown events.
    """
    from src.api.dependencies import get_permission_store, reset_dependencies
    from src.database.engine import dispose_engine

    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

    if settings.permissions_file:
        try:
            config = get_permission_store().load_file(settings.permissions_file)
            logger.info(f"Loaded {len(config.tables)} table permission(s) from {settings.permissions_file}")
        except PermissionsConfigError as e:
            logger.error(f"Permissions file rejected, starting with default access: {e}")

    yield

    # Shutdown with timeout to prevent hanging on Ctrl+C / docker stop
    logger.info(f"Shutting down {settings.app_name}...")
    try:
        await asyncio.wait_for(asyncio.to_thread(dispose_engine), timeout=5.0)
    except TimeoutError:
        logger.warning("Engine disposal timed out after 5s, forcing exit")
    reset_dependencies()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description=APP_DESCRIPTION,
    version=settings.app_version,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint - returns basic application information"""
    return {"name": settings.app_name, "version": settings.app_version, "status": "running"}


@app.get("/health", tags=["Health"])
async def health_check():
    """Simple health check endpoint for monitoring"""
    from datetime import UTC, datetime

    return {"status": "healthy", "timestamp": datetime.now(UTC).isoformat()}


# Import and include routers (after app creation to avoid circular imports)
from src.api.routers import chat, permissions, schema  # noqa: E402

app.include_router(chat.router, prefix="/api/v1/chat", tags=["Chat"])
app.include_router(permissions.router, prefix="/api/v1/permissions", tags=["Permissions"])
app.include_router(schema.router, prefix="/api/v1/schema", tags=["Schema"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
