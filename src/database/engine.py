"""
QueryLens Database Engine

The analyst only ever reads: catalog introspection and agent-issued SELECTs.
Point DATABASE_URL at credentials that are read-only at the database level;
the application-side guard is a second line of defense, not the only one.

Usage:
    from src.database.engine import get_engine

    with get_engine().connect() as conn:
        conn.execute(text("SELECT 1"))
"""
from __future__ import annotations

import threading

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from src.core.config import settings
from src.core.logging import get_logger

logger = get_logger(__name__)

_engine: Engine | None = None
_engine_lock = threading.Lock()


def _create_engine(database_url: str | None = None) -> Engine:
    """
    Create a SQLAlchemy engine with pooling configured from settings.

    Args:
        database_url: Optional URL override (defaults to settings.database_url)

    Returns:
        Configured SQLAlchemy Engine
    """
    url = database_url or settings.database_url

    engine_kwargs = {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_timeout": settings.database_pool_timeout,
        "pool_recycle": settings.database_pool_recycle,
        "pool_pre_ping": True,  # Verify connections on checkout (handles DB restarts)
        "echo": False,  # Never echo SQL to stdout; use sqlalchemy.engine logger instead
    }

    if url.startswith("sqlite"):
        # SQLite uses a single-connection pool; queue pool options do not apply
        engine_kwargs = {"echo": False}

    return create_engine(url, **engine_kwargs)


def get_engine() -> Engine:
    """
    Get the shared engine, creating it on first use (thread-safe).

    Returns:
        SQLAlchemy Engine for settings.database_url
    """
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                _engine = _create_engine()
                logger.info(f"Database engine created for {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def dispose_engine() -> None:
    """Close all pooled connections (called on shutdown)."""
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None
            logger.info("Database engine disposed")
