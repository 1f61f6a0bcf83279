"""
QueryLens FastAPI Dependencies

Shared providers for API endpoints. Each one is a plain function so tests can
swap it with app.dependency_overrides.
"""

from __future__ import annotations

import threading

from fastapi import Depends, HTTPException, status

from src.core.config import Settings, get_settings
from src.core.exceptions import ConfigurationError
from src.core.logging import get_logger
from src.core.permissions import PermissionStore
from src.database.engine import get_engine
from src.database.runner import QueryRunner, SQLAlchemyQueryRunner
from src.services.llm_providers import LanguageModel, create_language_model
from src.services.sessions import SessionStore

logger = get_logger(__name__)

_permission_store: PermissionStore | None = None
_session_store: SessionStore | None = None
_language_model: LanguageModel | None = None
_lock = threading.Lock()


def get_app_settings() -> Settings:
    return get_settings()


def get_permission_store() -> PermissionStore:
    """
    Get the process-wide permission store.

    Thread-safe: uses double-checked locking on first use.
    """
    global _permission_store
    if _permission_store is None:
        with _lock:
            if _permission_store is None:
                _permission_store = PermissionStore()
    return _permission_store


def get_session_store() -> SessionStore:
    """Get the process-wide conversation store."""
    global _session_store
    if _session_store is None:
        with _lock:
            if _session_store is None:
                _session_store = SessionStore()
    return _session_store


def get_query_runner() -> QueryRunner:
    return SQLAlchemyQueryRunner(get_engine())


def get_language_model(settings: Settings = Depends(get_app_settings)) -> LanguageModel:
    """
    Get the shared language model client for the configured provider.

    Raises:
        HTTPException: 503 if the provider is not configured
    """
    global _language_model
    if _language_model is None:
        with _lock:
            if _language_model is None:
                try:
                    _language_model = create_language_model(settings)
                except ConfigurationError as e:
                    logger.error(f"Language model unavailable: {e}")
                    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e
    return _language_model


def reset_dependencies() -> None:
    """Drop cached providers (used on shutdown and between tests)."""
    global _permission_store, _session_store, _language_model
    with _lock:
        _permission_store = None
        _session_store = None
        _language_model = None
