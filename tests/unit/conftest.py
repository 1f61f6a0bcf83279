"""
Shared pytest fixtures - no database or LLM provider required.
"""
import pytest
from fakes import FakeCatalogRunner

from src.core.permissions import AccessLevel, PermissionsConfig, TablePermission


@pytest.fixture
def runner() -> FakeCatalogRunner:
    return FakeCatalogRunner()


@pytest.fixture
def open_config() -> PermissionsConfig:
    """Default READ access, no overrides"""
    return PermissionsConfig(default_access=AccessLevel.READ)


@pytest.fixture
def restricted_config() -> PermissionsConfig:
    """salaries hidden, customers.password_hash blocked"""
    return PermissionsConfig(
        default_access=AccessLevel.READ,
        tables=(
            TablePermission(table="salaries", access_level=AccessLevel.NONE),
            TablePermission(
                table="customers",
                access_level=AccessLevel.READ,
                blocked_columns=("password_hash",),
            ),
        ),
    )
