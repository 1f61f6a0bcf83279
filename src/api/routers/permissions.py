"""
Permissions Router - Table access configuration

Provides endpoints to:
- Read and replace the server's permissions config
- Set or remove the override for one table
- Check a SQL string against the current config without running it
- List accessible columns whose names look sensitive
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from src.api.dependencies import get_permission_store, get_query_runner
from src.api.errors import to_http_exception
from src.core.exceptions import PermissionsConfigError, QueryLensError
from src.core.logging import get_logger
from src.core.permissions import (
    DEFAULT_SCHEMA,
    PermissionStore,
    describe_access_level,
    is_sensitive_column_name,
    parse_config,
    parse_permission,
    resolve,
    validate_sql_access,
)
from src.database.runner import QueryRunner
from src.services.catalog import CatalogReader
from src.utils.sql_identifiers import IDENTIFIER_PATTERN, MAX_IDENTIFIER_LENGTH

logger = get_logger(__name__)
router = APIRouter()

IDENTIFIER_REGEX = IDENTIFIER_PATTERN.pattern


# ============================================================================
# Request/Response Models
# ============================================================================


class ValidateSQLRequest(BaseModel):
    sql: str = Field(..., min_length=1, description="SQL to check against the current permissions")


class ValidateSQLResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    tables: list[str]
    blocked_tables: list[str] = Field(alias="blockedTables")
    message: str


class SensitiveColumn(BaseModel):
    name: str
    type: str


# ============================================================================
# Endpoints
# ============================================================================


@router.get("", summary="Get current permissions config")
async def get_permissions(store: PermissionStore = Depends(get_permission_store)) -> dict[str, Any]:
    return store.get().to_api()


@router.post("", summary="Replace permissions config")
async def replace_permissions(
    payload: dict[str, Any] = Body(..., description="Full permissions config (camelCase)"),
    store: PermissionStore = Depends(get_permission_store),
) -> dict[str, Any]:
    """
    Replace the whole config.

    Identifier rules, unique (schema, table) entries and the table cap are
    checked here; invalid input is rejected with 400.
    """
    try:
        updated = store.replace(parse_config(payload))
    except PermissionsConfigError as e:
        raise to_http_exception(e) from e
    return {"success": True, "config": updated.to_api()}


@router.put("", summary="Set one table permission")
async def upsert_permission(
    payload: dict[str, Any] = Body(..., description="One table permission (camelCase)"),
    store: PermissionStore = Depends(get_permission_store),
) -> dict[str, Any]:
    try:
        permission = parse_permission(payload)
        store.upsert(permission)
    except PermissionsConfigError as e:
        raise to_http_exception(e) from e

    return {
        "success": True,
        "permission": permission.model_dump(mode="json", by_alias=True),
        "description": describe_access_level(permission.access_level),
    }


@router.delete("", summary="Remove one table permission")
async def delete_permission(
    table: str = Query(..., min_length=1, max_length=MAX_IDENTIFIER_LENGTH, pattern=IDENTIFIER_REGEX),
    schema: str = Query(DEFAULT_SCHEMA, min_length=1, max_length=MAX_IDENTIFIER_LENGTH, pattern=IDENTIFIER_REGEX),
    store: PermissionStore = Depends(get_permission_store),
) -> dict[str, Any]:
    """Remove a table's override so it falls back to the default access level."""
    store.remove(table, schema)
    return {"success": True}


@router.post("/validate", response_model=ValidateSQLResponse, summary="Check SQL against permissions")
async def validate_sql_permissions(
    request: ValidateSQLRequest,
    store: PermissionStore = Depends(get_permission_store),
) -> ValidateSQLResponse:
    """Report which tables a query references and which are blocked. Nothing is executed."""
    result = validate_sql_access(store.get(), request.sql)
    return ValidateSQLResponse(
        allowed=result.allowed,
        tables=result.tables,
        blocked_tables=result.blocked_tables,
        message=(
            "Query is allowed"
            if result.allowed
            else f"Access denied to table(s): {', '.join(result.blocked_tables)}"
        ),
    )


@router.get("/sensitive-columns", summary="List sensitive-looking columns of a table")
async def sensitive_columns(
    table: str = Query(..., min_length=1, max_length=MAX_IDENTIFIER_LENGTH, pattern=IDENTIFIER_REGEX),
    schema: str = Query(DEFAULT_SCHEMA, min_length=1, max_length=MAX_IDENTIFIER_LENGTH, pattern=IDENTIFIER_REGEX),
    store: PermissionStore = Depends(get_permission_store),
    runner: QueryRunner = Depends(get_query_runner),
) -> dict[str, Any]:
    """
    Advisory listing of accessible columns whose names match the sensitive
    denylist (password, token, ssn, ...). Blocking them is up to the admin.
    """
    config = store.get()
    try:
        info = await CatalogReader(runner).get_table_schema(config, table, schema)
    except QueryLensError as e:
        raise to_http_exception(e) from e

    columns = [
        SensitiveColumn(name=column.name, type=column.type).model_dump()
        for column in info.columns
        if is_sensitive_column_name(column.name)
    ]
    return {
        "table": table,
        "schema": schema,
        "accessLevel": resolve(config, table, schema).access_level.value,
        "sensitiveColumns": columns,
    }
