"""
Schema Router - Permission-filtered schema explorer

Provides endpoints to browse tables and columns the current permissions
config allows. Restricted tables are hidden from the listing and refused
with 403 when requested by name; restricted columns are never shown.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_permission_store, get_query_runner
from src.api.errors import to_http_exception
from src.core.exceptions import QueryLensError
from src.core.logging import get_logger
from src.core.permissions import DEFAULT_SCHEMA, PermissionStore
from src.database.runner import QueryRunner
from src.services.catalog import CatalogReader

logger = get_logger(__name__)
router = APIRouter()


def get_catalog(runner: QueryRunner = Depends(get_query_runner)) -> CatalogReader:
    """Get a catalog reader for each request (nothing is cached)."""
    return CatalogReader(runner)


@router.get("/tables", summary="List accessible tables")
async def list_tables(
    schema: str = Query(DEFAULT_SCHEMA, description="Database schema"),
    store: PermissionStore = Depends(get_permission_store),
    catalog: CatalogReader = Depends(get_catalog),
) -> dict[str, Any]:
    try:
        tables = await catalog.list_tables(store.get(), schema)
    except QueryLensError as e:
        logger.warning(f"Table listing failed for schema {schema}: {e}")
        raise to_http_exception(e) from e

    return {
        "schema": schema,
        "tables": [t.model_dump(by_alias=True, exclude={"columns"}) for t in tables],
        "count": len(tables),
    }


@router.get("/tables/{table_name}", summary="Describe one table")
async def get_table(
    table_name: str,
    schema: str = Query(DEFAULT_SCHEMA, description="Database schema"),
    store: PermissionStore = Depends(get_permission_store),
    catalog: CatalogReader = Depends(get_catalog),
) -> dict[str, Any]:
    """
    Get columns, primary keys and foreign keys of a table.

    Returns 403 for a restricted table, 400 for an invalid name and 502 when
    the database fails.
    """
    try:
        table = await catalog.get_table_schema(store.get(), table_name, schema)
    except QueryLensError as e:
        logger.info(f"Table lookup failed for {schema}.{table_name}: {e}")
        raise to_http_exception(e) from e

    return table.model_dump(mode="json", by_alias=True)
