"""
Access-Controlled Catalog Reader

Schema introspection through information_schema, filtered by the current
permissions config. Nothing is cached: a permission change takes effect on
the next lookup.

- list_tables hides restricted tables silently, so a hidden table and a
  missing table look the same.
- get_table_schema refuses a restricted table explicitly (AccessDeniedError)
  so the analyst can tell the user which table is off-limits.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.core.config import settings
from src.core.exceptions import AccessDeniedError, BackendError
from src.core.logging import get_logger
from src.core.permissions import (
    DEFAULT_SCHEMA,
    PermissionsConfig,
    can_access_column,
    can_access_table,
)
from src.database.runner import QueryRunner, run_with_timeout
from src.utils.sql_identifiers import escape_literal, validate_identifier

logger = get_logger(__name__)


# Values go into E'...' literals: escape_literal output decodes the same there
# whatever standard_conforming_strings is set to
TABLES_SQL = """
SELECT table_name AS name, table_schema AS schema
FROM information_schema.tables
WHERE table_schema = E'{schema}'
  AND table_type = 'BASE TABLE'
ORDER BY table_name
"""

TABLE_COLUMNS_SQL = """
SELECT table_name, column_name
FROM information_schema.columns
WHERE table_schema = E'{schema}'
ORDER BY table_name, ordinal_position
"""

COLUMNS_SQL = """
SELECT
    c.column_name AS name,
    c.data_type AS type,
    (c.is_nullable = 'YES') AS nullable,
    c.column_default AS default_value
FROM information_schema.columns c
WHERE c.table_name = E'{table}'
  AND c.table_schema = E'{schema}'
ORDER BY c.ordinal_position
"""

PRIMARY_KEYS_SQL = """
SELECT kcu.column_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
  AND tc.table_schema = kcu.table_schema
WHERE tc.constraint_type = 'PRIMARY KEY'
  AND tc.table_name = E'{table}'
  AND tc.table_schema = E'{schema}'
"""

FOREIGN_KEYS_SQL = """
SELECT
    kcu.column_name,
    ccu.table_name AS foreign_table,
    ccu.table_schema AS foreign_schema,
    ccu.column_name AS foreign_column
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
  AND tc.table_schema = kcu.table_schema
JOIN information_schema.constraint_column_usage ccu
  ON ccu.constraint_name = tc.constraint_name
  AND ccu.table_schema = tc.table_schema
WHERE tc.constraint_type = 'FOREIGN KEY'
  AND tc.table_name = E'{table}'
  AND tc.table_schema = E'{schema}'
"""


class ColumnReference(BaseModel):
    table: str
    column: str


class ColumnInfo(BaseModel):
    """One column as exposed to the analyst."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    type: str
    nullable: bool = True
    default_value: str | None = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    references: ColumnReference | None = None


class TableInfo(BaseModel):
    """Table metadata; `columns` is empty in list results."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    schema_name: str = Field(default=DEFAULT_SCHEMA, alias="schema")
    columns: list[ColumnInfo] = Field(default_factory=list)
    column_count: int = 0


class CatalogReader:
    """
    Reads table and column metadata under a permissions config.

    Args:
        runner: Executes catalog queries against the backing store
        timeout_ms: Per-query timeout (defaults to settings.query_timeout_ms)
    """

    def __init__(self, runner: QueryRunner, timeout_ms: int | None = None):
        self.runner = runner
        self.timeout_ms = timeout_ms or settings.query_timeout_ms

    async def _fetch(self, sql: str, operation: str, **context: str) -> list[dict]:
        try:
            return await run_with_timeout(self.runner, sql, self.timeout_ms)
        except BackendError as e:
            raise BackendError(operation, e.detail, context) from e

    async def list_tables(self, config: PermissionsConfig, schema: str = DEFAULT_SCHEMA) -> list[TableInfo]:
        """
        List accessible base tables in a schema.

        Args:
            config: Permissions snapshot to filter with
            schema: Schema name (validated before use)

        Returns:
            Accessible tables ordered by name, each with its visible column count

        Raises:
            InvalidIdentifierError: If schema is not a valid identifier
            BackendError: If the catalog query fails
        """
        validate_identifier(schema, "schema")
        escaped_schema = escape_literal(schema)

        rows = await self._fetch(TABLES_SQL.format(schema=escaped_schema), "List tables", schema=schema)
        column_rows = await self._fetch(
            TABLE_COLUMNS_SQL.format(schema=escaped_schema), "List tables", schema=schema
        )

        visible_columns: dict[str, int] = {}
        for row in column_rows:
            table = row["table_name"]
            if can_access_column(config, table, row["column_name"], schema):
                visible_columns[table] = visible_columns.get(table, 0) + 1

        tables = [
            TableInfo(
                name=row["name"],
                schema_name=row.get("schema") or schema,
                column_count=visible_columns.get(row["name"], 0),
            )
            for row in rows
            if can_access_table(config, row["name"], schema)
        ]

        hidden = len(rows) - len(tables)
        if hidden:
            logger.debug(f"Hid {hidden} restricted table(s) in schema {schema}")
        return tables

    async def get_table_schema(
        self, config: PermissionsConfig, table: str, schema: str = DEFAULT_SCHEMA
    ) -> TableInfo:
        """
        Describe one table, with restricted columns removed.

        Foreign-key targets that point at a restricted table are reported
        without their reference.

        Raises:
            InvalidIdentifierError: If table or schema is not a valid identifier
            AccessDeniedError: If the table is restricted
            BackendError: If a catalog query fails
        """
        validate_identifier(table, "table")
        validate_identifier(schema, "schema")

        if not can_access_table(config, table, schema):
            raise AccessDeniedError([table], schema_lookup=True)

        params = {"table": escape_literal(table), "schema": escape_literal(schema)}
        operation = "Get table schema"

        column_rows = await self._fetch(COLUMNS_SQL.format(**params), operation, table=table, schema=schema)
        pk_rows = await self._fetch(PRIMARY_KEYS_SQL.format(**params), operation, table=table, schema=schema)
        fk_rows = await self._fetch(FOREIGN_KEYS_SQL.format(**params), operation, table=table, schema=schema)

        primary_keys = {row["column_name"] for row in pk_rows}
        foreign_keys = {row["column_name"]: row for row in fk_rows}

        columns = []
        for row in column_rows:
            name = row["name"]
            if not can_access_column(config, table, name, schema):
                continue

            fk = foreign_keys.get(name)
            references = None
            if fk and can_access_table(config, fk["foreign_table"], fk.get("foreign_schema") or schema):
                references = ColumnReference(table=fk["foreign_table"], column=fk["foreign_column"])

            default = row.get("default_value")
            columns.append(
                ColumnInfo(
                    name=name,
                    type=row["type"],
                    nullable=bool(row.get("nullable", True)),
                    default_value=None if default is None else str(default),
                    is_primary_key=name in primary_keys,
                    is_foreign_key=fk is not None,
                    references=references,
                )
            )

        hidden = len(column_rows) - len(columns)
        if hidden:
            logger.debug(f"Hid {hidden} restricted column(s) of {schema}.{table}")

        return TableInfo(name=table, schema_name=schema, columns=columns, column_count=len(columns))
