"""
Analyst Tool Catalog and Dispatch

The three tools the model may call, and the dispatcher that runs them
through the catalog reader and the guarded executor.

Every tool call produces a ToolOutcome. Exceptions never escape the
dispatcher: a failed call becomes {"success": false, "error": ...} so the
model can read the failure and react to it.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.exceptions import (
    AccessDeniedError,
    BackendError,
    InvalidIdentifierError,
    QueryTimeoutError,
    SQLValidationError,
)
from src.core.logging import get_logger
from src.core.permissions import DEFAULT_SCHEMA, PermissionsConfig
from src.database.runner import QueryRunner
from src.services.catalog import CatalogReader, TableInfo
from src.services.query_executor import GuardedQueryExecutor, QueryResult

logger = get_logger(__name__)


TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "list_tables",
        "description": (
            "List all tables in the database that you have permission to access. "
            "Tables restricted in Security Settings are not shown."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "schema": {
                    "type": "string",
                    "description": "Database schema name (default: public)",
                },
            },
            "required": [],
        },
    },
    {
        "name": "get_table_schema",
        "description": (
            "Get the columns, types, primary keys and foreign keys of a table. "
            "Restricted columns are not shown."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "table_name": {
                    "type": "string",
                    "description": "Name of the table",
                },
                "schema": {
                    "type": "string",
                    "description": "Database schema name (default: public)",
                },
            },
            "required": ["table_name"],
        },
    },
    {
        "name": "execute_sql",
        "description": (
            "Execute a read-only SQL query (SELECT or WITH only). "
            "Results are capped to a maximum number of rows."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "sql": {
                    "type": "string",
                    "description": "The SQL query to execute",
                },
                "params": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Optional query parameters",
                },
            },
            "required": ["sql"],
        },
    },
]

TOOL_NAMES = frozenset(tool["name"] for tool in TOOL_DEFINITIONS)


# =============================================================================
# Tool inputs
# =============================================================================


class ListTablesInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_name: str = Field(default=DEFAULT_SCHEMA, alias="schema")


class GetTableSchemaInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    table_name: str
    schema_name: str = Field(default=DEFAULT_SCHEMA, alias="schema")


class ExecuteSQLInput(BaseModel):
    sql: str = Field(min_length=1)
    params: list[str] | None = None


# =============================================================================
# Typed outcomes
# =============================================================================


@dataclass(frozen=True)
class ListTablesResult:
    tables: list[TableInfo]

    def to_dict(self) -> dict[str, Any]:
        return {"tables": [{"name": t.name, "columnCount": t.column_count} for t in self.tables]}


@dataclass(frozen=True)
class TableSchemaResult:
    table: TableInfo

    def to_dict(self) -> dict[str, Any]:
        return {"table": self.table.model_dump(mode="json", by_alias=True)}


@dataclass(frozen=True)
class QueryResultPayload:
    result: QueryResult

    def to_dict(self) -> dict[str, Any]:
        return {"result": self.result.to_dict()}


ToolPayload = ListTablesResult | TableSchemaResult | QueryResultPayload


@dataclass(frozen=True)
class ToolOutcome:
    """Success with a typed payload, or failure with an error message and kind."""

    success: bool
    payload: ToolPayload | None = None
    error: str | None = None
    error_kind: str | None = None
    blocked_tables: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, payload: ToolPayload) -> ToolOutcome:
        return cls(success=True, payload=payload)

    @classmethod
    def fail(cls, error: str, kind: str, blocked_tables: list[str] | None = None) -> ToolOutcome:
        return cls(success=False, error=error, error_kind=kind, blocked_tables=list(blocked_tables or []))

    @property
    def is_access_denied(self) -> bool:
        return self.error_kind == "access_denied"

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {"success": True, **(self.payload.to_dict() if self.payload else {})}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class ToolDispatcher:
    """
    Routes tool calls for one permissions snapshot.

    Args:
        catalog: Catalog reader for list_tables / get_table_schema
        executor: Guarded executor for execute_sql (bound to `config`)
        config: Permissions snapshot used for catalog calls
    """

    def __init__(self, catalog: CatalogReader, executor: GuardedQueryExecutor, config: PermissionsConfig):
        self.catalog = catalog
        self.executor = executor
        self.config = config

    @classmethod
    def for_config(
        cls,
        runner: QueryRunner,
        config: PermissionsConfig,
        max_rows: int | None = None,
        timeout_ms: int | None = None,
    ) -> ToolDispatcher:
        """Build a dispatcher whose catalog and executor share one runner and config."""
        return cls(
            catalog=CatalogReader(runner, timeout_ms=timeout_ms),
            executor=GuardedQueryExecutor(runner, config, max_rows=max_rows, timeout_ms=timeout_ms),
            config=config,
        )

    async def handle_tool_call(self, name: str, tool_input: dict[str, Any] | None) -> ToolOutcome:
        """
        Run one tool call and wrap its outcome.

        Never raises; every failure is returned as ToolOutcome.fail().
        """
        tool_input = tool_input or {}

        try:
            if name == "list_tables":
                args = ListTablesInput.model_validate(tool_input)
                tables = await self.catalog.list_tables(self.config, args.schema_name)
                return ToolOutcome.ok(ListTablesResult(tables=tables))

            if name == "get_table_schema":
                args = GetTableSchemaInput.model_validate(tool_input)
                table = await self.catalog.get_table_schema(self.config, args.table_name, args.schema_name)
                return ToolOutcome.ok(TableSchemaResult(table=table))

            if name == "execute_sql":
                args = ExecuteSQLInput.model_validate(tool_input)
                result = await self.executor.execute_sql(args.sql, args.params)
                return ToolOutcome.ok(QueryResultPayload(result=result))

            return ToolOutcome.fail(f"Unknown tool: {name}", "unknown_tool")

        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
            )
            return ToolOutcome.fail(f"Invalid input for {name}: {problems}", "invalid_input")
        except AccessDeniedError as e:
            logger.info(f"Tool {name} denied: {', '.join(e.tables)}")
            return ToolOutcome.fail(str(e), "access_denied", e.tables)
        except InvalidIdentifierError as e:
            return ToolOutcome.fail(str(e), "invalid_identifier")
        except SQLValidationError as e:
            return ToolOutcome.fail(str(e), "validation")
        except QueryTimeoutError as e:
            return ToolOutcome.fail(str(e), "timeout")
        except BackendError as e:
            logger.warning(f"Tool {name} backend failure: {e}")
            return ToolOutcome.fail(str(e), "backend")
        except Exception as e:
            logger.exception(f"Tool {name} failed unexpectedly")
            return ToolOutcome.fail(str(e) or type(e).__name__, "internal")
