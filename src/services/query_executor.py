"""
Guarded Query Executor

Runs analyst-issued SQL against the backing store after every safety and
permission check has passed. Checks run in a fixed order:

1. validate_sql()        - read-only, single statement
2. validate_sql_access() - every referenced table is permitted
3. sanitize_sql()        - strip trailing semicolons
4. add_default_limit()   - row cap when the query has none
5. execute, raced against the timeout

Each executed query and each denial is written to the audit log.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from src.core.config import settings
from src.core.exceptions import AccessDeniedError, SQLValidationError
from src.core.logging import get_audit_logger, get_logger
from src.core.permissions import DEFAULT_SCHEMA, AccessValidationResult, PermissionsConfig, validate_sql_access
from src.database.runner import QueryRunner, run_with_timeout
from src.utils.sql_validator import add_default_limit, sanitize_sql, validate_sql
from src.utils.table_extractor import TableReferenceExtractor, default_extractor

logger = get_logger(__name__)
audit_logger = get_audit_logger()


@dataclass
class QueryResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    columns: list[str] = field(default_factory=list)
    execution_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.rows,
            "rowCount": self.row_count,
            "columns": self.columns,
            "executionTimeMs": self.execution_time_ms,
        }


class GuardedQueryExecutor:
    """
    Executes SQL under one permissions snapshot.

    Args:
        runner: Backing store query runner
        config: Permissions snapshot applied to every query
        max_rows: Row cap for queries without LIMIT (defaults to settings.query_max_rows)
        timeout_ms: Execution timeout (defaults to settings.query_timeout_ms)
        extractor: Table reference extractor used for the access check
        schema: Schema unqualified table names resolve against
    """

    def __init__(
        self,
        runner: QueryRunner,
        config: PermissionsConfig,
        max_rows: int | None = None,
        timeout_ms: int | None = None,
        extractor: TableReferenceExtractor = default_extractor,
        schema: str = DEFAULT_SCHEMA,
    ):
        self.runner = runner
        self.config = config
        self.max_rows = max_rows or settings.query_max_rows
        self.timeout_ms = timeout_ms or settings.query_timeout_ms
        self.extractor = extractor
        self.schema = schema

    def validate_table_access(self, sql: str) -> AccessValidationResult:
        """Check which tables a query references and which of them are blocked."""
        return validate_sql_access(self.config, sql, extractor=self.extractor, schema=self.schema)

    async def execute_sql(self, sql: str, params: list[str] | None = None) -> QueryResult:
        """
        Validate, authorize, cap and run a query.

        Args:
            sql: Single SELECT/WITH statement
            params: Accepted for tool compatibility; not bound

        Returns:
            QueryResult with rows and timing

        Raises:
            SQLValidationError: If the query is not a single read-only statement
            AccessDeniedError: If any referenced table is restricted
            QueryTimeoutError: If execution exceeds timeout_ms
            BackendError: If the database fails the query
        """
        validation = validate_sql(sql)
        if not validation.valid:
            audit_logger.info(f"REJECTED reason={validation.error!r} sql={sql!r}")
            raise SQLValidationError(validation.error)

        for warning in validation.warnings or []:
            logger.debug(f"SQL warning: {warning}")

        access = self.validate_table_access(sql)
        if not access.allowed:
            audit_logger.warning(f"DENIED tables={','.join(access.blocked_tables)} sql={sql!r}")
            raise AccessDeniedError(access.blocked_tables)

        if params:
            logger.debug(f"Ignoring {len(params)} query parameter(s); parameters are not bound")

        final_sql = add_default_limit(sanitize_sql(sql), self.max_rows)

        start = time.perf_counter()
        rows = await run_with_timeout(self.runner, final_sql, self.timeout_ms)
        execution_time_ms = int((time.perf_counter() - start) * 1000)

        audit_logger.info(
            f"EXECUTED tables={','.join(access.tables)} rows={len(rows)} "
            f"time={execution_time_ms}ms sql={final_sql!r}"
        )

        return QueryResult(
            rows=rows,
            row_count=len(rows),
            columns=list(rows[0].keys()) if rows else [],
            execution_time_ms=execution_time_ms,
        )
