"""
Query Runner

The single capability the guard layers need from the backing store:
take a SQL string, return rows as records, or raise.
"""
from __future__ import annotations

import asyncio
from typing import Any, Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from src.core.exceptions import BackendError, QueryTimeoutError
from src.core.logging import get_logger

logger = get_logger(__name__)


class QueryRunner(Protocol):
    def run(self, sql: str) -> list[dict[str, Any]]:
        """Execute one read-only statement and return its rows."""
        ...


class SQLAlchemyQueryRunner:
    """Runs SQL on a pooled SQLAlchemy connection."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def run(self, sql: str) -> list[dict[str, Any]]:
        """
        Execute SQL and return rows as ordered column->value dicts.

        The transaction is always rolled back, so nothing the statement
        might do is ever committed.

        Raises:
            BackendError: If the database rejects or fails the statement
        """
        try:
            with self.engine.connect() as conn:
                try:
                    # Driver-level execution: no bind parsing of ":name" or "%"
                    result = conn.execution_options(no_parameters=True).exec_driver_sql(sql)
                    if not result.returns_rows:
                        return []
                    columns = list(result.keys())
                    return [dict(zip(columns, row, strict=False)) for row in result.fetchall()]
                finally:
                    conn.rollback()
        except SQLAlchemyError as e:
            logger.error(f"SQL execution error: {e}")
            raise BackendError("Query", str(e).splitlines()[0] if str(e) else type(e).__name__) from e


async def run_with_timeout(runner: QueryRunner, sql: str, timeout_ms: int) -> list[dict[str, Any]]:
    """
    Run a query in a worker thread, racing it against a timer.

    On timeout the caller gets QueryTimeoutError and no rows. The worker
    thread is abandoned, not killed, and the database may keep executing
    the statement until its own statement_timeout (if any) fires.

    Raises:
        QueryTimeoutError: If the query does not finish within timeout_ms
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(runner.run, sql), timeout=timeout_ms / 1000)
    except TimeoutError as e:
        logger.warning(f"Query abandoned after {timeout_ms}ms")
        raise QueryTimeoutError(timeout_ms) from e
