"""
QueryLens Database Package

Read-only access to the backing relational store.

Usage:
    from src.database import SQLAlchemyQueryRunner, get_engine

    runner = SQLAlchemyQueryRunner(get_engine())
    rows = runner.run("SELECT 1 AS one")
"""

from src.database.engine import dispose_engine, get_engine
from src.database.runner import QueryRunner, SQLAlchemyQueryRunner, run_with_timeout

__all__ = [
    "dispose_engine",
    "get_engine",
    "QueryRunner",
    "SQLAlchemyQueryRunner",
    "run_with_timeout",
]
