"""
QueryLens Source Package

Conversational data analyst with table-level access control.

Subpackages:
- api: FastAPI REST and SSE endpoints
- core: Configuration, logging, permissions, prompts
- database: SQLAlchemy engine and query runner
- services: Analyst agent, tools, catalog, guarded execution, sessions
- utils: SQL validation, identifier checks, response block parsing
"""
