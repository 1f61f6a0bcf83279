"""
QueryLens Custom Exceptions
"""
from __future__ import annotations

ACCESS_DENIED_PREFIX = "ACCESS_DENIED"

ACCESS_REMEDIATION = (
    "To access this data, please go to Security Settings to update table permissions, "
    "or contact your administrator to request access."
)


class QueryLensError(Exception):
    """Base exception for all QueryLens errors"""

    pass


class ConfigurationError(QueryLensError):
    """Configuration errors"""

    pass


class InvalidIdentifierError(QueryLensError):
    """An identifier destined for SQL text failed the safe-identifier pattern"""

    def __init__(self, value: str, kind: str):
        self.value = value
        self.kind = kind
        super().__init__(
            f'Invalid {kind}: "{value}". '
            "Identifiers must contain only letters, numbers, and underscores, "
            "and start with a letter or underscore."
        )


class SQLValidationError(QueryLensError):
    """Query violates a read-only safety rule"""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"SQL validation failed: {reason}")


class AccessDeniedError(QueryLensError):
    """Query or schema lookup touches a restricted table"""

    def __init__(self, tables: list[str], *, schema_lookup: bool = False):
        self.tables = list(tables)
        if schema_lookup and len(self.tables) == 1:
            message = (
                f"{ACCESS_DENIED_PREFIX}: You don't have permission to access the table "
                f"'{self.tables[0]}'. This table has been restricted in Security Settings. "
            )
        else:
            message = (
                f"{ACCESS_DENIED_PREFIX}: You don't have permission to query the following "
                f"table(s): {', '.join(self.tables)}. "
                "These tables have been restricted in Security Settings. "
            )
        super().__init__(message + ACCESS_REMEDIATION)


class QueryTimeoutError(QueryLensError):
    """Catalog or query round-trip exceeded its budget"""

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Query timeout after {timeout_ms}ms")


class BackendError(QueryLensError):
    """Failure surfaced by the database backend"""

    def __init__(self, operation: str, detail: str, context: dict | None = None):
        self.operation = operation
        self.detail = detail
        self.context = context or {}
        where = ", ".join(f"{k}={v}" for k, v in self.context.items())
        suffix = f" ({where})" if where else ""
        super().__init__(f"{operation} failed{suffix}: {detail}")


class PermissionsConfigError(QueryLensError):
    """Invalid permissions configuration input"""

    pass


class LLMError(QueryLensError):
    """Model call or response stream failure"""

    pass
