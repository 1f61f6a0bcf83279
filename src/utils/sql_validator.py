"""
SQL Validator

Classifies candidate queries as read-only-safe or rejects them, and
rewrites accepted queries before execution (semicolon stripping, row cap).

Keyword blocking is a statement-prefix check, not a parse: a blocked
keyword that starts a statement anywhere in the text rejects the query.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

# Keywords that may never start a statement
BLOCKED_KEYWORDS = [
    'INSERT', 'UPDATE', 'DELETE', 'DROP', 'CREATE', 'ALTER',
    'TRUNCATE', 'GRANT', 'REVOKE', 'EXECUTE', 'EXEC', 'CALL',
]

# Keywords that only produce a warning
WARNING_KEYWORDS = ['TRUNCATE', 'CASCADE', 'FORCE']

_BLOCKED_PATTERNS = {
    keyword: re.compile(r"(^|;\s*)" + keyword + r"\b")
    for keyword in BLOCKED_KEYWORDS
}

MULTIPLE_STATEMENTS_ERROR = "Multiple SQL statements are not allowed"
LEADING_CLAUSE_ERROR = "Query must start with SELECT or WITH (CTE)"
NO_LIMIT_WARNING = "Query has no LIMIT clause. Consider adding one for large tables."
SELECT_STAR_WARNING = "Using SELECT * may return more data than needed"
COMMENT_WARNING = "SQL contains comment syntax which may indicate injection attempt"


@dataclass(frozen=True)
class SQLValidationResult:
    """Outcome of validate_sql()"""

    valid: bool
    error: str | None = None
    warnings: list[str] | None = None


def validate_sql(sql: str) -> SQLValidationResult:
    """
    Validate that SQL is a single read-only statement.

    Rules run in order and the first failure wins:
    1. No blocked keyword at the start of any statement
    2. No semicolon before the final character
    3. Must start with SELECT or WITH

    Args:
        sql: SQL query to validate

    Returns:
        SQLValidationResult; warnings is None when there are none
    """
    normalized = sql.upper().strip()
    warnings: list[str] = []

    for keyword, pattern in _BLOCKED_PATTERNS.items():
        if pattern.search(normalized):
            return SQLValidationResult(
                valid=False,
                error=f"SQL contains blocked keyword: {keyword}. Only SELECT queries are allowed.",
            )

    if '--' in normalized:
        warnings.append(COMMENT_WARNING)

    if ';' in normalized and normalized.index(';') < len(normalized) - 1:
        return SQLValidationResult(valid=False, error=MULTIPLE_STATEMENTS_ERROR)

    if not (normalized.startswith('SELECT') or normalized.startswith('WITH')):
        return SQLValidationResult(valid=False, error=LEADING_CLAUSE_ERROR)

    for keyword in WARNING_KEYWORDS:
        if keyword in normalized:
            warnings.append(f"Query contains '{keyword}' which may indicate risky operation")

    if 'LIMIT' not in normalized and 'TOP' not in normalized:
        warnings.append(NO_LIMIT_WARNING)

    if 'SELECT *' in normalized:
        warnings.append(SELECT_STAR_WARNING)

    return SQLValidationResult(valid=True, warnings=warnings or None)


def sanitize_sql(sql: str) -> str:
    """
    Strip surrounding whitespace and every trailing semicolon.

    Idempotent: sanitize_sql(sanitize_sql(s)) == sanitize_sql(s).
    """
    sanitized = sql.strip()
    while sanitized.endswith(';'):
        sanitized = sanitized[:-1].strip()
    return sanitized


def add_default_limit(sql: str, limit: int = 1000) -> str:
    """
    Append a LIMIT clause if the query text has none.

    The check is textual: any occurrence of LIMIT (even inside an
    identifier or literal) suppresses the cap.
    """
    if 'LIMIT' not in sql.upper():
        return f"{sql} LIMIT {limit}"
    return sql
