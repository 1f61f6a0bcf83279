"""
SQL Identifier and Literal Sanitizer

Guards raw strings that get spliced into generated catalog SQL.
The backend query interface takes a single SQL string, so schema/table
names cannot be bound as parameters and must be validated instead.
"""

import re

from src.core.exceptions import InvalidIdentifierError

MAX_IDENTIFIER_LENGTH = 128

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_valid_identifier(value: str) -> bool:
    """
    Check whether a value is a safe SQL identifier.

    Args:
        value: Candidate schema, table, or column name

    Returns:
        True if 1-128 chars of letters, digits, underscores, not starting with a digit
    """
    if not isinstance(value, str) or not 0 < len(value) <= MAX_IDENTIFIER_LENGTH:
        return False
    return IDENTIFIER_PATTERN.fullmatch(value) is not None


def validate_identifier(value: str, kind: str) -> str:
    """
    Return the identifier unchanged, or raise if it is unsafe.

    Args:
        value: Candidate identifier
        kind: What the identifier is, used in the error (e.g. "table name")

    Raises:
        InvalidIdentifierError: If the value fails is_valid_identifier()
    """
    if not is_valid_identifier(value):
        raise InvalidIdentifierError(value, kind)
    return value


def escape_literal(value: str) -> str:
    """
    Escape a value for use inside a PostgreSQL E'...' string literal.

    Backslashes are doubled before quotes so the quote escaping is not
    processed twice. In a plain '...' literal with standard_conforming_strings
    on, doubled backslashes stay doubled. Not for identifiers.
    """
    if not isinstance(value, str):
        raise TypeError(f"Expected string value for SQL escape, got {type(value).__name__}")
    return value.replace("\\", "\\\\").replace("'", "''")
