"""
Utilities Package

SQL text helpers: identifier checks, read-only validation, table extraction,
and parsing of structured blocks out of model responses.
"""

from .response_blocks import parse_response
from .sql_identifiers import escape_literal, is_valid_identifier, validate_identifier
from .sql_validator import add_default_limit, sanitize_sql, validate_sql
from .table_extractor import extract_tables

__all__ = [
    "parse_response",
    "escape_literal",
    "is_valid_identifier",
    "validate_identifier",
    "add_default_limit",
    "sanitize_sql",
    "validate_sql",
    "extract_tables",
]
