"""
Table Reference Extraction

Best-effort static extraction of table names referenced by a SQL string.

This is a regex heuristic, not a parser. FROM lists are followed across
commas (FROM a x, b y). Known limitations:
- CTE names (WITH cte AS (...)) are reported as tables when selected FROM
- Quoted identifiers ("My Table") are not matched
- Tables only named in INTO/UPDATE clauses are not reported
- Table-valued functions and dynamic SQL are invisible
- A comma list is not followed past a derived table: in
  FROM (SELECT ...) s, other, "other" is not reported

Callers depend on the TableReferenceExtractor protocol so a real SQL
parser can replace the default implementation.
"""
from __future__ import annotations

import re
from typing import Protocol

_IDENT = r"[a-z_][a-z0-9_]*"
_TABLE = rf"{_IDENT}(?:\.{_IDENT})?"

# Words that may follow a table name but are never its alias
_CLAUSE_KEYWORDS = (
    "join|inner|left|right|full|cross|natural|outer|on|using|where|group|order|having|"
    "limit|offset|fetch|union|intersect|except|window|lateral|for|tablesample|into|returning"
)
_FROM_ITEM = rf"(?!(?:{_CLAUSE_KEYWORDS})\b){_TABLE}(?:\s+(?:as\s+)?(?!(?:{_CLAUSE_KEYWORDS})\b){_IDENT})?"

# FROM lists and JOIN targets share one pattern so matches come back in text order
TABLE_REFERENCE_PATTERN = re.compile(
    rf"\bfrom\s+({_FROM_ITEM}(?:\s*,\s*{_FROM_ITEM})*)|\bjoin\s+({_TABLE})",
    re.IGNORECASE,
)


class TableReferenceExtractor(Protocol):
    def extract(self, sql: str) -> list[str]:
        """Return lowercase table names in order of first appearance."""
        ...


class RegexTableExtractor:
    """FROM/JOIN pattern scanner."""

    def extract(self, sql: str) -> list[str]:
        normalized = re.sub(r"\s+", " ", sql)
        tables: list[str] = []

        for match in TABLE_REFERENCE_PATTERN.finditer(normalized):
            if match.group(1) is not None:
                # First word of each list item; the rest is the alias
                names = [item.split()[0] for item in match.group(1).split(",")]
            else:
                names = [match.group(2)]

            for name in names:
                # Strip schema qualification
                table_name = name.split(".")[-1].lower()
                if table_name not in tables:
                    tables.append(table_name)

        return tables


default_extractor = RegexTableExtractor()


def extract_tables(sql: str) -> list[str]:
    """Extract referenced table names using the default extractor."""
    return default_extractor.extract(sql)
