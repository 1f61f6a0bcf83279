"""
Table Permission Policy for QueryLens

Decides which tables and columns the analyst may touch, independent of and
before any LLM behavior.

- A PermissionsConfig holds a default access level plus per-table overrides.
- Configs are immutable: every change returns a new value, so a reader that
  holds a snapshot always sees a consistent policy.
- PermissionStore is the process-wide holder of the current config; updates
  swap the whole value under a lock.
"""
from __future__ import annotations

import hashlib
import json
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from src.core.config import settings
from src.core.exceptions import PermissionsConfigError
from src.core.logging import get_logger
from src.utils.sql_identifiers import is_valid_identifier
from src.utils.table_extractor import TableReferenceExtractor, default_extractor

logger = get_logger(__name__)

DEFAULT_SCHEMA = "public"

# Column-name fragments that usually hold sensitive data (advisory only)
SENSITIVE_COLUMN_PATTERNS = [
    "password",
    "secret",
    "token",
    "api_key",
    "apikey",
    "private_key",
    "credit_card",
    "ssn",
    "social_security",
    "bank_account",
    "routing_number",
    "pin",
    "cvv",
    "auth",
    "credential",
]


class AccessLevel(str, Enum):
    """
    Coarse per-table access level.

    Ordered none < read < full. Only NONE changes enforcement; FULL and READ
    both allow querying and both honor column restrictions.
    """

    FULL = "full"
    READ = "read"
    NONE = "none"

    @property
    def rank(self) -> int:
        return {"none": 0, "read": 1, "full": 2}[self.value]

    # str's own comparisons are alphabetical; all four are overridden to use rank
    def __lt__(self, other: AccessLevel) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: AccessLevel) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: AccessLevel) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: AccessLevel) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.rank >= other.rank


def _check_identifier(value: str, kind: str) -> str:
    if not is_valid_identifier(value):
        raise ValueError(
            f"{kind} must be a valid SQL identifier "
            "(letters, numbers, underscores, starting with letter or underscore)"
        )
    return value


class TablePermission(BaseModel):
    """Access override for one (schema, table) pair."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    table: str
    schema_name: str = Field(default=DEFAULT_SCHEMA, alias="schema")
    access_level: AccessLevel = Field(alias="accessLevel")
    blocked_columns: tuple[str, ...] = Field(default=(), alias="blockedColumns")
    allowed_columns: tuple[str, ...] = Field(default=(), alias="allowedColumns")
    description: str | None = Field(default=None, max_length=500)

    @field_validator("table")
    @classmethod
    def _validate_table(cls, v: str) -> str:
        return _check_identifier(v, "Table name")

    @field_validator("schema_name")
    @classmethod
    def _validate_schema(cls, v: str) -> str:
        return _check_identifier(v, "Schema name")

    @field_validator("blocked_columns", "allowed_columns")
    @classmethod
    def _validate_columns(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for column in v:
            _check_identifier(column, "Column name")
        return v

    @property
    def key(self) -> tuple[str, str]:
        """Case-insensitive lookup key (schema, table)."""
        return (self.schema_name.lower(), self.table.lower())


class PermissionsConfig(BaseModel):
    """Default access level plus per-table overrides."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    default_access: AccessLevel = Field(default=AccessLevel.READ, alias="defaultAccess")
    tables: tuple[TablePermission, ...] = ()
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC), alias="updatedAt")

    @model_validator(mode="after")
    def _check_tables(self) -> PermissionsConfig:
        if len(self.tables) > settings.permissions_max_tables:
            raise ValueError(
                f"At most {settings.permissions_max_tables} table permissions are allowed, "
                f"got {len(self.tables)}"
            )
        seen = set()
        for permission in self.tables:
            if permission.key in seen:
                raise ValueError(
                    f"Duplicate permission for {permission.schema_name}.{permission.table}"
                )
            seen.add(permission.key)
        return self

    def to_api(self) -> dict:
        """Serialize using the camelCase wire shape."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class AccessValidationResult:
    """Outcome of validate_sql_access()"""

    allowed: bool
    tables: list[str] = field(default_factory=list)
    blocked_tables: list[str] = field(default_factory=list)


def default_config() -> PermissionsConfig:
    """Safe starting config from settings (default access, no overrides)."""
    return PermissionsConfig(default_access=AccessLevel(settings.permissions_default_access))


def parse_config(data: dict) -> PermissionsConfig:
    """
    Build a config from raw input, wrapping validation failures.

    Raises:
        PermissionsConfigError: If the input shape or any identifier is invalid
    """
    try:
        return PermissionsConfig.model_validate(data)
    except ValidationError as e:
        raise PermissionsConfigError(f"Invalid permissions config: {e}") from e


def parse_permission(data: dict) -> TablePermission:
    """
    Build one table permission from raw input.

    Raises:
        PermissionsConfigError: If the input shape or any identifier is invalid
    """
    try:
        return TablePermission.model_validate(data)
    except ValidationError as e:
        raise PermissionsConfigError(f"Invalid table permission: {e}") from e


def resolve(config: PermissionsConfig, table: str, schema: str = DEFAULT_SCHEMA) -> TablePermission:
    """
    Find the permission that applies to a table.

    Returns the explicit entry (matched case-insensitively) or a synthesized
    entry carrying the config's default access level.
    """
    key = (schema.lower(), table.lower())
    for permission in config.tables:
        if permission.key == key:
            return permission

    # Catalog names are not necessarily safe identifiers; skip validation
    return TablePermission.model_construct(
        table=table,
        schema_name=schema,
        access_level=config.default_access,
        blocked_columns=(),
        allowed_columns=(),
        description=None,
    )


def can_access_table(config: PermissionsConfig, table: str, schema: str = DEFAULT_SCHEMA) -> bool:
    return resolve(config, table, schema).access_level != AccessLevel.NONE


def can_access_column(
    config: PermissionsConfig, table: str, column: str, schema: str = DEFAULT_SCHEMA
) -> bool:
    """
    Check if a specific column can be accessed.

    A column must pass table access, the blocked list, and (when non-empty)
    the allowed list. Column names are compared case-insensitively.
    """
    permission = resolve(config, table, schema)
    if permission.access_level == AccessLevel.NONE:
        return False

    column_key = column.lower()
    if column_key in {c.lower() for c in permission.blocked_columns}:
        return False

    if permission.allowed_columns:
        return column_key in {c.lower() for c in permission.allowed_columns}

    return True


def filter_accessible_tables(
    config: PermissionsConfig, tables: Iterable[tuple[str, str]]
) -> list[tuple[str, str]]:
    """Keep the (table, schema) pairs the config allows."""
    return [(table, schema) for table, schema in tables if can_access_table(config, table, schema)]


def filter_accessible_columns(
    config: PermissionsConfig, table: str, columns: Iterable[str], schema: str = DEFAULT_SCHEMA
) -> list[str]:
    return [column for column in columns if can_access_column(config, table, column, schema)]


def upsert(config: PermissionsConfig, permission: TablePermission) -> PermissionsConfig:
    """
    Replace the entry for the permission's table, or append it.

    Returns a new config; the argument is never modified.
    """
    tables = list(config.tables)
    for index, existing in enumerate(tables):
        if existing.key == permission.key:
            tables[index] = permission
            break
    else:
        if len(tables) >= settings.permissions_max_tables:
            raise PermissionsConfigError(
                f"At most {settings.permissions_max_tables} table permissions are allowed"
            )
        tables.append(permission)

    return config.model_copy(update={"tables": tuple(tables), "updated_at": datetime.now(UTC)})


def remove(config: PermissionsConfig, table: str, schema: str = DEFAULT_SCHEMA) -> PermissionsConfig:
    """Drop the entry for a table so it reverts to the default access level."""
    key = (schema.lower(), table.lower())
    tables = tuple(p for p in config.tables if p.key != key)
    return config.model_copy(update={"tables": tables, "updated_at": datetime.now(UTC)})


def _narrow_permission(base: TablePermission, requested: TablePermission) -> TablePermission:
    access_level = min(base.access_level, requested.access_level)
    blocked = tuple(dict.fromkeys(c.lower() for c in (*base.blocked_columns, *requested.blocked_columns)))

    allowed: tuple[str, ...] = ()
    if base.allowed_columns and requested.allowed_columns:
        requested_allowed = {c.lower() for c in requested.allowed_columns}
        allowed = tuple(c.lower() for c in base.allowed_columns if c.lower() in requested_allowed)
        if not allowed:
            # An empty allow-list means "all columns"; no shared column means no access
            access_level = AccessLevel.NONE
    else:
        allowed = tuple(c.lower() for c in base.allowed_columns or requested.allowed_columns)

    return TablePermission.model_construct(
        table=base.table,
        schema_name=base.schema_name,
        access_level=access_level,
        blocked_columns=blocked,
        allowed_columns=allowed,
        description=base.description,
    )


def narrow(base: PermissionsConfig, requested: PermissionsConfig) -> PermissionsConfig:
    """
    Combine two configs so that access is denied if either one denies it.

    Used for per-request configs: they can restrict the server config
    further but never re-expose anything it hides.
    """
    keys: dict[tuple[str, str], TablePermission] = {}
    for permission in (*base.tables, *requested.tables):
        keys.setdefault(permission.key, permission)

    tables = tuple(
        _narrow_permission(
            resolve(base, permission.table, permission.schema_name),
            resolve(requested, permission.table, permission.schema_name),
        )
        for permission in keys.values()
    )

    # Both inputs were validated; the union may exceed the per-config table cap
    return PermissionsConfig.model_construct(
        default_access=min(base.default_access, requested.default_access),
        tables=tables,
        updated_at=max(base.updated_at, requested.updated_at),
    )


def validate_sql_access(
    config: PermissionsConfig,
    sql: str,
    extractor: TableReferenceExtractor = default_extractor,
    schema: str = DEFAULT_SCHEMA,
) -> AccessValidationResult:
    """
    Validate that a SQL query only references permitted tables.

    The extractor drops schema qualification, so a table name is blocked if
    it is inaccessible in `schema` or explicitly set to NONE in any schema.
    """
    tables = extractor.extract(sql)
    restricted_elsewhere = {
        p.table.lower() for p in config.tables if p.access_level == AccessLevel.NONE
    }

    blocked = [
        table for table in tables
        if not can_access_table(config, table, schema) or table in restricted_elsewhere
    ]

    return AccessValidationResult(allowed=not blocked, tables=tables, blocked_tables=blocked)


def is_sensitive_column_name(name: str) -> bool:
    """Check if a column name looks sensitive (advisory, no enforcement)."""
    lower_name = name.lower()
    return any(pattern in lower_name for pattern in SENSITIVE_COLUMN_PATTERNS)


def describe_access_level(level: AccessLevel) -> str:
    """Get human-readable description of access level."""
    return {
        AccessLevel.FULL: "Full access - All columns visible",
        AccessLevel.READ: "Read access - Standard query access",
        AccessLevel.NONE: "No access - Table is hidden",
    }.get(level, "Unknown")


def fingerprint(config: PermissionsConfig) -> str:
    """
    Stable hash of everything that affects enforcement.

    updated_at and descriptions are excluded so cosmetic edits do not
    invalidate conversations.
    """
    entries = sorted(
        f"{p.schema_name.lower()}.{p.table.lower()}:{p.access_level.value}"
        f":{','.join(sorted(c.lower() for c in p.blocked_columns))}"
        f":{','.join(sorted(c.lower() for c in p.allowed_columns))}"
        for p in config.tables
    )
    payload = json.dumps({"defaultAccess": config.default_access.value, "tables": entries})
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class PermissionStore:
    """
    Current permissions config for the process.

    THREAD-SAFE: readers get an immutable snapshot; writers replace the whole
    value under a lock, never mutate it in place.
    """

    def __init__(self, config: PermissionsConfig | None = None):
        self._lock = threading.Lock()
        self._config = config or default_config()

    def get(self) -> PermissionsConfig:
        return self._config

    def replace(self, config: PermissionsConfig) -> PermissionsConfig:
        with self._lock:
            self._config = config
        logger.info(
            f"Permissions replaced: default={config.default_access.value}, tables={len(config.tables)}"
        )
        return config

    def upsert(self, permission: TablePermission) -> PermissionsConfig:
        with self._lock:
            self._config = upsert(self._config, permission)
            config = self._config
        logger.info(
            f"Permission set: {permission.schema_name}.{permission.table} -> {permission.access_level.value}"
        )
        return config

    def remove(self, table: str, schema: str = DEFAULT_SCHEMA) -> PermissionsConfig:
        with self._lock:
            self._config = remove(self._config, table, schema)
            config = self._config
        logger.info(f"Permission removed: {schema}.{table}")
        return config

    def load_file(self, path: str) -> PermissionsConfig:
        """
        Replace the config with the JSON document at `path`.

        Raises:
            PermissionsConfigError: If the file is missing or invalid
        """
        file_path = Path(path)
        if not file_path.exists():
            raise PermissionsConfigError(f"Permissions file not found: {path}")
        try:
            data = json.loads(file_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise PermissionsConfigError(f"Permissions file is not valid JSON: {e}") from e
        return self.replace(parse_config(data))
