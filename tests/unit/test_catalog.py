"""
Unit tests for the access-controlled catalog reader
"""

import pytest
from fakes import FakeCatalogRunner

from src.core.exceptions import AccessDeniedError, BackendError, InvalidIdentifierError
from src.core.permissions import AccessLevel, PermissionsConfig, TablePermission
from src.services.catalog import CatalogReader


@pytest.fixture
def catalog(runner):
    return CatalogReader(runner, timeout_ms=1000)


class TestListTables:
    """Test CatalogReader.list_tables"""

    @pytest.mark.asyncio
    async def test_lists_all_tables_when_open(self, catalog, open_config):
        tables = await catalog.list_tables(open_config)

        assert [t.name for t in tables] == ["customers", "orders", "salaries"]
        assert all(t.schema_name == "public" for t in tables)

    @pytest.mark.asyncio
    async def test_hides_restricted_tables(self, catalog, restricted_config):
        tables = await catalog.list_tables(restricted_config)

        assert [t.name for t in tables] == ["customers", "orders"]

    @pytest.mark.asyncio
    async def test_column_count_excludes_blocked_columns(self, catalog, restricted_config):
        tables = {t.name: t for t in await catalog.list_tables(restricted_config)}

        assert tables["customers"].column_count == 3
        assert tables["orders"].column_count == 4

    @pytest.mark.asyncio
    async def test_list_results_have_no_columns(self, catalog, open_config):
        tables = await catalog.list_tables(open_config)

        assert all(t.columns == [] for t in tables)

    @pytest.mark.asyncio
    async def test_default_none_hides_everything_unlisted(self, catalog):
        config = PermissionsConfig(
            default_access=AccessLevel.NONE,
            tables=(TablePermission(table="orders", access_level=AccessLevel.READ),),
        )

        tables = await catalog.list_tables(config)

        assert [t.name for t in tables] == ["orders"]

    @pytest.mark.asyncio
    async def test_schema_sent_as_escape_string_literal(self, catalog, runner, open_config):
        await catalog.list_tables(open_config, schema="sales")

        assert all("table_schema = E'sales'" in sql for sql in runner.executed)

    @pytest.mark.asyncio
    async def test_invalid_schema_rejected_before_query(self, catalog, runner, open_config):
        with pytest.raises(InvalidIdentifierError):
            await catalog.list_tables(open_config, schema="public; DROP TABLE x")

        assert runner.executed == []

    @pytest.mark.asyncio
    async def test_backend_error_carries_context(self, open_config):
        failing = FakeCatalogRunner(fail_with=BackendError("Query", "connection refused"))
        catalog = CatalogReader(failing, timeout_ms=1000)

        with pytest.raises(BackendError) as exc_info:
            await catalog.list_tables(open_config)

        assert exc_info.value.operation == "List tables"
        assert exc_info.value.context == {"schema": "public"}
        assert "connection refused" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_permission_change_applies_on_next_call(self, catalog, open_config, restricted_config):
        before = await catalog.list_tables(open_config)
        after = await catalog.list_tables(restricted_config)

        assert len(before) == 3
        assert len(after) == 2


class TestGetTableSchema:
    """Test CatalogReader.get_table_schema"""

    @pytest.mark.asyncio
    async def test_describes_columns(self, catalog, open_config):
        table = await catalog.get_table_schema(open_config, "orders")

        assert [c.name for c in table.columns] == ["id", "customer_id", "total", "created_at"]
        assert table.column_count == 4

        by_name = {c.name: c for c in table.columns}
        assert by_name["id"].is_primary_key is True
        assert by_name["id"].nullable is False
        assert by_name["total"].default_value == "0"
        assert by_name["customer_id"].is_foreign_key is True
        assert by_name["customer_id"].references.table == "customers"
        assert by_name["customer_id"].references.column == "id"

    @pytest.mark.asyncio
    async def test_blocked_columns_removed(self, catalog, restricted_config):
        table = await catalog.get_table_schema(restricted_config, "customers")

        assert [c.name for c in table.columns] == ["id", "name", "email"]

    @pytest.mark.asyncio
    async def test_allowed_columns_whitelist(self, catalog):
        config = PermissionsConfig(
            tables=(TablePermission(table="customers", access_level="read", allowed_columns=("id", "name")),)
        )

        table = await catalog.get_table_schema(config, "customers")

        assert [c.name for c in table.columns] == ["id", "name"]

    @pytest.mark.asyncio
    async def test_reference_to_restricted_table_dropped(self, catalog):
        config = PermissionsConfig(tables=(TablePermission(table="customers", access_level="none"),))

        table = await catalog.get_table_schema(config, "orders")
        customer_id = next(c for c in table.columns if c.name == "customer_id")

        assert customer_id.is_foreign_key is True
        assert customer_id.references is None

    @pytest.mark.asyncio
    async def test_restricted_table_denied(self, catalog, runner, restricted_config):
        with pytest.raises(AccessDeniedError) as exc_info:
            await catalog.get_table_schema(restricted_config, "salaries")

        assert exc_info.value.tables == ["salaries"]
        assert "'salaries'" in str(exc_info.value)
        assert runner.executed == []

    @pytest.mark.asyncio
    async def test_invalid_table_name(self, catalog, open_config):
        with pytest.raises(InvalidIdentifierError) as exc_info:
            await catalog.get_table_schema(open_config, "orders' OR '1'='1")

        assert exc_info.value.kind == "table"

    @pytest.mark.asyncio
    async def test_unknown_table_has_no_columns(self, catalog, open_config):
        table = await catalog.get_table_schema(open_config, "missing")

        assert table.columns == []
        assert table.column_count == 0

    @pytest.mark.asyncio
    async def test_wire_shape(self, catalog, open_config):
        table = await catalog.get_table_schema(open_config, "orders")
        data = table.model_dump(mode="json", by_alias=True)

        assert data["schema"] == "public"
        assert data["columnCount"] == 4
        assert data["columns"][1]["isForeignKey"] is True
        assert data["columns"][1]["references"] == {"table": "customers", "column": "id"}

    @pytest.mark.asyncio
    async def test_backend_error_carries_table(self, open_config):
        failing = FakeCatalogRunner(fail_with=BackendError("Query", "relation does not exist"))
        catalog = CatalogReader(failing, timeout_ms=1000)

        with pytest.raises(BackendError) as exc_info:
            await catalog.get_table_schema(open_config, "orders")

        assert exc_info.value.operation == "Get table schema"
        assert exc_info.value.context == {"table": "orders", "schema": "public"}
