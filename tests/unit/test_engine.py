"""
Unit tests for the Database Engine and Query Runner

Tests engine creation, the shared engine lifecycle, and SQL execution
against a throwaway SQLite database.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine, text

from src.core.exceptions import BackendError, QueryTimeoutError
from src.database import engine as engine_module
from src.database.engine import _create_engine, dispose_engine, get_engine
from src.database.runner import SQLAlchemyQueryRunner, run_with_timeout


@pytest.fixture
def sqlite_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE orders (id INTEGER PRIMARY KEY, total NUMERIC)"))
        conn.execute(text("INSERT INTO orders (id, total) VALUES (1, 10), (2, 32)"))
    yield engine
    engine.dispose()


class TestCreateEngine:
    """Test engine creation"""

    @patch("src.database.engine.create_engine")
    @patch("src.database.engine.settings")
    def test_pool_settings_applied(self, mock_settings, mock_create_engine):
        """Test engine creation with pool configuration"""
        mock_settings.database_url = "postgresql://localhost/test"
        mock_settings.database_pool_size = 5
        mock_settings.database_max_overflow = 10
        mock_settings.database_pool_timeout = 30
        mock_settings.database_pool_recycle = 3600

        _create_engine()

        args, kwargs = mock_create_engine.call_args
        assert args[0] == "postgresql://localhost/test"
        assert kwargs["pool_size"] == 5
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["echo"] is False

    @patch("src.database.engine.create_engine")
    def test_sqlite_skips_pool_options(self, mock_create_engine):
        """Test SQLite URLs get no queue pool arguments"""
        _create_engine("sqlite:///:memory:")

        assert mock_create_engine.call_args[1] == {"echo": False}


class TestSharedEngine:
    """Test get_engine / dispose_engine"""

    def test_get_engine_is_cached_and_disposed(self):
        fake_engine = MagicMock()

        with patch("src.database.engine._create_engine", return_value=fake_engine) as mock_create:
            try:
                assert get_engine() is fake_engine
                assert get_engine() is fake_engine
                mock_create.assert_called_once()
            finally:
                dispose_engine()

        fake_engine.dispose.assert_called_once()
        assert engine_module._engine is None

    def test_dispose_without_engine_is_noop(self):
        dispose_engine()
        assert engine_module._engine is None


class TestSQLAlchemyQueryRunner:
    """Test SQLAlchemyQueryRunner against SQLite"""

    def test_returns_rows_as_dicts(self, sqlite_engine):
        rows = SQLAlchemyQueryRunner(sqlite_engine).run("SELECT id, total FROM orders ORDER BY id")

        assert rows == [{"id": 1, "total": 10}, {"id": 2, "total": 32}]

    def test_column_order_preserved(self, sqlite_engine):
        rows = SQLAlchemyQueryRunner(sqlite_engine).run("SELECT total, id FROM orders WHERE id = 1")

        assert list(rows[0].keys()) == ["total", "id"]

    def test_colon_in_literal_is_not_a_bind_parameter(self, sqlite_engine):
        rows = SQLAlchemyQueryRunner(sqlite_engine).run("SELECT 'status :open' AS note")

        assert rows == [{"note": "status :open"}]

    def test_percent_in_literal_passed_through(self, sqlite_engine):
        rows = SQLAlchemyQueryRunner(sqlite_engine).run("SELECT COUNT(*) AS n FROM orders WHERE 'a%' LIKE 'a%'")

        assert rows == [{"n": 2}]

    def test_statement_is_rolled_back(self, sqlite_engine):
        runner = SQLAlchemyQueryRunner(sqlite_engine)

        assert runner.run("INSERT INTO orders (id, total) VALUES (3, 1)") == []

        assert runner.run("SELECT COUNT(*) AS n FROM orders") == [{"n": 2}]

    def test_database_error_wrapped(self, sqlite_engine):
        with pytest.raises(BackendError) as exc_info:
            SQLAlchemyQueryRunner(sqlite_engine).run("SELECT * FROM missing")

        assert exc_info.value.operation == "Query"
        assert "no such table" in exc_info.value.detail


class TestRunWithTimeout:
    """Test run_with_timeout"""

    @pytest.mark.asyncio
    async def test_returns_rows(self, sqlite_engine):
        rows = await run_with_timeout(SQLAlchemyQueryRunner(sqlite_engine), "SELECT COUNT(*) AS n FROM orders", 5000)

        assert rows == [{"n": 2}]

    @pytest.mark.asyncio
    async def test_timeout(self):
        from fakes import FakeCatalogRunner

        with pytest.raises(QueryTimeoutError):
            await run_with_timeout(FakeCatalogRunner(delay=0.5), "SELECT 1", 50)
