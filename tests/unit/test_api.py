"""
Unit tests for the REST endpoints

Runs the FastAPI app with its providers overridden by in-memory fakes:
no database, no LLM provider.
"""

import json
from unittest.mock import patch

import pytest
from fakes import FakeCatalogRunner, ScriptedLanguageModel, text_turn, tool_turn
from fastapi.testclient import TestClient

from src.api.dependencies import get_language_model, get_permission_store, get_query_runner, get_session_store
from src.api.errors import status_for
from src.api.main import app
from src.api.routers.chat import format_sse_event
from src.core.config import settings
from src.core.exceptions import (
    AccessDeniedError,
    BackendError,
    ConfigurationError,
    InvalidIdentifierError,
    QueryLensError,
    QueryTimeoutError,
    SQLValidationError,
)
from src.core.permissions import PermissionStore
from src.services.analyst import StreamEvent
from src.services.sessions import SessionStore


@pytest.fixture
def store():
    return PermissionStore()


@pytest.fixture
def sessions():
    return SessionStore(max_sessions=10, ttl_seconds=600)


@pytest.fixture
def model():
    return ScriptedLanguageModel([])


@pytest.fixture
def client(store, sessions, runner, model):
    app.dependency_overrides[get_permission_store] = lambda: store
    app.dependency_overrides[get_session_store] = lambda: sessions
    app.dependency_overrides[get_query_runner] = lambda: runner
    app.dependency_overrides[get_language_model] = lambda: model
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestRootEndpoints:
    """Test / and /health"""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == settings.app_name

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestPermissionsAPI:
    """Test /api/v1/permissions"""

    def test_get_default(self, client):
        response = client.get("/api/v1/permissions")

        assert response.status_code == 200
        assert response.json()["tables"] == []
        assert response.json()["defaultAccess"] == settings.permissions_default_access

    def test_put_then_get(self, client):
        response = client.put("/api/v1/permissions", json={"table": "salaries", "accessLevel": "none"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["permission"]["table"] == "salaries"
        assert body["description"].startswith("No access")

        tables = client.get("/api/v1/permissions").json()["tables"]
        assert [(t["table"], t["accessLevel"]) for t in tables] == [("salaries", "none")]

    def test_put_invalid_identifier(self, client):
        response = client.put("/api/v1/permissions", json={"table": "bad name", "accessLevel": "none"})

        assert response.status_code == 400
        assert "Table name" in response.json()["detail"]

    def test_put_over_cap(self, client, store):
        client.put("/api/v1/permissions", json={"table": "a", "accessLevel": "none"})

        with patch.object(settings, "permissions_max_tables", 1):
            response = client.put("/api/v1/permissions", json={"table": "b", "accessLevel": "none"})

        assert response.status_code == 400
        assert len(store.get().tables) == 1

    def test_replace(self, client, store):
        payload = {
            "defaultAccess": "none",
            "tables": [{"table": "orders", "schema": "public", "accessLevel": "read"}],
        }

        response = client.post("/api/v1/permissions", json=payload)

        assert response.status_code == 200
        assert response.json()["config"]["defaultAccess"] == "none"
        assert store.get().default_access.value == "none"

    def test_replace_rejects_duplicates(self, client, store):
        payload = {
            "defaultAccess": "read",
            "tables": [
                {"table": "orders", "accessLevel": "none"},
                {"table": "Orders", "accessLevel": "read"},
            ],
        }

        response = client.post("/api/v1/permissions", json=payload)

        assert response.status_code == 400
        assert "Duplicate permission" in response.json()["detail"]
        assert store.get().tables == ()

    def test_replace_rejects_bad_identifier(self, client, store):
        payload = {"defaultAccess": "none", "tables": [{"table": "orders; drop", "accessLevel": "read"}]}

        response = client.post("/api/v1/permissions", json=payload)

        assert response.status_code == 400
        assert store.get().default_access.value == settings.permissions_default_access

    def test_replace_over_cap(self, client, store):
        payload = {
            "defaultAccess": "read",
            "tables": [{"table": "a", "accessLevel": "none"}, {"table": "b", "accessLevel": "none"}],
        }

        with patch.object(settings, "permissions_max_tables", 1):
            response = client.post("/api/v1/permissions", json=payload)

        assert response.status_code == 400
        assert store.get().tables == ()

    def test_replace_non_object_body(self, client):
        response = client.post("/api/v1/permissions", json=["not", "a", "config"])

        assert response.status_code == 422

    def test_delete(self, client, store):
        client.put("/api/v1/permissions", json={"table": "salaries", "accessLevel": "none"})

        response = client.delete("/api/v1/permissions", params={"table": "salaries"})

        assert response.status_code == 200
        assert store.get().tables == ()

    def test_delete_invalid_table(self, client):
        response = client.delete("/api/v1/permissions", params={"table": "x; drop"})

        assert response.status_code == 422

    def test_validate_allowed(self, client):
        response = client.post("/api/v1/permissions/validate", json={"sql": "SELECT * FROM orders"})

        assert response.json() == {
            "allowed": True,
            "tables": ["orders"],
            "blockedTables": [],
            "message": "Query is allowed",
        }

    def test_validate_blocked(self, client, runner):
        client.put("/api/v1/permissions", json={"table": "salaries", "accessLevel": "none"})

        response = client.post(
            "/api/v1/permissions/validate", json={"sql": "SELECT * FROM orders JOIN salaries ON true"}
        )

        body = response.json()
        assert body["allowed"] is False
        assert body["blockedTables"] == ["salaries"]
        assert body["message"] == "Access denied to table(s): salaries"
        assert runner.executed == []

    def test_sensitive_columns(self, client):
        response = client.get("/api/v1/permissions/sensitive-columns", params={"table": "customers"})

        assert response.status_code == 200
        body = response.json()
        assert body["accessLevel"] == "read"
        assert body["sensitiveColumns"] == [{"name": "password_hash", "type": "text"}]

    def test_sensitive_columns_restricted_table(self, client):
        client.put("/api/v1/permissions", json={"table": "salaries", "accessLevel": "none"})

        response = client.get("/api/v1/permissions/sensitive-columns", params={"table": "salaries"})

        assert response.status_code == 403


class TestSchemaAPI:
    """Test /api/v1/schema"""

    def test_list_tables(self, client):
        response = client.get("/api/v1/schema/tables")

        body = response.json()
        assert body["count"] == 3
        assert body["tables"][0] == {"name": "customers", "schema": "public", "columnCount": 4}

    def test_list_tables_hides_restricted(self, client):
        client.put("/api/v1/permissions", json={"table": "salaries", "accessLevel": "none"})

        names = [t["name"] for t in client.get("/api/v1/schema/tables").json()["tables"]]

        assert names == ["customers", "orders"]

    def test_list_tables_invalid_schema(self, client):
        response = client.get("/api/v1/schema/tables", params={"schema": "bad-schema"})

        assert response.status_code == 400

    def test_get_table(self, client):
        response = client.get("/api/v1/schema/tables/orders")

        body = response.json()
        assert response.status_code == 200
        assert body["columnCount"] == 4
        assert body["columns"][1]["references"] == {"table": "customers", "column": "id"}

    def test_get_restricted_table(self, client):
        client.put("/api/v1/permissions", json={"table": "salaries", "accessLevel": "none"})

        response = client.get("/api/v1/schema/tables/salaries")

        assert response.status_code == 403
        assert "ACCESS_DENIED" in response.json()["detail"]

    def test_backend_failure(self, client):
        app.dependency_overrides[get_query_runner] = lambda: FakeCatalogRunner(
            fail_with=BackendError("Query", "server closed the connection")
        )

        response = client.get("/api/v1/schema/tables/orders")

        assert response.status_code == 502


class TestChatAPI:
    """Test /api/v1/chat"""

    def test_chat_turn(self, client, model):
        model.turns = [
            tool_turn(("t1", "execute_sql", {"sql": "SELECT SUM(total) AS total FROM orders"})),
            text_turn("The total is 42."),
        ]

        response = client.post("/api/v1/chat/", json={"message": "total?", "conversationId": "c1"})

        body = response.json()
        assert response.status_code == 200
        assert body["content"] == "The total is 42."
        assert body["sql"] == "SELECT SUM(total) AS total FROM orders"
        assert body["data"] == [{"total": 42}]
        assert body["error"] is None

    def test_history_kept_per_conversation(self, client, model, sessions):
        model.turns = [text_turn("one"), text_turn("two")]

        client.post("/api/v1/chat/", json={"message": "first", "conversationId": "c1"})
        client.post("/api/v1/chat/", json={"message": "second", "conversationId": "c1"})

        assert len(model.calls[1]) == 3
        assert len(sessions) == 1

    def test_default_conversation_id(self, client, model, sessions):
        model.turns = [text_turn("hi")]

        client.post("/api/v1/chat/", json={"message": "hello"})

        assert sessions.get("default") is not None

    def test_request_permissions_apply(self, client, model, runner):
        model.turns = [
            tool_turn(("t1", "execute_sql", {"sql": "SELECT * FROM orders"})),
            text_turn("Not allowed."),
        ]
        permissions = {"defaultAccess": "read", "tables": [{"table": "orders", "accessLevel": "none"}]}

        response = client.post("/api/v1/chat/", json={"message": "orders?", "permissions": permissions})

        assert response.json()["permission_denied"]["tables"] == ["orders"]
        assert runner.user_queries == []

    def test_request_permissions_cannot_widen_server_config(self, client, model, runner):
        client.put("/api/v1/permissions", json={"table": "salaries", "accessLevel": "none"})
        model.turns = [
            tool_turn(("t1", "execute_sql", {"sql": "SELECT * FROM salaries"})),
            text_turn("Not allowed."),
        ]
        permissions = {
            "defaultAccess": "full",
            "tables": [{"table": "salaries", "accessLevel": "full"}],
        }

        response = client.post("/api/v1/chat/", json={"message": "salaries?", "permissions": permissions})

        assert response.json()["permission_denied"]["tables"] == ["salaries"]
        assert runner.user_queries == []

    def test_server_restriction_applies_to_existing_conversation(self, client, model, runner):
        model.turns = [
            text_turn("hello"),
            tool_turn(("t1", "execute_sql", {"sql": "SELECT * FROM salaries"})),
            text_turn("Not allowed."),
        ]
        permissions = {"defaultAccess": "read", "tables": []}
        client.post("/api/v1/chat/", json={"message": "hi", "conversationId": "c1", "permissions": permissions})

        client.put("/api/v1/permissions", json={"table": "salaries", "accessLevel": "none"})
        response = client.post(
            "/api/v1/chat/", json={"message": "salaries?", "conversationId": "c1", "permissions": permissions}
        )

        assert response.json()["permission_denied"]["tables"] == ["salaries"]
        assert runner.user_queries == []

    def test_model_error_reported(self, client, model):
        from src.core.exceptions import LLMError

        model.turns = [[LLMError("provider down")]]

        response = client.post("/api/v1/chat/", json={"message": "hi"})

        assert response.status_code == 200
        assert response.json()["error"] == "provider down"

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"message": ""},
            {"message": "   "},
            {"message": "x" * 10001},
            {"message": "hi", "conversationId": "has space"},
            {"message": "hi", "conversationId": "x" * 101},
        ],
    )
    def test_invalid_request(self, client, payload):
        response = client.post("/api/v1/chat/", json=payload)

        assert response.status_code == 422

    def test_language_model_unavailable(self, client):
        from fastapi import HTTPException

        def unavailable():
            raise HTTPException(status_code=503, detail="Anthropic API key not configured")

        app.dependency_overrides[get_language_model] = unavailable

        response = client.post("/api/v1/chat/", json={"message": "hi"})

        assert response.status_code == 503

    def test_clear_conversation(self, client, model, sessions):
        model.turns = [text_turn("one")]
        client.post("/api/v1/chat/", json={"message": "first", "conversationId": "c1"})

        response = client.delete("/api/v1/chat/c1")

        assert response.json() == {"success": True, "cleared": True}
        assert sessions.get("c1") is None

    def test_clear_unknown_conversation(self, client):
        response = client.delete("/api/v1/chat/nobody")

        assert response.status_code == 200
        assert response.json() == {"success": True, "cleared": False}

    def test_clear_invalid_id(self, client):
        response = client.delete("/api/v1/chat/bad.id")

        assert response.status_code == 422


class TestFormatSSEEvent:
    """Test SSE rendering of stream events"""

    def test_event_name_and_payload(self):
        event = StreamEvent(type="data", content="Query executed successfully", data={"rowCount": 1})

        rendered = format_sse_event(event)

        assert rendered["event"] == "data"
        assert json.loads(rendered["data"]) == {
            "type": "data",
            "content": "Query executed successfully",
            "data": {"rowCount": 1},
        }

    def test_omits_empty_data(self):
        rendered = format_sse_event(StreamEvent(type="done", content="Analysis complete"))

        assert json.loads(rendered["data"]) == {"type": "done", "content": "Analysis complete"}

    def test_non_json_values_stringified(self):
        from decimal import Decimal

        rendered = format_sse_event(StreamEvent(type="data", data={"total": Decimal("1.50")}))

        assert json.loads(rendered["data"])["data"] == {"total": "1.50"}


class TestErrorMapping:
    """Test status_for"""

    @pytest.mark.parametrize(
        "exc,code",
        [
            (AccessDeniedError(["salaries"]), 403),
            (InvalidIdentifierError("x y", "table"), 400),
            (SQLValidationError("no"), 400),
            (QueryTimeoutError(50), 504),
            (BackendError("Query", "down"), 502),
            (ConfigurationError("missing key"), 503),
            (QueryLensError("other"), 500),
        ],
    )
    def test_status_codes(self, exc, code):
        assert status_for(exc) == code
