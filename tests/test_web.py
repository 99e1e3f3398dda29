"""Tests for the HTTP JSON-RPC transport."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from medicus_crm.config import Settings
from medicus_crm.web import MCP_PROTOCOL_VERSION, create_app


def _client(token=None):
    settings = Settings(supabase_url="https://test.supabase.co", mcp_token=token)
    app = create_app(settings)
    return TestClient(app)


def _rpc(method, params=None, msg_id=1):
    msg = {"jsonrpc": "2.0", "method": method, "id": msg_id}
    if params is not None:
        msg["params"] = params
    return msg


@pytest.fixture
def client(server_ctx):
    return _client()


class TestInfoRoutes:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_get_mcp_returns_server_info(self, client):
        body = client.get("/api/mcp").json()
        assert body["result"]["protocolVersion"] == MCP_PROTOCOL_VERSION
        assert body["result"]["serverInfo"]["name"] == "medicus-crm"

    def test_health_reports_storage(self, client, fake_db):
        with patch("medicus_crm.database.get_supabase_client", return_value=fake_db):
            assert client.get("/health").json() == {"status": "healthy", "database": "connected"}

    def test_health_degraded(self, client):
        broken = MagicMock()
        broken.table.side_effect = ConnectionError("refused")
        with patch("medicus_crm.database.get_supabase_client", return_value=broken):
            body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["database"].startswith("error: refused")


class TestTokenGuard:
    def test_missing_token_rejected(self, server_ctx):
        client = _client(token="s3cret")
        assert client.post("/api/mcp", json=_rpc("ping")).status_code == 401
        assert client.get("/api/mcp").status_code == 401

    def test_wrong_token_rejected(self, server_ctx):
        client = _client(token="s3cret")
        assert client.post("/api/mcp?token=nope", json=_rpc("ping")).status_code == 401

    def test_correct_token_accepted(self, server_ctx):
        client = _client(token="s3cret")
        response = client.post("/api/mcp?token=s3cret", json=_rpc("ping"))
        assert response.status_code == 200
        assert response.json() == {"jsonrpc": "2.0", "id": 1, "result": {}}

    def test_root_is_open(self, server_ctx):
        assert _client(token="s3cret").get("/").status_code == 200

    def test_each_app_uses_its_own_settings(self, server_ctx):
        """The guard reads the settings given to create_app, not the process-wide ones."""
        guarded, open_ = _client(token="first"), _client()
        assert guarded.post("/api/mcp", json=_rpc("ping")).status_code == 401
        assert guarded.post("/api/mcp?token=first", json=_rpc("ping")).status_code == 200
        assert open_.post("/api/mcp", json=_rpc("ping")).status_code == 200


class TestJsonRpc:
    def test_initialize(self, client):
        body = client.post("/api/mcp", json=_rpc("initialize", {})).json()
        assert body["result"]["capabilities"] == {"tools": {}}

    def test_tools_list(self, client):
        body = client.post("/api/mcp", json=_rpc("tools/list")).json()
        tools = body["result"]["tools"]
        assert len(tools) == 29
        assert all("inputSchema" in tool for tool in tools)

    def test_tools_call_success(self, client, fake_db):
        fake_db.seed("companies", name="Acme")
        body = client.post(
            "/api/mcp",
            json=_rpc("tools/call", {"name": "crm_search_companies", "arguments": {"query": "ac"}}),
        ).json()
        result = body["result"]
        assert result["isError"] is False
        assert result["content"][0] == {"type": "text", "text": 'Found 1 companies matching "ac".'}

    def test_tools_call_failure_sets_is_error(self, client):
        body = client.post(
            "/api/mcp",
            json=_rpc("tools/call", {"name": "crm_cancel_deal", "arguments": {"deal_id": "x"}}),
        ).json()
        result = body["result"]
        assert result["isError"] is True
        assert result["content"][0]["text"].startswith("Invalid input: ")

    def test_tools_call_without_name(self, client):
        body = client.post("/api/mcp", json=_rpc("tools/call", {"arguments": {}})).json()
        assert body["error"]["code"] == -32602

    def test_unknown_method(self, client):
        body = client.post("/api/mcp", json=_rpc("resources/list", msg_id="abc")).json()
        assert body == {
            "jsonrpc": "2.0",
            "id": "abc",
            "error": {"code": -32601, "message": "Method 'resources/list' not found"},
        }

    def test_non_object_params(self, client):
        body = client.post("/api/mcp", json=_rpc("ping", ["x"])).json()
        assert body["error"]["code"] == -32602

    def test_notification_is_accepted_without_body(self, client):
        response = client.post(
            "/api/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"}
        )
        assert response.status_code == 202
        assert response.content == b""

    def test_invalid_json(self, client):
        response = client.post(
            "/api/mcp", content=b"{not json", headers={"content-type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON in request body"}

    def test_missing_method(self, client):
        response = client.post("/api/mcp", json={"jsonrpc": "2.0", "id": 1})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == -32600

    def test_internal_error(self, client):
        with patch.dict("medicus_crm.web.METHODS", {"ping": MagicMock(side_effect=KeyError("x"))}):
            response = client.post("/api/mcp", json=_rpc("ping"))
        assert response.status_code == 500
        assert response.json()["error"] == {"code": -32603, "message": "Internal error"}
