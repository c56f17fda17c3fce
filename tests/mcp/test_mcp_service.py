"""Tests for MCPService connections and tool calls."""
import json
from urllib.parse import parse_qs

import httpx
import pytest
import respx

from switchboard.config import settings
from switchboard.errors import EncryptionUnavailable, ServiceNotConnected, ToolExecutionError
from switchboard.mcp.catalog import GOOGLE_TOKEN_URL, SERVICE_ACCOUNT, AuthConfig, MCP_SERVICES, MCPServiceConfig
from switchboard.mcp.executors import CALENDAR_API, LINEAR_API
from switchboard.models import MCPConnection, now_ms
from switchboard.services.mcp_service import Credentials, MCPService, connection_cache, connection_id

EVENTS_URL = f"{CALENDAR_API}/calendars/primary/events"
EVENT = {"title": "Standup", "start_time": "2026-01-05T09:00:00Z", "end_time": "2026-01-05T09:15:00Z"}


async def connect(db, service_id="google-calendar", user_id="user-1", **credentials) -> MCPService:
    service = MCPService(db)
    credentials.setdefault("access_token", "ya29.current")
    await service._store_connection(service_id, user_id, Credentials(**credentials))
    return service


class TestApiKeyConnect:
    """Linear connects with a personal API key."""

    @respx.mock
    async def test_valid_key_is_stored(self, db):
        probe = respx.post(LINEAR_API).mock(return_value=httpx.Response(
            200, json={"data": {"viewer": {"id": "u1", "name": "Ada"}}}
        ))
        service = MCPService(db)

        result = await service.authenticate_service("linear", "user-1", api_key="lin_api_123")

        assert result.success is True
        assert result.requires_redirect is False
        assert probe.calls.last.request.headers["Authorization"] == "lin_api_123"
        assert await service.is_service_connected("linear", "user-1") is True

    @respx.mock
    async def test_graphql_errors_mean_invalid_key(self, db):
        respx.post(LINEAR_API).mock(return_value=httpx.Response(
            200, json={"errors": [{"message": "Authentication required"}]}
        ))
        service = MCPService(db)

        result = await service.authenticate_service("linear", "user-1", api_key="lin_api_bad")

        assert result.success is False
        assert result.error == "Invalid Linear API key"
        assert await service.is_service_connected("linear", "user-1") is False

    @respx.mock
    async def test_non_json_probe_response_means_invalid_key(self, db):
        respx.post(LINEAR_API).mock(return_value=httpx.Response(200, text="ok"))
        service = MCPService(db)

        result = await service.authenticate_service("linear", "user-1", api_key="lin_api_123")

        assert result.success is False
        assert result.error == "Invalid Linear API key"
        assert await service.is_service_connected("linear", "user-1") is False

    async def test_key_required(self, db):
        result = await MCPService(db).authenticate_service("linear", "user-1")
        assert result.success is False
        assert result.error == "API key required"

    @respx.mock
    async def test_encryption_unavailable_refuses_to_store(self, db, monkeypatch):
        respx.post(LINEAR_API).mock(return_value=httpx.Response(200, json={"data": {"viewer": {"id": "u1"}}}))
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", "")

        with pytest.raises(EncryptionUnavailable):
            await MCPService(db).authenticate_service("linear", "user-1", api_key="lin_api_123")
        assert await db.get(MCPConnection, connection_id("linear", "user-1")) is None


class TestServiceAccountConnect:
    async def test_operator_token_is_used(self, db, monkeypatch):
        config = MCPServiceConfig(
            id="internal-wiki", name="Internal Wiki", description="Company wiki",
            auth_type=SERVICE_ACCOUNT, auth_config=AuthConfig(),
        )
        monkeypatch.setitem(MCP_SERVICES, "internal-wiki", config)
        monkeypatch.setenv("MCP_SERVICE_ACCOUNT_INTERNAL_WIKI", "svc-token")
        service = MCPService(db)

        result = await service.authenticate_service("internal-wiki", "user-1")

        assert result.success is True
        assert result.expires_at is None
        assert await service.is_service_connected("internal-wiki", "user-1") is True

    async def test_missing_operator_token(self, db, monkeypatch):
        config = MCPServiceConfig(
            id="internal-wiki", name="Internal Wiki", description="Company wiki",
            auth_type=SERVICE_ACCOUNT, auth_config=AuthConfig(),
        )
        monkeypatch.setitem(MCP_SERVICES, "internal-wiki", config)
        monkeypatch.delenv("MCP_SERVICE_ACCOUNT_INTERNAL_WIKI", raising=False)

        result = await MCPService(db).authenticate_service("internal-wiki", "user-1")
        assert result.success is False


class TestExecuteToolCall:
    """Dispatching validated tool calls with the user's credentials."""

    @respx.mock
    async def test_calendar_event_with_bearer_token(self, db):
        route = respx.post(EVENTS_URL).mock(return_value=httpx.Response(200, json={"id": "evt-1"}))
        service = await connect(db)
        before = now_ms()

        result = await service.execute_tool_call("google-calendar", "create_event", EVENT, "user-1")

        assert result == {"id": "evt-1"}
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer ya29.current"
        assert json.loads(request.content)["summary"] == "Standup"
        connection = await db.get(MCPConnection, connection_id("google-calendar", "user-1"))
        await db.refresh(connection)
        assert connection.last_used >= before

    @respx.mock
    async def test_credentials_reloaded_from_database(self, db):
        """An empty cache falls back to the encrypted row."""
        route = respx.post(EVENTS_URL).mock(return_value=httpx.Response(200, json={"id": "evt-1"}))
        await connect(db, access_token="ya29.stored")
        connection_cache.clear()

        await MCPService(db).execute_tool_call("google-calendar", "create_event", EVENT, "user-1")

        assert route.calls.last.request.headers["Authorization"] == "Bearer ya29.stored"
        assert connection_cache.get(connection_id("google-calendar", "user-1")) is not None

    async def test_not_connected(self, db):
        with pytest.raises(ServiceNotConnected):
            await MCPService(db).execute_tool_call("google-calendar", "create_event", EVENT, "user-1")

    async def test_unknown_service_and_tool(self, db):
        service = MCPService(db)
        with pytest.raises(ToolExecutionError, match="not found"):
            await service.execute_tool_call("myspace", "post", {}, "user-1")
        with pytest.raises(ToolExecutionError, match="not found"):
            await service.execute_tool_call("gmail", "delete_everything", {}, "user-1")

    async def test_expired_without_refresh_token_disconnects(self, db):
        service = await connect(db, expires_at=now_ms() - 1000)

        with pytest.raises(ServiceNotConnected, match="expired"):
            await service.execute_tool_call("google-calendar", "create_event", EVENT, "user-1")

        assert await service.is_service_connected("google-calendar", "user-1") is False
        assert connection_cache.get(connection_id("google-calendar", "user-1")) is None

    @respx.mock
    async def test_expired_token_is_refreshed(self, db):
        token_route = respx.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(200, json={
            "access_token": "ya29.fresh", "expires_in": 3600,
        }))
        route = respx.post(EVENTS_URL).mock(return_value=httpx.Response(200, json={"id": "evt-2"}))
        service = await connect(db, refresh_token="1//refresh", expires_at=now_ms() - 1000)

        await service.execute_tool_call("google-calendar", "create_event", EVENT, "user-1")

        form = parse_qs(token_route.calls.last.request.content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["1//refresh"]
        assert route.calls.last.request.headers["Authorization"] == "Bearer ya29.fresh"
        cached = connection_cache.get(connection_id("google-calendar", "user-1"))
        assert cached.refresh_token == "1//refresh"
        assert not cached.is_expired()

    async def test_failed_refresh_disconnects(self, db, caplog):
        service = await connect(db, refresh_token="1//revoked", expires_at=now_ms() - 1000)

        with respx.mock(assert_all_called=False) as mock:
            mock.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(400, json={"error": "invalid_grant"}))
            events = mock.post(EVENTS_URL).mock(return_value=httpx.Response(200, json={"id": "evt-3"}))
            with pytest.raises(ServiceNotConnected, match="reconnect"):
                await service.execute_tool_call("google-calendar", "create_event", EVENT, "user-1")

        assert not events.called
        assert await service.is_service_connected("google-calendar", "user-1") is False
        assert "Token refresh failed" in caplog.text

    @respx.mock
    async def test_vendor_error_surfaces(self, db):
        respx.post(EVENTS_URL).mock(return_value=httpx.Response(
            403, json={"error": {"message": "Insufficient Permission"}}
        ))
        service = await connect(db)

        with pytest.raises(ToolExecutionError, match="Insufficient Permission"):
            await service.execute_tool_call("google-calendar", "create_event", EVENT, "user-1")

    @respx.mock
    async def test_linear_key_sent_bare(self, db):
        route = respx.post(LINEAR_API).mock(return_value=httpx.Response(200, json={
            "data": {"issueCreate": {"success": True, "issue": {"id": "i1", "title": "Bug", "url": "u"}}},
        }))
        service = await connect(db, service_id="linear", access_token="lin_api_123")

        result = await service.execute_tool_call(
            "linear", "create_linear_issue", {"title": "Bug", "team_id": "team-1", "priority": 2}, "user-1"
        )

        assert result["issueCreate"]["success"] is True
        assert route.calls.last.request.headers["Authorization"] == "lin_api_123"


class TestConnections:
    async def test_list_connections_without_secrets(self, db):
        await connect(db, service_id="gmail")
        await connect(db, service_id="notion")
        await connect(db, service_id="gmail", user_id="user-2")

        connections = await MCPService(db).get_user_connections("user-1")

        assert [c["service_id"] for c in connections] == ["gmail", "notion"]
        assert all("access_token" not in json.dumps(c) for c in connections)

    async def test_disconnect(self, db):
        service = await connect(db, service_id="gmail")

        assert await service.disconnect_service("gmail", "user-1") is True
        assert await service.disconnect_service("gmail", "user-1") is False
        assert connection_cache.get(connection_id("gmail", "user-1")) is None
        with pytest.raises(ServiceNotConnected):
            await service.execute_tool_call("gmail", "search_emails", {"query": "from:ada"}, "user-1")
