"""Tests for the OAuth2 connect flow: authorization URL, state handling and code exchange."""
import base64
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx
from sqlalchemy import select, update

from switchboard.auth import create_oauth_state
from switchboard.config import settings
from switchboard.mcp.catalog import GOOGLE_TOKEN_URL
from switchboard.models import MCPConnection, OAuthState, now_ms
from switchboard.services.mcp_service import MCPService, connection_cache, connection_id

NOTION_TOKEN_URL = "https://api.notion.com/v1/oauth/token"


def query_of(url: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


async def start(db, service_id="google-calendar", user_id="user-1") -> str:
    result = await MCPService(db).authenticate_service(service_id, user_id)
    assert result.success and result.requires_redirect
    return query_of(result.auth_url)["state"]


class TestAuthorizationUrl:
    """Starting an OAuth connection."""

    async def test_google_url_and_stored_state(self, db):
        result = await MCPService(db).authenticate_service("google-calendar", "user-1")

        assert result.success is True
        assert result.access_token is None
        assert result.auth_url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        query = query_of(result.auth_url)
        assert query["client_id"] == "google-client-id"
        assert query["redirect_uri"] == f"{settings.APP_URL}/api/mcp/callback"
        assert query["response_type"] == "code"
        assert query["access_type"] == "offline"
        assert "https://www.googleapis.com/auth/calendar" in query["scope"].split(" ")

        states = (await db.execute(select(OAuthState))).scalars().all()
        assert len(states) == 1
        assert states[0].id != query["state"]
        assert (states[0].user_id, states[0].service_id) == ("user-1", "google-calendar")

    async def test_notion_url_has_owner_and_no_scope(self, db):
        result = await MCPService(db).authenticate_service("notion", "user-1")
        query = query_of(result.auth_url)

        assert query["owner"] == "user"
        assert "scope" not in query

    async def test_unconfigured_client(self, db, monkeypatch):
        monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", "")
        result = await MCPService(db).authenticate_service("gmail", "user-1")

        assert result.success is False
        assert "not configured" in result.error

    async def test_unknown_service(self, db):
        result = await MCPService(db).authenticate_service("myspace", "user-1")
        assert result.success is False
        assert "not found" in result.error


class TestCallback:
    """Completing an OAuth connection."""

    @respx.mock
    async def test_code_exchange_stores_encrypted_connection(self, db):
        token_route = respx.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(200, json={
            "access_token": "ya29.access", "refresh_token": "1//refresh", "expires_in": 3600,
        }))
        state = await start(db)
        before = now_ms()

        result = await MCPService(db).handle_oauth_callback("auth-code", state)

        assert result.success is True
        assert result.service_id == "google-calendar"
        assert before + 3600 * 1000 <= result.expires_at <= now_ms() + 3600 * 1000

        form = parse_qs(token_route.calls.last.request.content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["auth-code"]
        assert form["client_secret"] == ["google-client-secret"]

        connection = await db.get(MCPConnection, connection_id("google-calendar", "user-1"))
        assert connection.is_connected is True
        assert "ya29" not in connection.encrypted_access_token
        assert connection.encrypted_refresh_token is not None

    @respx.mock
    async def test_state_is_single_use(self, db):
        """A replayed callback is rejected and never reaches the token endpoint."""
        token_route = respx.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(200, json={
            "access_token": "ya29.access", "expires_in": 3600,
        }))
        state = await start(db)
        service = MCPService(db)

        first = await service.handle_oauth_callback("auth-code", state)
        second = await service.handle_oauth_callback("auth-code", state)

        assert first.success is True
        assert second.success is False
        assert second.error == "Invalid state"
        assert token_route.call_count == 1

    async def test_forged_state(self, db):
        result = await MCPService(db).handle_oauth_callback("auth-code", "not-a-state")
        assert result.success is False
        assert result.error == "Invalid or expired state"

    async def test_signed_state_that_was_never_issued(self, db):
        state = create_oauth_state("user-1", "gmail")
        result = await MCPService(db).handle_oauth_callback("auth-code", state)
        assert result.success is False
        assert result.error == "Invalid state"

    async def test_expired_state_is_consumed(self, db):
        state = await start(db)
        await db.execute(update(OAuthState).values(expires_at=now_ms() - 1))
        await db.commit()

        result = await MCPService(db).handle_oauth_callback("auth-code", state)

        assert result.success is False
        assert "expired" in result.error
        assert (await db.execute(select(OAuthState))).scalars().all() == []

    @respx.mock
    async def test_token_endpoint_error(self, db):
        respx.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Bad Request"}
        ))
        state = await start(db)

        result = await MCPService(db).handle_oauth_callback("bad-code", state)

        assert result.success is False
        assert "Token exchange failed" in result.error
        assert await MCPService(db).is_service_connected("google-calendar", "user-1") is False

    @respx.mock
    async def test_non_json_token_response(self, db):
        """An HTML page from a proxy in front of the token endpoint is a failed exchange."""
        respx.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(
            200, text="<html>oops</html>", headers={"Content-Type": "text/html"}
        ))
        state = await start(db)

        result = await MCPService(db).handle_oauth_callback("auth-code", state)

        assert result.success is False
        assert "unreadable token response" in result.error
        assert await MCPService(db).is_service_connected("google-calendar", "user-1") is False

    @respx.mock
    async def test_token_response_that_is_not_an_object(self, db):
        respx.post(GOOGLE_TOKEN_URL).mock(return_value=httpx.Response(200, json=["ya29.access"]))
        state = await start(db)

        result = await MCPService(db).handle_oauth_callback("auth-code", state)

        assert result.success is False
        assert "no access token returned" in result.error

    @respx.mock
    async def test_notion_uses_basic_auth_and_no_expiry(self, db):
        token_route = respx.post(NOTION_TOKEN_URL).mock(return_value=httpx.Response(200, json={
            "access_token": "secret_notion", "workspace_id": "ws-1",
        }))
        state = await start(db, service_id="notion")

        result = await MCPService(db).handle_oauth_callback("auth-code", state)

        assert result.success is True
        assert result.expires_at is None
        request = token_route.calls.last.request
        expected = base64.b64encode(b"notion-client-id:notion-client-secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert json.loads(request.content)["grant_type"] == "authorization_code"
        assert connection_cache.get(connection_id("notion", "user-1")).expires_at is None
