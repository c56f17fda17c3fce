"""Tests for the per-service tool executors."""
import base64
import json

import httpx
import pytest
import respx

from switchboard.errors import ToolExecutionError
from switchboard.mcp.executors import (
    CALENDAR_API,
    GMAIL_API,
    LINEAR_API,
    NOTION_API,
    NOTION_VERSION,
    bearer_headers,
    build_raw_message,
    execute_tool,
)

HEADERS = bearer_headers("token-1")


def decode_raw(raw: str) -> str:
    return base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode()


class TestGoogleCalendar:
    @respx.mock
    async def test_create_event_drops_unset_fields(self):
        route = respx.post(f"{CALENDAR_API}/calendars/primary/events").mock(
            return_value=httpx.Response(200, json={"id": "evt-1"})
        )
        await execute_tool("google-calendar", "create_event", {
            "title": "Review",
            "start_time": "2026-02-01T10:00:00Z",
            "end_time": "2026-02-01T11:00:00Z",
            "attendees": ["ada@example.com"],
        }, HEADERS)

        body = json.loads(route.calls.last.request.content)
        assert body["start"] == {"dateTime": "2026-02-01T10:00:00Z"}
        assert body["attendees"] == [{"email": "ada@example.com"}]
        assert "location" not in body

    @respx.mock
    async def test_list_events_query(self):
        route = respx.get(f"{CALENDAR_API}/calendars/primary/events").mock(
            return_value=httpx.Response(200, json={"items": []})
        )
        await execute_tool("google-calendar", "list_events", {"start_date": "2026-02-01T00:00:00Z"}, HEADERS)

        params = route.calls.last.request.url.params
        assert params["maxResults"] == "10"
        assert params["singleEvents"] == "true"
        assert params["timeMin"] == "2026-02-01T00:00:00Z"
        assert "timeMax" not in params


class TestGmail:
    def test_raw_message(self):
        raw = build_raw_message({"to": "ada@example.com", "subject": "Hi", "body": "Hello", "cc": "bob@example.com"})

        assert "=" not in raw
        assert decode_raw(raw) == "To: ada@example.com\r\nSubject: Hi\r\nCc: bob@example.com\r\n\r\nHello"

    @respx.mock
    async def test_compose_creates_draft(self):
        route = respx.post(f"{GMAIL_API}/users/me/drafts").mock(
            return_value=httpx.Response(200, json={"id": "draft-1"})
        )
        result = await execute_tool(
            "gmail", "compose_email", {"to": "ada@example.com", "subject": "Hi", "body": "Hello"}, HEADERS
        )

        assert result == {"id": "draft-1"}
        raw = json.loads(route.calls.last.request.content)["message"]["raw"]
        assert "Subject: Hi" in decode_raw(raw)

    @respx.mock
    async def test_search(self):
        route = respx.get(f"{GMAIL_API}/users/me/messages").mock(
            return_value=httpx.Response(200, json={"messages": []})
        )
        await execute_tool("gmail", "search_emails", {"query": "is:unread", "max_results": 5}, HEADERS)

        params = route.calls.last.request.url.params
        assert (params["q"], params["maxResults"]) == ("is:unread", "5")


class TestNotion:
    @pytest.mark.parametrize("parent_id,expected", [
        (None, {"type": "workspace", "workspace": True}),
        ("page-123", {"page_id": "page-123"}),
    ])
    @respx.mock
    async def test_create_page_parent(self, parent_id, expected):
        route = respx.post(f"{NOTION_API}/pages").mock(return_value=httpx.Response(200, json={"id": "p1"}))
        params = {"title": "Notes", "content": "Body"}
        if parent_id:
            params["parent_id"] = parent_id

        await execute_tool("notion", "create_page", params, HEADERS)

        request = route.calls.last.request
        assert request.headers["Notion-Version"] == NOTION_VERSION
        assert json.loads(request.content)["parent"] == expected


class TestLinear:
    @respx.mock
    async def test_graphql_errors_raise(self):
        respx.post(LINEAR_API).mock(return_value=httpx.Response(
            200, json={"errors": [{"message": "Team not found"}]}
        ))
        with pytest.raises(ToolExecutionError, match="Team not found"):
            await execute_tool("linear", "create_linear_issue", {"title": "Bug", "team_id": "t"}, {})

    @respx.mock
    async def test_issue_input(self):
        route = respx.post(LINEAR_API).mock(return_value=httpx.Response(
            200, json={"data": {"issueCreate": {"success": True}}}
        ))
        await execute_tool("linear", "create_linear_issue", {"title": "Bug", "team_id": "t", "priority": 1}, {})

        variables = json.loads(route.calls.last.request.content)["variables"]
        assert variables["input"] == {"title": "Bug", "teamId": "t", "priority": 1}


class TestDispatch:
    async def test_unknown_service(self):
        with pytest.raises(ToolExecutionError, match="not implemented"):
            await execute_tool("myspace", "post", {}, {})

    async def test_unknown_tool(self):
        with pytest.raises(ToolExecutionError, match="Unknown Gmail tool"):
            await execute_tool("gmail", "delete_all", {}, HEADERS)

    @respx.mock
    async def test_network_failure(self):
        respx.get(f"{GMAIL_API}/users/me/messages").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ToolExecutionError, match="gmail request failed"):
            await execute_tool("gmail", "search_emails", {"query": "x"}, HEADERS)

    @respx.mock
    async def test_shared_client_is_used(self):
        respx.get(f"{GMAIL_API}/users/me/messages").mock(return_value=httpx.Response(200, json={}))
        async with httpx.AsyncClient(headers={"X-Test": "1"}) as client:
            await execute_tool("gmail", "search_emails", {"query": "x"}, HEADERS, client=client)
        assert respx.calls.last.request.headers["X-Test"] == "1"
