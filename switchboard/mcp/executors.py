"""
Per-service tool executors.

Each executor turns a validated generic tool call into the vendor's REST or
GraphQL request. Vendor failures raise ``ToolExecutionError`` carrying the
vendor's own message where the body has one.
"""
import base64
from typing import Awaitable, Callable, Optional

import httpx

from switchboard.config import settings
from switchboard.errors import ToolExecutionError
from switchboard.providers.base import extract_vendor_message

CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GMAIL_API = "https://gmail.googleapis.com/gmail/v1"
NOTION_API = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
LINEAR_API = "https://api.linear.app/graphql"

Executor = Callable[[httpx.AsyncClient, str, dict, dict], Awaitable[dict]]


def _raise_for_status(response: httpx.Response, action: str):
    if response.status_code < 400:
        return
    message = extract_vendor_message(response) or response.reason_phrase or f"HTTP {response.status_code}"
    raise ToolExecutionError(f"Failed to {action}: {message}")


def bearer_headers(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}


async def execute_google_calendar(client: httpx.AsyncClient, tool_id: str, params: dict, headers: dict) -> dict:
    if tool_id == "create_event":
        event = {
            "summary": params["title"],
            "description": params.get("description"),
            "location": params.get("location"),
            "start": {"dateTime": params["start_time"]},
            "end": {"dateTime": params["end_time"]},
        }
        if params.get("attendees"):
            event["attendees"] = [{"email": email} for email in params["attendees"]]
        response = await client.post(
            f"{CALENDAR_API}/calendars/primary/events",
            headers=headers,
            json={k: v for k, v in event.items() if v is not None},
        )
        _raise_for_status(response, "create event")
        return response.json()

    if tool_id == "list_events":
        query = {
            "maxResults": str(int(params.get("max_results") or 10)),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        if params.get("start_date"):
            query["timeMin"] = params["start_date"]
        if params.get("end_date"):
            query["timeMax"] = params["end_date"]
        response = await client.get(f"{CALENDAR_API}/calendars/primary/events", headers=headers, params=query)
        _raise_for_status(response, "list events")
        return response.json()

    raise ToolExecutionError(f"Unknown Google Calendar tool: {tool_id}")


def build_raw_message(params: dict) -> str:
    """RFC 2822 message, base64url-encoded as the Gmail API expects."""
    lines = [f"To: {params['to']}", f"Subject: {params['subject']}"]
    if params.get("cc"):
        lines.append(f"Cc: {params['cc']}")
    if params.get("bcc"):
        lines.append(f"Bcc: {params['bcc']}")
    lines.extend(["", params["body"]])
    raw = "\r\n".join(lines).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


async def execute_gmail(client: httpx.AsyncClient, tool_id: str, params: dict, headers: dict) -> dict:
    if tool_id == "compose_email":
        response = await client.post(
            f"{GMAIL_API}/users/me/drafts",
            headers=headers,
            json={"message": {"raw": build_raw_message(params)}},
        )
        _raise_for_status(response, "compose email")
        return response.json()

    if tool_id == "search_emails":
        response = await client.get(
            f"{GMAIL_API}/users/me/messages",
            headers=headers,
            params={"q": params["query"], "maxResults": str(int(params.get("max_results") or 10))},
        )
        _raise_for_status(response, "search emails")
        return response.json()

    raise ToolExecutionError(f"Unknown Gmail tool: {tool_id}")


async def execute_notion(client: httpx.AsyncClient, tool_id: str, params: dict, headers: dict) -> dict:
    if tool_id == "create_page":
        parent = (
            {"page_id": params["parent_id"]}
            if params.get("parent_id")
            else {"type": "workspace", "workspace": True}
        )
        page = {
            "parent": parent,
            "properties": {"title": {"title": [{"text": {"content": params["title"]}}]}},
            "children": [
                {
                    "object": "block",
                    "type": "paragraph",
                    "paragraph": {"rich_text": [{"type": "text", "text": {"content": params["content"]}}]},
                }
            ],
        }
        response = await client.post(
            f"{NOTION_API}/pages",
            headers={**headers, "Notion-Version": NOTION_VERSION},
            json=page,
        )
        _raise_for_status(response, "create Notion page")
        return response.json()

    raise ToolExecutionError(f"Unknown Notion tool: {tool_id}")


ISSUE_CREATE = """
mutation IssueCreate($input: IssueCreateInput!) {
  issueCreate(input: $input) {
    success
    issue { id title url }
  }
}
"""


async def execute_linear(client: httpx.AsyncClient, tool_id: str, params: dict, headers: dict) -> dict:
    if tool_id == "create_linear_issue":
        issue = {
            "title": params["title"],
            "teamId": params["team_id"],
            "description": params.get("description"),
            "priority": params.get("priority"),
        }
        response = await client.post(
            LINEAR_API,
            headers=headers,
            json={"query": ISSUE_CREATE, "variables": {"input": {k: v for k, v in issue.items() if v is not None}}},
        )
        _raise_for_status(response, "create Linear issue")
        result = response.json()
        if result.get("errors"):
            raise ToolExecutionError(f"Linear API error: {result['errors'][0].get('message', 'unknown error')}")
        return result.get("data") or {}

    raise ToolExecutionError(f"Unknown Linear tool: {tool_id}")


EXECUTORS: dict[str, Executor] = {
    "google-calendar": execute_google_calendar,
    "gmail": execute_gmail,
    "notion": execute_notion,
    "linear": execute_linear,
}


async def execute_tool(service_id: str, tool_id: str, params: dict, headers: dict,
                       client: Optional[httpx.AsyncClient] = None) -> dict:
    executor = EXECUTORS.get(service_id)
    if executor is None:
        raise ToolExecutionError(f"Tool execution not implemented for {service_id}")

    try:
        if client is not None:
            return await executor(client, tool_id, params, headers)
        async with httpx.AsyncClient(timeout=settings.MCP_TIMEOUT) as owned:
            return await executor(owned, tool_id, params, headers)
    except httpx.HTTPError as e:
        raise ToolExecutionError(f"{service_id} request failed: {e}") from e
