"""
Catalog of tool integrations.

Each service declares how a user authenticates to it and which tools it
offers. Tool parameters are typed so calls can be validated before any
network traffic.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from switchboard.errors import ToolParameterError

OAUTH2 = "oauth2"
API_KEY = "api_key"
SERVICE_ACCOUNT = "service_account"

# How the OAuth client authenticates at the token endpoint
CLIENT_SECRET_POST = "client_secret_post"
CLIENT_SECRET_BASIC = "client_secret_basic"


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: str  # string | number | boolean | array
    required: bool = False
    description: str = ""


@dataclass(frozen=True)
class MCPTool:
    id: str
    name: str
    description: str
    parameters: tuple[ToolParameter, ...]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parameters": [
                {"name": p.name, "type": p.type, "required": p.required, "description": p.description}
                for p in self.parameters
            ],
        }


@dataclass(frozen=True)
class AuthConfig:
    # Names of Settings attributes holding the OAuth client credentials
    client_id_ref: Optional[str] = None
    client_secret_ref: Optional[str] = None
    scopes: tuple[str, ...] = ()
    auth_url: Optional[str] = None
    token_url: Optional[str] = None
    token_auth_method: str = CLIENT_SECRET_POST
    extra_auth_params: tuple[tuple[str, str], ...] = ()
    api_key_header: str = "Authorization"
    # None sends the key bare
    api_key_prefix: Optional[str] = None
    # Lightweight call proving an API key works; None means the key is assumed valid
    probe_url: Optional[str] = None
    probe_body: Optional[dict] = None


@dataclass(frozen=True)
class MCPServiceConfig:
    id: str
    name: str
    description: str
    auth_type: str
    auth_config: AuthConfig
    capabilities: tuple[str, ...] = ()
    tools: tuple[MCPTool, ...] = field(default_factory=tuple)

    def get_tool(self, tool_id: str) -> Optional[MCPTool]:
        for tool in self.tools:
            if tool.id == tool_id:
                return tool
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "auth_type": self.auth_type,
            "scopes": list(self.auth_config.scopes),
            "capabilities": list(self.capabilities),
            "tools": [t.to_dict() for t in self.tools],
        }


GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_OFFLINE = (("access_type", "offline"), ("prompt", "consent"))


MCP_SERVICES: dict[str, MCPServiceConfig] = {
    "google-calendar": MCPServiceConfig(
        id="google-calendar",
        name="Google Calendar",
        description="Access and manage your Google Calendar events",
        auth_type=OAUTH2,
        auth_config=AuthConfig(
            client_id_ref="GOOGLE_CLIENT_ID",
            client_secret_ref="GOOGLE_CLIENT_SECRET",
            scopes=(
                "https://www.googleapis.com/auth/calendar",
                "https://www.googleapis.com/auth/calendar.events",
            ),
            auth_url=GOOGLE_AUTH_URL,
            token_url=GOOGLE_TOKEN_URL,
            extra_auth_params=GOOGLE_OFFLINE,
        ),
        capabilities=("read_events", "create_events", "list_calendars"),
        tools=(
            MCPTool(
                "create_event", "Create Calendar Event", "Create a new event in Google Calendar",
                (
                    ToolParameter("title", "string", True, "Event title"),
                    ToolParameter("start_time", "string", True, "Start time (ISO format)"),
                    ToolParameter("end_time", "string", True, "End time (ISO format)"),
                    ToolParameter("description", "string", False, "Event description"),
                    ToolParameter("location", "string", False, "Event location"),
                    ToolParameter("attendees", "array", False, "List of attendee emails"),
                ),
            ),
            MCPTool(
                "list_events", "List Calendar Events", "Get events from Google Calendar",
                (
                    ToolParameter("start_date", "string", False, "Start date filter (ISO format)"),
                    ToolParameter("end_date", "string", False, "End date filter (ISO format)"),
                    ToolParameter("max_results", "number", False, "Maximum number of events to return"),
                ),
            ),
        ),
    ),
    "gmail": MCPServiceConfig(
        id="gmail",
        name="Gmail",
        description="Read, compose, and search your email",
        auth_type=OAUTH2,
        auth_config=AuthConfig(
            client_id_ref="GOOGLE_CLIENT_ID",
            client_secret_ref="GOOGLE_CLIENT_SECRET",
            scopes=(
                "https://www.googleapis.com/auth/gmail.readonly",
                "https://www.googleapis.com/auth/gmail.compose",
                "https://www.googleapis.com/auth/gmail.modify",
            ),
            auth_url=GOOGLE_AUTH_URL,
            token_url=GOOGLE_TOKEN_URL,
            extra_auth_params=GOOGLE_OFFLINE,
        ),
        capabilities=("read_emails", "compose_emails", "search_emails"),
        tools=(
            MCPTool(
                "compose_email", "Compose Email", "Create a draft email",
                (
                    ToolParameter("to", "string", True, "Recipient email address"),
                    ToolParameter("subject", "string", True, "Email subject"),
                    ToolParameter("body", "string", True, "Email body content"),
                    ToolParameter("cc", "string", False, "CC recipients"),
                    ToolParameter("bcc", "string", False, "BCC recipients"),
                ),
            ),
            MCPTool(
                "search_emails", "Search Emails", "Search emails with a Gmail query",
                (
                    ToolParameter("query", "string", True, "Search query"),
                    ToolParameter("max_results", "number", False, "Maximum number of results"),
                ),
            ),
        ),
    ),
    "notion": MCPServiceConfig(
        id="notion",
        name="Notion",
        description="Create and manage Notion pages",
        auth_type=OAUTH2,
        auth_config=AuthConfig(
            client_id_ref="NOTION_CLIENT_ID",
            client_secret_ref="NOTION_CLIENT_SECRET",
            scopes=(),
            auth_url="https://api.notion.com/v1/oauth/authorize",
            token_url="https://api.notion.com/v1/oauth/token",
            token_auth_method=CLIENT_SECRET_BASIC,
            extra_auth_params=(("owner", "user"),),
        ),
        capabilities=("create_pages", "update_pages"),
        tools=(
            MCPTool(
                "create_page", "Create Notion Page", "Create a new page in Notion",
                (
                    ToolParameter("title", "string", True, "Page title"),
                    ToolParameter("content", "string", True, "Page content"),
                    ToolParameter("parent_id", "string", False, "Parent page ID"),
                ),
            ),
        ),
    ),
    "linear": MCPServiceConfig(
        id="linear",
        name="Linear",
        description="Create and track Linear issues",
        auth_type=API_KEY,
        auth_config=AuthConfig(
            api_key_header="Authorization",
            probe_url="https://api.linear.app/graphql",
            probe_body={"query": "{ viewer { id name } }"},
        ),
        capabilities=("create_issues",),
        tools=(
            MCPTool(
                "create_linear_issue", "Create Linear Issue", "Create a new issue in Linear",
                (
                    ToolParameter("title", "string", True, "Issue title"),
                    ToolParameter("description", "string", False, "Issue description"),
                    ToolParameter("team_id", "string", True, "Team ID"),
                    ToolParameter("priority", "number", False, "Issue priority (1-4)"),
                ),
            ),
        ),
    ),
}


def get_service(service_id: str) -> Optional[MCPServiceConfig]:
    return MCP_SERVICES.get(service_id)


def _matches_type(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        # bool is an int subclass but not a number here
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "array":
        return isinstance(value, (list, tuple))
    return True


def validate_tool_parameters(tool: MCPTool, parameters: dict) -> None:
    """Check presence of required parameters and primitive types of supplied ones."""
    if not isinstance(parameters, dict):
        raise ToolParameterError("Tool parameters must be an object")

    for param in tool.parameters:
        if param.required and param.name not in parameters:
            raise ToolParameterError(f"Required parameter '{param.name}' is missing")
        if param.name in parameters and not _matches_type(parameters[param.name], param.type):
            article = "an" if param.type[0] in "aeiou" else "a"
            raise ToolParameterError(f"Parameter '{param.name}' must be {article} {param.type}")
