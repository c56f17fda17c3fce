"""Tool integrations reachable through the MCP manager."""
from switchboard.mcp.catalog import MCP_SERVICES, get_service, validate_tool_parameters
from switchboard.mcp.executors import execute_tool

__all__ = ["MCP_SERVICES", "execute_tool", "get_service", "validate_tool_parameters"]
