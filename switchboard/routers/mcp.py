"""
MCP routes: service catalog, connecting and disconnecting, OAuth callback
and tool calls.
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from switchboard.auth import get_current_user_id
from switchboard.database import get_db
from switchboard.mcp.catalog import get_service
from switchboard.services.mcp_service import MCPService

router = APIRouter(prefix="/api/mcp", tags=["MCP"])


class ConnectRequest(BaseModel):
    api_key: Optional[str] = None


class ToolCallRequest(BaseModel):
    parameters: dict[str, Any] = {}


@router.get("/services")
async def list_services():
    return {"services": [s.to_dict() for s in MCPService.get_available_services()]}


@router.get("/connections")
async def list_connections(user_id: str = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)):
    return {"connections": await MCPService(db).get_user_connections(user_id)}


@router.post("/{service_id}/connect")
async def connect(
    service_id: str,
    body: ConnectRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Start connecting a service.

    OAuth services answer with an ``auth_url`` to send the user to; API-key
    and service-account services are connected immediately.
    """
    if get_service(service_id) is None:
        raise HTTPException(status_code=404, detail=f"Service {service_id} not found")
    result = await MCPService(db).authenticate_service(service_id, user_id, api_key=body.api_key)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)
    return result.to_public_dict()


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """OAuth redirect target. Authenticated by the signed state, not a bearer token."""
    if error:
        raise HTTPException(status_code=400, detail=f"Authorization was not granted: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")
    result = await MCPService(db).handle_oauth_callback(code, state)
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)
    return result.to_public_dict()


@router.post("/{service_id}/tools/{tool_id}")
async def call_tool(
    service_id: str,
    tool_id: str,
    body: ToolCallRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    result = await MCPService(db).execute_tool_call(service_id, tool_id, body.parameters, user_id)
    return {"success": True, "result": result}


@router.delete("/{service_id}")
async def disconnect(
    service_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if not await MCPService(db).disconnect_service(service_id, user_id):
        raise HTTPException(status_code=404, detail="Service is not connected")
    return {"success": True}
