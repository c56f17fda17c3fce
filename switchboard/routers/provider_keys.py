"""
User provider key routes.

Keys are write-only: listing returns the provider, suffix and state but
never the key itself.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from switchboard.auth import get_current_user_id
from switchboard.database import get_db
from switchboard.errors import ConfigurationError
from switchboard.providers import build_adapter
from switchboard.services.provider_key_service import ProviderKeyService

router = APIRouter(prefix="/api/provider-keys", tags=["Provider Keys"])


class SaveKeyRequest(BaseModel):
    api_key: str
    selected_model: Optional[str] = None


class TestKeyRequest(BaseModel):
    api_key: Optional[str] = None


def serialize_key(provider_key) -> dict:
    return {
        "provider_id": provider_key.provider_id,
        "key_suffix": provider_key.key_suffix,
        "selected_model": provider_key.selected_model,
        "is_active": provider_key.is_active,
        "created_at": provider_key.created_at.isoformat() if provider_key.created_at else None,
        "last_used_at": provider_key.last_used_at.isoformat() if provider_key.last_used_at else None,
    }


@router.get("")
async def list_keys(user_id: str = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)):
    keys = await ProviderKeyService(db).get_all_for_user(user_id)
    return {"keys": [serialize_key(k) for k in keys]}


@router.put("/{provider_id}")
async def save_key(
    provider_id: str,
    body: SaveKeyRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    try:
        provider_key = await ProviderKeyService(db).save(user_id, provider_id, body.api_key, body.selected_model)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return serialize_key(provider_key)


@router.delete("/{provider_id}")
async def delete_key(
    provider_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if not await ProviderKeyService(db).delete(user_id, provider_id):
        raise HTTPException(status_code=404, detail="Key not found")
    return {"success": True}


@router.post("/{provider_id}/test")
async def test_key(
    provider_id: str,
    body: TestKeyRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Probe the vendor with the supplied key, or with the stored one."""
    adapter = build_adapter(provider_id)
    if adapter is None:
        raise ConfigurationError(f"No adapter registered for provider '{provider_id}'")

    api_key = body.api_key or await ProviderKeyService(db).decrypt_key(user_id, provider_id)
    if not api_key:
        raise HTTPException(status_code=404, detail="No key supplied or stored for this provider")
    return {"provider_id": provider_id, "valid": await adapter.test_connection(api_key)}
