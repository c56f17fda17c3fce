"""
Encryption Key Validator

Validates that the current ENCRYPTION_KEY can decrypt stored credentials:
users' provider keys and MCP connection tokens. A changed key would
otherwise only show up as failures on first use.
"""
import logging
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from switchboard.auth import decrypt_secret
from switchboard.config import settings
from switchboard.database import async_session_maker
from switchboard.errors import CredentialError
from switchboard.models import MCPConnection, UserProviderKey

logger = logging.getLogger(__name__)


async def validate_encryption_key(session_maker=async_session_maker) -> Dict[str, Any]:
    """
    Try to decrypt every stored credential.

    Returns:
        Dict with status and details:
        - status: "ok" | "warning" | "error"
        - message: Human-readable status
        - total: Number of stored credentials
        - decryptable: Number that can be decrypted
        - failed: [{kind, id}] for the ones that cannot
    """
    try:
        async with session_maker() as session:
            keys = (await session.execute(select(UserProviderKey))).scalars().all()
            connections = (await session.execute(select(MCPConnection))).scalars().all()
    except SQLAlchemyError as e:
        return {"status": "error", "message": f"Failed to validate encryption: {e}", "total": 0, "decryptable": 0}

    stored = [("provider_key", k.id, k.encrypted_key) for k in keys]
    stored += [("mcp_connection", c.id, c.encrypted_access_token) for c in connections]
    total = len(stored)

    if not settings.ENCRYPTION_KEY:
        if total == 0:
            return {
                "status": "warning",
                "message": "ENCRYPTION_KEY is not set; credential storage is disabled",
                "total": 0,
                "decryptable": 0,
            }
        return {
            "status": "error",
            "message": f"ENCRYPTION_KEY is not set but {total} credentials are stored",
            "total": total,
            "decryptable": 0,
        }

    if total == 0:
        return {"status": "ok", "message": "No stored credentials", "total": 0, "decryptable": 0}

    failed = []
    for kind, record_id, encrypted in stored:
        try:
            decrypt_secret(encrypted)
        except CredentialError:
            failed.append({"kind": kind, "id": record_id})

    decryptable = total - len(failed)
    if not failed:
        status, message = "ok", f"All {total} stored credentials can be decrypted"
    elif decryptable > 0:
        status, message = "warning", f"{len(failed)} of {total} stored credentials cannot be decrypted"
    else:
        status, message = "error", "ENCRYPTION_KEY mismatch - cannot decrypt any stored credentials"

    return {
        "status": status,
        "message": message,
        "total": total,
        "decryptable": decryptable,
        "failed": failed,
    }
