"""Tests for the startup ENCRYPTION_KEY check."""
from cryptography.fernet import Fernet

from switchboard.config import settings
from switchboard.services.encryption_validator import validate_encryption_key
from switchboard.services.mcp_service import Credentials, MCPService
from switchboard.services.provider_key_service import ProviderKeyService


async def store_credentials(session_maker):
    async with session_maker() as session:
        await ProviderKeyService(session).save("user-1", "openai", "sk-live-abcdef1234")
        await MCPService(session)._store_connection("gmail", "user-1", Credentials(access_token="ya29.x"))


class TestValidateEncryptionKey:
    async def test_no_credentials(self, test_db):
        result = await validate_encryption_key(test_db)
        assert result["status"] == "ok"
        assert result["total"] == 0

    async def test_all_decryptable(self, test_db):
        await store_credentials(test_db)

        result = await validate_encryption_key(test_db)

        assert result["status"] == "ok"
        assert (result["total"], result["decryptable"]) == (2, 2)
        assert result["failed"] == []

    async def test_rotated_key(self, test_db, monkeypatch):
        await store_credentials(test_db)
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", Fernet.generate_key().decode())

        result = await validate_encryption_key(test_db)

        assert result["status"] == "error"
        assert result["decryptable"] == 0
        assert {f["kind"] for f in result["failed"]} == {"provider_key", "mcp_connection"}

    async def test_partially_decryptable(self, test_db, monkeypatch):
        await store_credentials(test_db)
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", Fernet.generate_key().decode())
        async with test_db() as session:
            await ProviderKeyService(session).save("user-2", "mistral", "mistral-key-1234")

        result = await validate_encryption_key(test_db)

        assert result["status"] == "warning"
        assert (result["total"], result["decryptable"]) == (3, 1)

    async def test_missing_key_with_nothing_stored(self, test_db, monkeypatch):
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", "")
        result = await validate_encryption_key(test_db)
        assert result["status"] == "warning"

    async def test_missing_key_with_stored_credentials(self, test_db, monkeypatch):
        await store_credentials(test_db)
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", "")

        result = await validate_encryption_key(test_db)

        assert result["status"] == "error"
        assert result["total"] == 2
