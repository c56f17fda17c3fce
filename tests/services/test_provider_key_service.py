"""Tests for ProviderKeyService."""
import pytest
from cryptography.fernet import Fernet

from switchboard.config import settings
from switchboard.errors import CredentialError, EncryptionUnavailable
from switchboard.services.provider_key_service import ProviderKeyService


class TestSaveKey:
    """Test storing user keys."""

    async def test_key_encrypted_at_rest(self, db):
        """The stored value is ciphertext; only the suffix is kept in clear."""
        service = ProviderKeyService(db)
        stored = await service.save("user-1", "openai", "sk-live-abcdef1234")

        assert stored.encrypted_key != "sk-live-abcdef1234"
        assert "sk-live" not in stored.encrypted_key
        assert stored.key_suffix == "1234"
        assert await service.decrypt_key("user-1", "openai") == "sk-live-abcdef1234"

    async def test_save_replaces_existing_key(self, db):
        """One key per user and provider; saving again replaces it."""
        service = ProviderKeyService(db)
        await service.save("user-1", "mistral", "first-key-0001", selected_model="mistral-large")
        await service.save("user-1", "mistral", "second-key-0002")

        keys = await service.get_all_for_user("user-1")
        assert len(keys) == 1
        assert keys[0].key_suffix == "0002"
        assert keys[0].selected_model == "mistral-large"

    async def test_save_reactivates_disabled_key(self, db):
        service = ProviderKeyService(db)
        await service.save("user-1", "grok", "xai-key-9999")
        await service.set_active("user-1", "grok", False)
        assert await service.has_key("user-1", "grok") is False

        await service.save("user-1", "grok", "xai-key-8888")
        assert await service.has_key("user-1", "grok") is True

    @pytest.mark.parametrize("provider_id,key", [("nope", "sk-123456"), ("openai", "   ")])
    async def test_save_validation(self, db, provider_id, key):
        """Unknown providers and blank keys are rejected."""
        with pytest.raises(ValueError):
            await ProviderKeyService(db).save("user-1", provider_id, key)

    async def test_keys_are_per_user(self, db):
        service = ProviderKeyService(db)
        await service.save("user-1", "openai", "sk-user-one-1111")

        assert await service.has_key("user-2", "openai") is False
        assert await service.decrypt_key("user-2", "openai") is None


class TestDecryptKey:
    """Test reading keys back at dispatch time."""

    async def test_decrypt_stamps_last_used(self, db):
        service = ProviderKeyService(db)
        await service.save("user-1", "deepseek", "ds-key-12345678")

        await service.decrypt_key("user-1", "deepseek")

        stored = await service.get("user-1", "deepseek")
        assert stored.last_used_at is not None

    async def test_inactive_key_is_not_used(self, db):
        service = ProviderKeyService(db)
        await service.save("user-1", "deepseek", "ds-key-12345678")
        await service.set_active("user-1", "deepseek", False)

        assert await service.decrypt_key("user-1", "deepseek") is None

    async def test_rotated_encryption_key(self, db, monkeypatch):
        """Keys written under another ENCRYPTION_KEY fail with CredentialError."""
        service = ProviderKeyService(db)
        await service.save("user-1", "openai", "sk-live-abcdef1234")
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", Fernet.generate_key().decode())

        with pytest.raises(CredentialError):
            await service.decrypt_key("user-1", "openai")

    async def test_missing_encryption_key(self, db, monkeypatch):
        """No ENCRYPTION_KEY means nothing is stored at all."""
        monkeypatch.setattr(settings, "ENCRYPTION_KEY", "")

        with pytest.raises(EncryptionUnavailable):
            await ProviderKeyService(db).save("user-1", "openai", "sk-live-abcdef1234")
        assert await ProviderKeyService(db).get_all_for_user("user-1") == []


class TestDeleteKey:
    async def test_delete(self, db):
        service = ProviderKeyService(db)
        await service.save("user-1", "perplexity", "pplx-key-4321")

        assert await service.delete("user-1", "perplexity") is True
        assert await service.delete("user-1", "perplexity") is False
        assert await service.get_all_for_user("user-1") == []
