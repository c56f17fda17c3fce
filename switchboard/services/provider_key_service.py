"""
Provider key service - user-supplied vendor keys.

A stored key is what lets a user reach a provider their plan does not
include (the ``user_api_key`` access path). Keys are encrypted at rest and
only ever decrypted at dispatch time.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from switchboard.auth import CredentialCipher, FernetCipher, key_suffix
from switchboard.models import UserProviderKey, utc_now
from switchboard.providers.catalog import get_provider


class ProviderKeyService:
    """Service for managing a user's own provider API keys."""

    def __init__(self, db: AsyncSession, cipher: Optional[CredentialCipher] = None):
        self.db = db
        self.cipher = cipher or FernetCipher()

    async def get(
        self,
        user_id: str,
        provider_id: str,
        active_only: bool = True,
    ) -> Optional[UserProviderKey]:
        query = select(UserProviderKey).where(
            UserProviderKey.user_id == user_id,
            UserProviderKey.provider_id == provider_id,
        )
        if active_only:
            query = query.where(UserProviderKey.is_active == True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_all_for_user(self, user_id: str) -> list[UserProviderKey]:
        result = await self.db.execute(
            select(UserProviderKey)
            .where(UserProviderKey.user_id == user_id)
            .order_by(UserProviderKey.provider_id)
        )
        return list(result.scalars().all())

    async def has_key(self, user_id: str, provider_id: str) -> bool:
        return await self.get(user_id, provider_id) is not None

    async def save(
        self,
        user_id: str,
        provider_id: str,
        key: str,
        selected_model: Optional[str] = None,
    ) -> UserProviderKey:
        """
        Store or replace the user's key for a provider.

        Args:
            user_id: Owner of the key
            provider_id: Catalog provider id
            key: The plaintext API key (encrypted before it is stored)
            selected_model: Optional preferred model for this provider
        """
        if get_provider(provider_id) is None:
            raise ValueError(f"Unknown provider: {provider_id}")
        key = key.strip()
        if not key:
            raise ValueError("API key must not be empty")

        encrypted = self.cipher.encrypt(key)
        existing = await self.get(user_id, provider_id, active_only=False)
        if existing:
            existing.encrypted_key = encrypted
            existing.key_suffix = key_suffix(key)
            existing.is_active = True
            if selected_model is not None:
                existing.selected_model = selected_model
            provider_key = existing
        else:
            provider_key = UserProviderKey(
                user_id=user_id,
                provider_id=provider_id,
                encrypted_key=encrypted,
                key_suffix=key_suffix(key),
                selected_model=selected_model,
                is_active=True,
            )
            self.db.add(provider_key)

        await self.db.commit()
        await self.db.refresh(provider_key)
        return provider_key

    async def set_active(self, user_id: str, provider_id: str, is_active: bool) -> bool:
        provider_key = await self.get(user_id, provider_id, active_only=False)
        if not provider_key:
            return False
        provider_key.is_active = is_active
        await self.db.commit()
        return True

    async def delete(self, user_id: str, provider_id: str) -> bool:
        provider_key = await self.get(user_id, provider_id, active_only=False)
        if not provider_key:
            return False
        await self.db.delete(provider_key)
        await self.db.commit()
        return True

    async def decrypt_key(self, user_id: str, provider_id: str) -> Optional[str]:
        """Decrypt the active key for dispatch and stamp it as used."""
        provider_key = await self.get(user_id, provider_id)
        if not provider_key:
            return None
        key = self.cipher.decrypt(provider_key.encrypted_key)
        provider_key.last_used_at = utc_now()
        await self.db.commit()
        return key
