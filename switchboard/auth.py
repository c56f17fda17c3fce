import base64
import binascii
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken
from fastapi import HTTPException, Request
from jose import JWTError, jwt

from switchboard.config import settings
from switchboard.errors import CredentialError, EncryptionUnavailable


def _fernet_key(raw: str) -> bytes:
    """Use a proper Fernet key as-is, otherwise derive one from the passphrase."""
    try:
        if len(base64.urlsafe_b64decode(raw.encode())) == 32:
            return raw.encode()
    except (binascii.Error, ValueError):
        pass
    return base64.urlsafe_b64encode(hashlib.sha256(raw.encode()).digest())


def get_fernet() -> Fernet:
    """Get Fernet instance for encrypting stored credentials."""
    if not settings.ENCRYPTION_KEY:
        raise EncryptionUnavailable(
            "ENCRYPTION_KEY is not configured; refusing to store or read credentials"
        )
    return Fernet(_fernet_key(settings.ENCRYPTION_KEY))


def encrypt_secret(value: str) -> str:
    """Encrypt an API key or token for storage."""
    return get_fernet().encrypt(value.encode()).decode()


def decrypt_secret(encrypted: str) -> str:
    """Decrypt a stored API key or token."""
    f = get_fernet()
    try:
        return f.decrypt(encrypted.encode()).decode()
    except InvalidToken as e:
        raise CredentialError("Stored credential cannot be decrypted with the current ENCRYPTION_KEY") from e


def key_suffix(value: str) -> str:
    return value[-4:] if len(value) >= 4 else value


class CredentialCipher(Protocol):
    def encrypt(self, value: str) -> str: ...

    def decrypt(self, encrypted: str) -> str: ...


class FernetCipher:
    """Credential cipher backed by ENCRYPTION_KEY.

    The key is read on every call so a missing key fails the operation that
    needed it rather than the construction of a service.
    """

    def encrypt(self, value: str) -> str:
        return encrypt_secret(value)

    def decrypt(self, encrypted: str) -> str:
        return decrypt_secret(encrypted)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a caller JWT; ``data`` must carry the user id in ``sub``."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(hours=settings.JWT_EXPIRATION_HOURS)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


async def get_current_user_id(request: Request) -> str:
    """FastAPI dependency resolving the caller from its bearer token."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    payload = decode_access_token(auth_header[7:])
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return str(payload["sub"])


def create_oauth_state(user_id: str, service_id: str) -> str:
    """Signed, time-boxed state token binding an OAuth flow to (user, service)."""
    expire = datetime.now(timezone.utc) + timedelta(seconds=settings.OAUTH_STATE_TTL_SECONDS)
    claims = {
        "sub": user_id,
        "svc": service_id,
        "nonce": secrets.token_urlsafe(16),
        "exp": expire,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_oauth_state(state: str) -> Optional[dict]:
    """Return the state claims if the signature and expiry check out."""
    try:
        claims = jwt.decode(state, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if not claims.get("sub") or not claims.get("svc"):
        return None
    return claims


def hash_state(state: str) -> str:
    return hashlib.sha256(state.encode()).hexdigest()
