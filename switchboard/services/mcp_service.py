"""
MCP service - authentication and tool dispatch for external integrations.

Connections are stored encrypted, one per (service, user), under the id
``{service_id}-{user_id}``. Decrypted credentials are cached per process;
the database stays the source of truth.

Authentication outcomes come back as ``MCPAuthResult``. Tool execution
raises: ``ToolParameterError`` for bad input, ``ServiceNotConnected`` when
there is no usable connection, ``ToolExecutionError`` for vendor failures.
"""
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from switchboard.auth import CredentialCipher, FernetCipher, create_oauth_state, hash_state, verify_oauth_state
from switchboard.config import settings
from switchboard.errors import AuthFlowError, ServiceNotConnected, ToolExecutionError
from switchboard.mcp.catalog import (
    API_KEY,
    CLIENT_SECRET_BASIC,
    MCP_SERVICES,
    OAUTH2,
    SERVICE_ACCOUNT,
    MCPServiceConfig,
    get_service,
    validate_tool_parameters,
)
from switchboard.mcp.executors import bearer_headers, execute_tool
from switchboard.models import MCPConnection, OAuthState, now_ms
from switchboard.providers.base import extract_vendor_message

logger = logging.getLogger(__name__)


def connection_id(service_id: str, user_id: str) -> str:
    return f"{service_id}-{user_id}"


def redirect_uri() -> str:
    return f"{settings.APP_URL.rstrip('/')}/api/mcp/callback"


@dataclass
class Credentials:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    is_connected: bool = True

    def is_expired(self, now: Optional[int] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now if now is not None else now_ms())


class ConnectionCache:
    """Decrypted credentials keyed by connection id."""

    def __init__(self):
        self._entries: dict[str, Credentials] = {}

    def get(self, conn_id: str) -> Optional[Credentials]:
        return self._entries.get(conn_id)

    def put(self, conn_id: str, credentials: Credentials):
        self._entries[conn_id] = credentials

    def evict(self, conn_id: str):
        self._entries.pop(conn_id, None)

    def clear(self):
        self._entries.clear()


connection_cache = ConnectionCache()


@dataclass
class MCPAuthResult:
    success: bool
    service_id: Optional[str] = None
    auth_url: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    error: Optional[str] = None

    @property
    def requires_redirect(self) -> bool:
        return self.auth_url is not None

    def to_public_dict(self) -> dict:
        """Shape returned over HTTP; tokens never leave the server."""
        return {
            "success": self.success,
            "service_id": self.service_id,
            "auth_url": self.auth_url,
            "requires_redirect": self.requires_redirect,
            "expires_at": self.expires_at,
            "error": self.error,
        }


class MCPService:
    def __init__(
        self,
        db: AsyncSession,
        cipher: Optional[CredentialCipher] = None,
        cache: ConnectionCache = connection_cache,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.db = db
        self.cipher = cipher or FernetCipher()
        self.cache = cache
        self.http_client = http_client

    @staticmethod
    def get_available_services() -> list[MCPServiceConfig]:
        return list(MCP_SERVICES.values())

    # -- authentication ----------------------------------------------------------

    async def authenticate_service(
        self, service_id: str, user_id: str, api_key: Optional[str] = None
    ) -> MCPAuthResult:
        config = get_service(service_id)
        if config is None:
            return MCPAuthResult(success=False, service_id=service_id, error=f"Service {service_id} not found")

        if config.auth_type == OAUTH2:
            return await self._start_oauth(config, user_id)
        if config.auth_type == API_KEY:
            return await self._authenticate_api_key(config, user_id, api_key)
        if config.auth_type == SERVICE_ACCOUNT:
            return await self._authenticate_service_account(config, user_id)
        return MCPAuthResult(success=False, service_id=service_id, error="Unsupported authentication type")

    async def _start_oauth(self, config: MCPServiceConfig, user_id: str) -> MCPAuthResult:
        auth = config.auth_config
        client_id = getattr(settings, auth.client_id_ref or "", "")
        if not client_id:
            return MCPAuthResult(
                success=False, service_id=config.id,
                error=f"OAuth client for {config.name} is not configured",
            )

        state = create_oauth_state(user_id, config.id)
        now = now_ms()
        self.db.add(OAuthState(
            id=hash_state(state),
            user_id=user_id,
            service_id=config.id,
            created_at=now,
            expires_at=now + settings.OAUTH_STATE_TTL_SECONDS * 1000,
        ))
        await self.db.commit()

        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri(),
            "response_type": "code",
            "state": state,
        }
        if auth.scopes:
            params["scope"] = " ".join(auth.scopes)
        params.update(dict(auth.extra_auth_params))

        return MCPAuthResult(success=True, service_id=config.id, auth_url=f"{auth.auth_url}?{urlencode(params)}")

    async def _authenticate_api_key(
        self, config: MCPServiceConfig, user_id: str, api_key: Optional[str]
    ) -> MCPAuthResult:
        if not api_key:
            return MCPAuthResult(success=False, service_id=config.id, error="API key required")

        if not await self._probe_api_key(config, api_key):
            return MCPAuthResult(success=False, service_id=config.id, error=f"Invalid {config.name} API key")

        await self._store_connection(config.id, user_id, Credentials(access_token=api_key))
        logger.info("MCP service connected", extra={"service_id": config.id, "user_id": user_id})
        return MCPAuthResult(success=True, service_id=config.id, access_token=api_key)

    async def _authenticate_service_account(self, config: MCPServiceConfig, user_id: str) -> MCPAuthResult:
        token = settings.service_account_token(config.id)
        if not token:
            return MCPAuthResult(
                success=False, service_id=config.id,
                error=f"No service account credentials configured for {config.name}",
            )
        await self._store_connection(config.id, user_id, Credentials(access_token=token))
        logger.info("MCP service connected", extra={"service_id": config.id, "user_id": user_id})
        return MCPAuthResult(success=True, service_id=config.id, access_token=token)

    async def _probe_api_key(self, config: MCPServiceConfig, api_key: str) -> bool:
        auth = config.auth_config
        if not auth.probe_url:
            return True
        try:
            response = await self._request(
                "POST", auth.probe_url, headers=self._auth_headers(config, api_key), json=auth.probe_body
            )
        except httpx.HTTPError as e:
            logger.warning(
                "API key probe failed", extra={"service_id": config.id, "error": str(e)}
            )
            return False
        if response.status_code != 200:
            return False
        try:
            body = response.json()
        except ValueError:
            logger.warning("API key probe returned a non-JSON body", extra={"service_id": config.id})
            return False
        return not (isinstance(body, dict) and body.get("errors"))

    async def handle_oauth_callback(self, code: str, state: str) -> MCPAuthResult:
        """Consume the state, exchange the code, and store the connection."""
        try:
            user_id, service_id = await self._consume_state(state)
        except AuthFlowError as e:
            logger.warning("OAuth callback rejected", extra={"reason": e.message})
            return MCPAuthResult(success=False, error=e.message)

        config = get_service(service_id)
        if config is None:
            return MCPAuthResult(success=False, error=f"Service {service_id} not found")

        try:
            tokens = await self._token_request(config, {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri(),
            })
        except AuthFlowError as e:
            logger.warning(
                "OAuth code exchange failed",
                extra={"service_id": service_id, "user_id": user_id, "reason": e.message},
            )
            return MCPAuthResult(success=False, service_id=service_id, error=e.message)

        credentials = Credentials(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_at=self._expiry(tokens),
        )
        await self._store_connection(service_id, user_id, credentials)
        logger.info("MCP service connected", extra={"service_id": service_id, "user_id": user_id})
        return MCPAuthResult(
            success=True,
            service_id=service_id,
            access_token=credentials.access_token,
            refresh_token=credentials.refresh_token,
            expires_at=credentials.expires_at,
        )

    async def _consume_state(self, state: str) -> tuple[str, str]:
        claims = verify_oauth_state(state)
        if claims is None:
            raise AuthFlowError("Invalid or expired state")

        state_id = hash_state(state)
        record = await self.db.get(OAuthState, state_id)
        if record is None:
            raise AuthFlowError("Invalid state")
        user_id, service_id, expires_at = record.user_id, record.service_id, record.expires_at

        # Delete-on-read; only the caller whose DELETE removed the row may proceed
        result = await self.db.execute(delete(OAuthState).where(OAuthState.id == state_id))
        await self.db.commit()
        if result.rowcount != 1:
            raise AuthFlowError("Invalid state")
        if expires_at < now_ms():
            raise AuthFlowError("Authorization expired, please try again")
        if claims.get("sub") != user_id or claims.get("svc") != service_id:
            raise AuthFlowError("Invalid state")
        return user_id, service_id

    async def _token_request(self, config: MCPServiceConfig, data: dict) -> dict:
        auth = config.auth_config
        client_id = getattr(settings, auth.client_id_ref or "", "")
        client_secret = getattr(settings, auth.client_secret_ref or "", "")
        try:
            if auth.token_auth_method == CLIENT_SECRET_BASIC:
                response = await self._request(
                    "POST", auth.token_url, auth=(client_id, client_secret), json=data
                )
            else:
                response = await self._request(
                    "POST", auth.token_url,
                    data={**data, "client_id": client_id, "client_secret": client_secret},
                )
        except httpx.HTTPError as e:
            raise AuthFlowError(f"Token endpoint unreachable for {config.name}: {e}") from e

        if response.status_code >= 400:
            detail = extract_vendor_message(response) or f"HTTP {response.status_code}"
            raise AuthFlowError(f"Token exchange failed for {config.name}: {detail}")

        try:
            tokens = response.json()
        except ValueError:
            raise AuthFlowError(f"Token exchange failed for {config.name}: unreadable token response")
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise AuthFlowError(f"Token exchange failed for {config.name}: no access token returned")
        return tokens

    @staticmethod
    def _expiry(tokens: dict) -> Optional[int]:
        expires_in = tokens.get("expires_in")
        if not expires_in:
            return None
        return now_ms() + int(expires_in) * 1000

    # -- tool calls ----------------------------------------------------------------

    async def execute_tool_call(
        self, service_id: str, tool_id: str, parameters: dict, user_id: str
    ) -> dict:
        config = get_service(service_id)
        if config is None:
            raise ToolExecutionError(f"Service {service_id} not found")
        tool = config.get_tool(tool_id)
        if tool is None:
            raise ToolExecutionError(f"Tool {tool_id} not found for {service_id}")
        validate_tool_parameters(tool, parameters)

        credentials = await self._load_credentials(service_id, user_id)
        if credentials is None or not credentials.is_connected:
            raise ServiceNotConnected(f"{config.name} is not connected")

        if credentials.is_expired():
            if not credentials.refresh_token:
                await self._mark_disconnected(service_id, user_id)
                raise ServiceNotConnected(f"{config.name} authorization expired, please reconnect")
            credentials = await self._refresh(config, user_id, credentials)

        result = await execute_tool(
            service_id, tool_id, parameters,
            self._auth_headers(config, credentials.access_token),
            client=self.http_client,
        )

        await self.db.execute(
            update(MCPConnection)
            .where(MCPConnection.id == connection_id(service_id, user_id))
            .values(last_used=now_ms())
        )
        await self.db.commit()
        return result

    async def _refresh(self, config: MCPServiceConfig, user_id: str, credentials: Credentials) -> Credentials:
        try:
            tokens = await self._token_request(config, {
                "grant_type": "refresh_token",
                "refresh_token": credentials.refresh_token,
            })
        except AuthFlowError as e:
            logger.error(
                "Token refresh failed",
                extra={"service_id": config.id, "user_id": user_id, "reason": e.message},
            )
            await self._mark_disconnected(config.id, user_id)
            raise ServiceNotConnected(f"{config.name} token refresh failed, please reconnect") from e

        refreshed = Credentials(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token") or credentials.refresh_token,
            expires_at=self._expiry(tokens),
        )
        await self._store_connection(config.id, user_id, refreshed)
        return refreshed

    @staticmethod
    def _auth_headers(config: MCPServiceConfig, token: str) -> dict:
        if config.auth_type == OAUTH2:
            return bearer_headers(token)
        auth = config.auth_config
        value = f"{auth.api_key_prefix} {token}" if auth.api_key_prefix else token
        return {auth.api_key_header: value, "Content-Type": "application/json"}

    # -- storage -------------------------------------------------------------------

    async def _store_connection(self, service_id: str, user_id: str, credentials: Credentials):
        conn_id = connection_id(service_id, user_id)
        encrypted_access = self.cipher.encrypt(credentials.access_token)
        encrypted_refresh = (
            self.cipher.encrypt(credentials.refresh_token) if credentials.refresh_token else None
        )

        connection = await self.db.get(MCPConnection, conn_id)
        if connection is None:
            connection = MCPConnection(id=conn_id, service_id=service_id, user_id=user_id)
            self.db.add(connection)
        connection.encrypted_access_token = encrypted_access
        connection.encrypted_refresh_token = encrypted_refresh
        connection.expires_at = credentials.expires_at
        connection.is_connected = True
        connection.last_used = now_ms()
        await self.db.commit()

        self.cache.put(conn_id, credentials)

    async def _load_credentials(self, service_id: str, user_id: str) -> Optional[Credentials]:
        conn_id = connection_id(service_id, user_id)
        cached = self.cache.get(conn_id)
        if cached is not None:
            return cached

        connection = await self.db.get(MCPConnection, conn_id)
        if connection is None:
            return None
        credentials = Credentials(
            access_token=self.cipher.decrypt(connection.encrypted_access_token),
            refresh_token=(
                self.cipher.decrypt(connection.encrypted_refresh_token)
                if connection.encrypted_refresh_token else None
            ),
            expires_at=connection.expires_at,
            is_connected=connection.is_connected,
        )
        self.cache.put(conn_id, credentials)
        return credentials

    async def _mark_disconnected(self, service_id: str, user_id: str):
        conn_id = connection_id(service_id, user_id)
        await self.db.execute(
            update(MCPConnection).where(MCPConnection.id == conn_id).values(is_connected=False)
        )
        await self.db.commit()
        self.cache.evict(conn_id)

    async def disconnect_service(self, service_id: str, user_id: str) -> bool:
        conn_id = connection_id(service_id, user_id)
        self.cache.evict(conn_id)
        result = await self.db.execute(delete(MCPConnection).where(MCPConnection.id == conn_id))
        await self.db.commit()
        removed = result.rowcount > 0
        if removed:
            logger.info("MCP service disconnected", extra={"service_id": service_id, "user_id": user_id})
        return removed

    async def is_service_connected(self, service_id: str, user_id: str) -> bool:
        connection = await self.db.get(MCPConnection, connection_id(service_id, user_id))
        return connection is not None and connection.is_connected

    async def get_user_connections(self, user_id: str) -> list[dict]:
        result = await self.db.execute(
            select(MCPConnection)
            .where(MCPConnection.user_id == user_id)
            .order_by(MCPConnection.service_id)
        )
        return [
            {
                "id": c.id,
                "service_id": c.service_id,
                "is_connected": c.is_connected,
                "expires_at": c.expires_at,
                "last_used": c.last_used,
                "created_at": c.created_at.isoformat() if c.created_at else None,
            }
            for c in result.scalars().all()
        ]

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=settings.MCP_TIMEOUT) as client:
            return await client.request(method, url, **kwargs)
