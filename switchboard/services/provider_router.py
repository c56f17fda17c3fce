"""
Provider router - single entry point for AI generation.

Every request goes GATED -> KEY_RESOLVED -> DISPATCHED -> COMPLETED/FAILED:

1. the subscription gate decides whether the user may use provider/model
2. an adapter is built and given the key the entitlement calls for
   (operator-managed, operator free-tier, or the user's own)
3. the adapter call is timed and its outcome recorded in provider health
4. completed calls are charged to the user's usage counters and ledger

``generate_response`` never raises for these outcomes: denials, missing
configuration and vendor failures all come back as an ``AIResponse`` whose
``status`` says what happened. There is no retry at this layer.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from switchboard.config import settings
from switchboard.errors import ConfigurationError, EntitlementDenied, SwitchboardError, VendorError
from switchboard.models import TokenUsage, UserAISettings, now_ms
from switchboard.providers import build_adapter
from switchboard.providers.base import GenerationOptions, ProviderAdapter
from switchboard.providers.catalog import PROVIDERS, get_provider
from switchboard.providers.pricing import TokenCounts, calculate_cost
from switchboard.providers.streaming import ChatStream
from switchboard.services.provider_health import ProviderHealthTracker, provider_health
from switchboard.services.provider_key_service import ProviderKeyService
from switchboard.services.subscription_service import (
    FREE_TIER,
    PRO_MANAGED,
    USER_API_KEY,
    SubscriptionService,
)

logger = logging.getLogger(__name__)

DEFAULT_GLOBAL_PROVIDER = "google"
DEFAULT_GLOBAL_MODEL = "gemini-flash"

STATUS_COMPLETED = "completed"
STATUS_DENIED = "denied"
STATUS_FAILED = "failed"


@dataclass
class ProviderTarget:
    provider_id: str
    model_id: str


@dataclass
class AIResponse:
    id: str
    provider_id: str
    model_id: str
    content: str = ""
    tokens: TokenCounts = field(default_factory=TokenCounts)
    cost: float = 0.0
    latency: int = 0  # ms
    timestamp: int = field(default_factory=now_ms)
    status: str = STATUS_COMPLETED
    error: Optional[str] = None
    error_type: Optional[str] = None
    requires_api_key: bool = False
    requires_upgrade: bool = False

    @property
    def ok(self) -> bool:
        return self.status == STATUS_COMPLETED

    @classmethod
    def from_error(cls, provider_id: str, model_id: str, error: SwitchboardError, latency: int = 0) -> "AIResponse":
        response = cls(
            id=str(uuid.uuid4()),
            provider_id=provider_id,
            model_id=model_id,
            latency=latency,
            status=STATUS_DENIED if isinstance(error, EntitlementDenied) else STATUS_FAILED,
            error=error.message,
            error_type=error.error_type,
        )
        if isinstance(error, EntitlementDenied):
            response.requires_api_key = error.requires_api_key
            response.requires_upgrade = error.requires_upgrade
        return response

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "model_id": self.model_id,
            "content": self.content,
            "tokens": self.tokens.to_dict(),
            "cost": self.cost,
            "latency": self.latency,
            "timestamp": self.timestamp,
            "status": self.status,
            "error": self.error,
            "error_type": self.error_type,
            "requires_api_key": self.requires_api_key,
            "requires_upgrade": self.requires_upgrade,
        }


@dataclass
class PreparedCall:
    """A request that passed the gate and has a keyed adapter."""
    provider_id: str
    model_id: str
    access_type: str
    adapter: ProviderAdapter


class ProviderRouter:
    """Per-request router bound to one user."""

    def __init__(
        self,
        db: AsyncSession,
        user_id: str,
        subscriptions: Optional[SubscriptionService] = None,
        keys: Optional[ProviderKeyService] = None,
        adapter_factory: Callable[[str], Optional[ProviderAdapter]] = build_adapter,
        health: ProviderHealthTracker = provider_health,
    ):
        self.db = db
        self.user_id = user_id
        self.subscriptions = subscriptions or SubscriptionService(db)
        self.keys = keys or ProviderKeyService(db)
        self.adapter_factory = adapter_factory
        self.health = health
        self.ai_settings: Optional[UserAISettings] = None

    @classmethod
    async def for_user(cls, db: AsyncSession, user_id: str, **kwargs) -> "ProviderRouter":
        router = cls(db, user_id, **kwargs)
        await router.load()
        return router

    async def load(self):
        await self.subscriptions.load_user_subscription(self.user_id)
        result = await self.db.execute(
            select(UserAISettings).where(UserAISettings.user_id == self.user_id)
        )
        self.ai_settings = result.scalar_one_or_none()

    # -- catalog views --------------------------------------------------------

    async def get_available_providers(self) -> list[dict]:
        """Catalog entries merged with this user's access and key state."""
        stored = {k.provider_id for k in await self.keys.get_all_for_user(self.user_id) if k.is_active}
        providers = []
        for provider in PROVIDERS.values():
            access = self.subscriptions.get_ai_provider_access(self.user_id, provider.id)
            has_user_key = provider.id in stored
            providers.append({
                "id": provider.id,
                "name": provider.name,
                "description": provider.description,
                "website": provider.website,
                "capabilities": list(provider.capabilities),
                "models": [
                    {
                        "id": m.id,
                        "name": m.name,
                        "description": m.description,
                        "context_length": m.context_length,
                        "max_tokens": m.max_tokens,
                        "supports_streaming": m.supports_streaming,
                        "supports_vision": m.supports_vision,
                    }
                    for m in provider.models
                ],
                "access_type": access.access_type,
                "is_active": access.is_active or has_user_key,
                "is_connected": has_user_key or (
                    access.is_active and self._operator_key_available(provider.id, access.access_type)
                ),
                "has_user_api_key": has_user_key,
            })
        return providers

    async def get_provider_access_info(self, provider_id: str) -> dict:
        if get_provider(provider_id) is None:
            raise ValueError(f"Unknown provider: {provider_id}")
        access = self.subscriptions.get_ai_provider_access(self.user_id, provider_id)
        has_user_key = await self.keys.has_key(self.user_id, provider_id)
        check = self.subscriptions.can_use_provider(provider_id, has_user_api_key=has_user_key)
        info = access.to_dict()
        info["has_user_api_key"] = has_user_key
        info["check"] = check.to_dict()
        return info

    def get_subscription_status(self) -> dict:
        return self.subscriptions.get_subscription_status()

    # -- global default ----------------------------------------------------------

    def get_global_provider(self) -> ProviderTarget:
        if self.ai_settings is None:
            return ProviderTarget(DEFAULT_GLOBAL_PROVIDER, DEFAULT_GLOBAL_MODEL)
        return ProviderTarget(self.ai_settings.global_provider, self.ai_settings.global_model)

    async def set_global_provider(
        self,
        provider_id: str,
        model_id: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
    ) -> ProviderTarget:
        provider = get_provider(provider_id)
        if provider is None:
            raise ValueError(f"Unknown provider: {provider_id}")
        if provider.get_model(model_id) is None:
            raise ValueError(f"Unknown model '{model_id}' for provider {provider_id}")

        if self.ai_settings is None:
            self.ai_settings = UserAISettings(user_id=self.user_id, preferences={})
            self.db.add(self.ai_settings)
        self.ai_settings.global_provider = provider_id
        self.ai_settings.global_model = model_id
        if temperature is not None:
            self.ai_settings.temperature = temperature
        if max_tokens is not None:
            self.ai_settings.max_tokens = max_tokens
        if system_prompt is not None:
            self.ai_settings.system_prompt = system_prompt or None
        await self.db.commit()

        logger.info(
            "Global provider changed",
            extra={"user_id": self.user_id, "provider": provider_id, "model": model_id},
        )
        return ProviderTarget(provider_id, model_id)

    def global_options(self, options: Optional[GenerationOptions] = None) -> GenerationOptions:
        """Fill unset generation options from the user's saved defaults."""
        options = options or GenerationOptions()
        if self.ai_settings is not None:
            if options.temperature is None:
                options.temperature = self.ai_settings.temperature
            if options.max_tokens is None:
                options.max_tokens = self.ai_settings.max_tokens
            if options.system_prompt is None:
                options.system_prompt = self.ai_settings.system_prompt
        return options

    # -- generation --------------------------------------------------------------

    async def generate_response(
        self,
        message: str,
        provider_id: str,
        model_id: str,
        options: Optional[GenerationOptions] = None,
    ) -> AIResponse:
        options = options or GenerationOptions()
        try:
            prepared = await self.prepare(provider_id, model_id)
        except SwitchboardError as e:
            return AIResponse.from_error(provider_id, model_id, e)

        response = await self._dispatch(prepared, message, options)
        if response.ok:
            await self._record_usage(prepared, response.tokens, response.cost, options)
        return response

    async def generate_multiple_responses(
        self,
        message: str,
        targets: Sequence[ProviderTarget],
        options: Optional[GenerationOptions] = None,
    ) -> list[AIResponse]:
        """Fan one prompt out to several providers.

        Gating and key lookups run first, one at a time on the shared
        session, and each admitted call counts against the daily quota of the
        ones after it. Vendor calls then run concurrently. Results keep the order
        of ``targets`` and one failure never cancels the others.
        """
        options = options or GenerationOptions()
        items: list = []
        admitted = 0
        for target in targets:
            try:
                items.append(await self.prepare(target.provider_id, target.model_id, pending_requests=admitted))
                admitted += 1
            except SwitchboardError as e:
                items.append(AIResponse.from_error(target.provider_id, target.model_id, e))

        async def run(item):
            if isinstance(item, AIResponse):
                return item
            return await self._dispatch(item, message, options)

        responses = await asyncio.gather(*(run(item) for item in items))

        for item, response in zip(items, responses):
            if isinstance(item, PreparedCall) and response.ok:
                await self._record_usage(item, response.tokens, response.cost, options)
        return list(responses)

    async def generate_global_response(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> AIResponse:
        target = self.get_global_provider()
        return await self.generate_response(
            prompt, target.provider_id, target.model_id, self.global_options(options)
        )

    async def open_global_stream(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> ChatStream:
        """Gate and key the global provider, then return its text stream.

        Raises the gate or configuration error before any chunk is produced.
        Models without streaming support are answered in one chunk.
        """
        target = self.get_global_provider()
        options = self.global_options(options)
        prepared = await self.prepare(target.provider_id, target.model_id)

        provider = get_provider(target.provider_id)
        model = provider.get_model(target.model_id) if provider else None
        if prepared.adapter.supports_streaming and (model is None or model.supports_streaming):
            inner = prepared.adapter.stream_response(prompt, target.model_id, options)
            return self._tracked_stream(prepared, inner, options)

        response = await self._dispatch(prepared, prompt, options)
        if not response.ok:
            raise VendorError(response.error or "Request failed", provider=target.provider_id)
        await self._record_usage(prepared, response.tokens, response.cost, options)
        return ChatStream.from_text(response.content, response.tokens)

    async def stream_global_response(
        self, prompt: str, options: Optional[GenerationOptions] = None
    ) -> AsyncIterator[str]:
        stream = await self.open_global_stream(prompt, options)
        async for chunk in stream:
            yield chunk

    async def test_connection(self, provider_id: str, api_key: str) -> bool:
        adapter = self.adapter_factory(provider_id)
        if adapter is None:
            raise ConfigurationError(f"No adapter registered for provider '{provider_id}'")
        return await adapter.test_connection(api_key)

    # -- internals ---------------------------------------------------------------

    async def prepare(self, provider_id: str, model_id: str, pending_requests: int = 0) -> PreparedCall:
        """Run the gate and resolve adapter and key. Raises on any rejection."""
        if get_provider(provider_id) is None:
            raise ConfigurationError(f"Unknown provider: {provider_id}")

        access = self.subscriptions.get_ai_provider_access(self.user_id, provider_id)
        has_user_key = False
        if access.access_type == USER_API_KEY:
            has_user_key = await self.keys.has_key(self.user_id, provider_id)

        check = self.subscriptions.can_use_provider(
            provider_id, model_id, has_user_api_key=has_user_key, pending_requests=pending_requests
        )
        if not check.allowed:
            logger.warning(
                "Provider access denied",
                extra={
                    "user_id": self.user_id,
                    "provider": provider_id,
                    "model": model_id,
                    "reason": check.reason,
                },
            )
            raise EntitlementDenied(
                check.reason or "Access denied",
                requires_api_key=check.requires_api_key,
                requires_upgrade=check.requires_upgrade,
            )

        adapter = self.adapter_factory(provider_id)
        if adapter is None:
            raise ConfigurationError(f"No adapter registered for provider '{provider_id}'")

        api_key = await self._resolve_api_key(provider_id, access.access_type)
        if not api_key:
            raise ConfigurationError(f"No API key available for {provider_id}")
        adapter.set_api_key(api_key)

        return PreparedCall(provider_id, model_id, access.access_type, adapter)

    def _operator_key_available(self, provider_id: str, access_type: str) -> bool:
        if provider_id == settings.FREE_TIER_PROVIDER and settings.FREE_TIER_API_KEY:
            return True
        return access_type == PRO_MANAGED and self.subscriptions.is_pro() and bool(
            settings.MANAGED_API_KEYS.get(provider_id)
        )

    async def _resolve_api_key(self, provider_id: str, access_type: str) -> Optional[str]:
        if access_type in (PRO_MANAGED, FREE_TIER):
            managed = await self.subscriptions.get_managed_api_key(provider_id)
            if managed:
                return managed
            if provider_id == settings.FREE_TIER_PROVIDER and settings.FREE_TIER_API_KEY:
                return settings.FREE_TIER_API_KEY
            if access_type == FREE_TIER:
                return None
        # user_api_key access, or a plan provider with no operator key configured
        return await self.keys.decrypt_key(self.user_id, provider_id)

    async def _dispatch(self, prepared: PreparedCall, message: str, options: GenerationOptions) -> AIResponse:
        start = time.monotonic()
        try:
            result = await prepared.adapter.generate_response(message, prepared.model_id, options)
        except SwitchboardError as e:
            latency = int((time.monotonic() - start) * 1000)
            self.health.record_failure(prepared.provider_id, e.error_type, e.message, latency)
            return AIResponse.from_error(prepared.provider_id, prepared.model_id, e, latency)
        except Exception as e:
            # Malformed vendor payloads must not take down a fan-out
            latency = int((time.monotonic() - start) * 1000)
            logger.exception(
                "Unexpected adapter failure",
                extra={"provider": prepared.provider_id, "model": prepared.model_id},
            )
            error = VendorError(f"{prepared.provider_id} returned an unusable response: {e}", provider=prepared.provider_id)
            self.health.record_failure(prepared.provider_id, error.error_type, error.message, latency)
            return AIResponse.from_error(prepared.provider_id, prepared.model_id, error, latency)

        latency = int((time.monotonic() - start) * 1000)
        self.health.record_success(prepared.provider_id, latency)
        return AIResponse(
            id=str(uuid.uuid4()),
            provider_id=prepared.provider_id,
            model_id=prepared.model_id,
            content=result.content,
            tokens=result.tokens,
            cost=result.cost,
            latency=latency,
        )

    def _tracked_stream(self, prepared: PreparedCall, inner: ChatStream, options: GenerationOptions) -> ChatStream:
        async def run(tokens: TokenCounts) -> AsyncIterator[str]:
            start = time.monotonic()
            delivered = completed = False
            try:
                async for text in inner:
                    delivered = True
                    yield text
                completed = True
            except SwitchboardError as e:
                latency = int((time.monotonic() - start) * 1000)
                self.health.record_failure(prepared.provider_id, e.error_type, e.message, latency)
                raise
            finally:
                # Also reached when the consumer stops reading early
                await inner.aclose()
                if completed:
                    self.health.record_success(prepared.provider_id, int((time.monotonic() - start) * 1000))
                if completed or delivered:
                    final = inner.tokens.normalize()
                    tokens.input, tokens.output, tokens.total = final.input, final.output, final.total
                    cost = calculate_cost(prepared.provider_id, prepared.model_id, final.input, final.output)
                    await asyncio.shield(self._record_usage(prepared, final, cost, options))

        return ChatStream(run)

    async def _record_usage(
        self,
        prepared: PreparedCall,
        tokens: TokenCounts,
        cost: float,
        options: GenerationOptions,
    ):
        usage = TokenUsage(
            user_id=self.user_id,
            provider_id=prepared.provider_id,
            model_id=prepared.model_id,
            input_tokens=tokens.input,
            output_tokens=tokens.output,
            total_tokens=tokens.total,
            cost=cost,
            session_id=options.session_id,
            message_id=options.message_id,
        )
        try:
            await self.subscriptions.track_token_usage(usage)
        except SQLAlchemyError as e:
            # The response already reached the vendor's meter; don't fail it here
            await self.db.rollback()
            logger.error(
                "Failed to record token usage",
                extra={
                    "user_id": self.user_id,
                    "provider": prepared.provider_id,
                    "model": prepared.model_id,
                    "total_tokens": tokens.total,
                    "error": str(e),
                },
            )
