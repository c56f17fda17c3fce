from typing import Callable, Optional

from switchboard.providers.anthropic import AnthropicAdapter
from switchboard.providers.base import AdapterResult, Attachment, GenerationOptions, ProviderAdapter
from switchboard.providers.google import GoogleAdapter
from switchboard.providers.openai_compat import VENDORS, OpenAICompatibleAdapter
from switchboard.providers.streaming import ChatStream

ADAPTER_FACTORIES: dict[str, Callable[[], ProviderAdapter]] = {
    **{
        provider_id: (lambda vendor=vendor: OpenAICompatibleAdapter(vendor))
        for provider_id, vendor in VENDORS.items()
    },
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
}


def build_adapter(provider_id: str) -> Optional[ProviderAdapter]:
    """Fresh adapter instance; adapters hold a per-request API key."""
    factory = ADAPTER_FACTORIES.get(provider_id)
    return factory() if factory else None


def build_adapters() -> dict[str, ProviderAdapter]:
    return {provider_id: factory() for provider_id, factory in ADAPTER_FACTORIES.items()}


__all__ = [
    "AdapterResult",
    "Attachment",
    "ChatStream",
    "GenerationOptions",
    "ProviderAdapter",
    "build_adapter",
    "build_adapters",
]
