"""
Provider and model catalog.

Static metadata for every vendor the router can dispatch to. Adding a model
or a vendor is a data change here; routing code reads the catalog and never
names a model itself.
"""
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    description: str = ""
    context_length: int = 8192
    max_tokens: int = 4096
    supports_streaming: bool = True
    supports_vision: bool = False


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str
    description: str
    models: tuple[ModelInfo, ...]
    capabilities: tuple[str, ...] = field(default_factory=tuple)
    website: str = ""

    def get_model(self, model_id: str) -> Optional[ModelInfo]:
        for model in self.models:
            if model.id == model_id:
                return model
        return None

    @property
    def model_ids(self) -> list[str]:
        return [m.id for m in self.models]


PROVIDERS: dict[str, ProviderInfo] = {
    "openai": ProviderInfo(
        id="openai",
        name="OpenAI",
        description="GPT models for chat, reasoning and vision",
        website="https://openai.com",
        capabilities=("text", "images", "files", "streaming"),
        models=(
            ModelInfo("gpt-4o", "GPT-4o", "Flagship multimodal model", 128000, 4096, supports_vision=True),
            ModelInfo("gpt-4o-mini", "GPT-4o Mini", "Fast, inexpensive multimodal model", 128000, 4096, supports_vision=True),
            ModelInfo("gpt-4.1", "GPT-4.1", "Long-context model", 1000000, 8192, supports_vision=True),
            ModelInfo("gpt-4.1-mini", "GPT-4.1 Mini", "Smaller GPT-4.1", 1000000, 4096, supports_vision=True),
            ModelInfo("gpt-4-turbo", "GPT-4 Turbo", "Previous flagship", 128000, 4096, supports_vision=True),
            ModelInfo("gpt-3.5-turbo", "GPT-3.5 Turbo", "Legacy chat model", 16385, 4096),
        ),
    ),
    "anthropic": ProviderInfo(
        id="anthropic",
        name="Anthropic",
        description="Claude models with strong reasoning",
        website="https://anthropic.com",
        capabilities=("text", "images", "reasoning", "streaming"),
        models=(
            ModelInfo("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", "Balanced intelligence and speed", 200000, 8192, supports_vision=True),
            ModelInfo("claude-3-haiku-20240307", "Claude 3 Haiku", "Fastest Claude model", 200000, 4096, supports_vision=True),
            ModelInfo("claude-3-opus-20240229", "Claude 3 Opus", "Most capable Claude 3 model", 200000, 4096, supports_vision=True),
        ),
    ),
    "deepseek": ProviderInfo(
        id="deepseek",
        name="DeepSeek",
        description="Open-weight chat and coding models",
        website="https://deepseek.com",
        capabilities=("text", "coding", "streaming"),
        models=(
            ModelInfo("deepseek-chat", "DeepSeek Chat", "General chat model", 64000, 4096),
            ModelInfo("deepseek-coder", "DeepSeek Coder", "Code generation model", 64000, 4096),
        ),
    ),
    "grok": ProviderInfo(
        id="grok",
        name="xAI Grok",
        description="Grok models from xAI",
        website="https://x.ai",
        capabilities=("text", "images", "streaming"),
        models=(
            ModelInfo("grok-beta", "Grok Beta", "General chat model", 131072, 4096),
            ModelInfo("grok-vision-beta", "Grok Vision Beta", "Image understanding", 8192, 4096, supports_vision=True),
        ),
    ),
    "mistral": ProviderInfo(
        id="mistral",
        name="Mistral",
        description="Mistral AI hosted models",
        website="https://mistral.ai",
        capabilities=("text", "coding", "streaming"),
        models=(
            ModelInfo("mistral-large-latest", "Mistral Large", "Top-tier reasoning", 128000, 8192),
            ModelInfo("mistral-medium-latest", "Mistral Medium", "Balanced model", 32000, 8192),
            ModelInfo("mistral-small-latest", "Mistral Small", "Low-latency model", 32000, 8192),
        ),
    ),
    "perplexity": ProviderInfo(
        id="perplexity",
        name="Perplexity",
        description="Search-augmented answers",
        website="https://perplexity.ai",
        capabilities=("text", "search", "streaming"),
        models=(
            ModelInfo("llama-3.1-sonar-large-128k-online", "Sonar Large (Online)", "Web-grounded large model", 127072, 4096),
            ModelInfo("llama-3.1-sonar-small-128k-online", "Sonar Small (Online)", "Web-grounded small model", 127072, 4096),
        ),
    ),
    "google": ProviderInfo(
        id="google",
        name="Google Gemini",
        description="Gemini models, available on every plan",
        website="https://ai.google.dev",
        capabilities=("text", "images", "files", "streaming"),
        models=(
            ModelInfo("gemini-pro", "Gemini Pro", "Most capable Gemini model", 2000000, 8192, supports_vision=True),
            ModelInfo("gemini-flash", "Gemini Flash", "Fast Gemini model", 1000000, 8192, supports_vision=True),
        ),
    ),
}


def get_provider(provider_id: str) -> Optional[ProviderInfo]:
    return PROVIDERS.get(provider_id)


def get_provider_name(provider_id: str) -> str:
    provider = PROVIDERS.get(provider_id)
    return provider.name if provider else provider_id.title()
