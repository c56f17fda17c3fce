"""
Per-vendor pricing tables.

Prices are in cents per 1M tokens as (input, output). Costs reported on
responses and in the usage ledger are USD.
"""
from dataclasses import dataclass
from typing import Tuple


@dataclass
class TokenCounts:
    """Token usage for one request. Mutable so streams can fill it in as usage frames arrive."""
    input: int = 0
    output: int = 0
    total: int = 0

    def normalize(self) -> "TokenCounts":
        if not self.total:
            self.total = self.input + self.output
        return self

    def to_dict(self) -> dict:
        return {"input": self.input, "output": self.output, "total": self.total}


PROVIDER_PRICING = {
    "openai": {
        "gpt-4o": (250, 1000),
        "gpt-4o-mini": (15, 60),
        "gpt-4.1": (200, 800),
        "gpt-4.1-mini": (40, 160),
        "gpt-4-turbo": (1000, 3000),
        "gpt-3.5-turbo": (50, 150),
    },
    "anthropic": {
        "claude-3-5-sonnet": (300, 1500),
        "claude-3-haiku": (25, 125),
        "claude-3-opus": (1500, 7500),
    },
    "deepseek": {
        "deepseek-chat": (140, 280),
        "deepseek-coder": (140, 280),
    },
    "grok": {
        "grok-beta": (500, 1500),
        "grok-vision-beta": (500, 1500),
    },
    "mistral": {
        "mistral-large": (400, 1200),
        "mistral-medium": (270, 810),
        "mistral-small": (100, 300),
    },
    "perplexity": {
        "llama-3.1-sonar-small": (20, 20),
        "llama-3.1-sonar-large": (100, 100),
        "llama-3.1-sonar-huge": (500, 500),
    },
    "google": {
        "gemini-pro": (125, 500),
        "gemini-flash": (8, 30),
    },
}

# Unknown models are reported as free rather than guessed
DEFAULT_PRICING = (0, 0)


def get_pricing(provider: str, model: str) -> Tuple[float, float]:
    """Look up (input, output) cents per 1M tokens for a model."""
    provider_pricing = PROVIDER_PRICING.get(provider, {})

    if model in provider_pricing:
        return provider_pricing[model]

    # Dated or suffixed model names; longest pattern wins so "gpt-4o-mini-x" isn't priced as "gpt-4o"
    for model_pattern in sorted(provider_pricing, key=len, reverse=True):
        if model.startswith(model_pattern):
            return provider_pricing[model_pattern]

    return DEFAULT_PRICING


def calculate_cost(provider: str, model: str, input_tokens: int, output_tokens: int) -> float:
    """
    Calculate the USD cost of a request.

    Args:
        provider: Provider id (openai, anthropic, ...)
        model: Model id as sent to the vendor
        input_tokens: Prompt tokens
        output_tokens: Completion tokens

    Returns:
        Cost in USD
    """
    input_price, output_price = get_pricing(provider, model)
    cents = (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price
    return max(cents, 0) / 100
