import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _require_env(key: str) -> str:
    """Get required environment variable or raise error."""
    value = os.getenv(key)
    if not value:
        raise ValueError(f"{key} environment variable is required")
    return value


# provider -> (env override, default base URL)
PROVIDER_URL_DEFAULTS = {
    "openai": ("OPENAI_BASE_URL", "https://api.openai.com/v1"),
    "anthropic": ("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1"),
    "deepseek": ("DEEPSEEK_BASE_URL", "https://api.deepseek.com/v1"),
    "grok": ("GROK_BASE_URL", "https://api.x.ai/v1"),
    "mistral": ("MISTRAL_BASE_URL", "https://api.mistral.ai/v1"),
    "perplexity": ("PERPLEXITY_BASE_URL", "https://api.perplexity.ai"),
    "google": ("GOOGLE_AI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"),
}


def default_provider_urls() -> dict[str, str]:
    return {provider: url for provider, (_, url) in PROVIDER_URL_DEFAULTS.items()}


def _provider_urls() -> dict[str, str]:
    return {provider: os.getenv(env, url) for provider, (env, url) in PROVIDER_URL_DEFAULTS.items()}


def _managed_keys() -> dict[str, str]:
    keys = {}
    for provider in ("openai", "anthropic", "deepseek", "grok", "mistral", "perplexity", "google"):
        value = os.getenv(f"MANAGED_{provider.upper()}_API_KEY", "")
        if value:
            keys[provider] = value
    return keys


class Settings:
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
    DATABASE_URL: str = _require_env("DATABASE_URL")
    # No default: an empty key means credentials cannot be persisted
    ENCRYPTION_KEY: str = os.getenv("ENCRYPTION_KEY", "")
    JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_EXPIRATION_HOURS: int = int(os.getenv("JWT_EXPIRATION_HOURS", "24"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Server settings
    DEFAULT_PORT: int = int(os.getenv("PORT", "8780"))
    DEFAULT_HOST: str = os.getenv("HOST", "127.0.0.1")
    APP_URL: str = os.getenv("APP_URL", "http://127.0.0.1:8780")

    # Provider base URLs
    PROVIDER_URLS: dict = _provider_urls()

    # Seconds; reasoning-heavy vendors get more headroom
    DEFAULT_PROVIDER_TIMEOUT: float = float(os.getenv("DEFAULT_PROVIDER_TIMEOUT", "60"))
    PROVIDER_TIMEOUTS = {
        "openai": 120.0,
        "anthropic": 120.0,
        "deepseek": 180.0,
        "perplexity": 90.0,
    }

    # The provider every user can reach, paid for with the operator's key
    FREE_TIER_PROVIDER: str = "google"
    FREE_TIER_API_KEY: str = os.getenv("GEMINI_API_KEY", "")

    # Operator-held keys used for pro_managed access
    MANAGED_API_KEYS: dict = _managed_keys()

    # MCP OAuth clients
    GOOGLE_CLIENT_ID: str = os.getenv("GOOGLE_CLIENT_ID", "")
    GOOGLE_CLIENT_SECRET: str = os.getenv("GOOGLE_CLIENT_SECRET", "")
    NOTION_CLIENT_ID: str = os.getenv("NOTION_CLIENT_ID", "")
    NOTION_CLIENT_SECRET: str = os.getenv("NOTION_CLIENT_SECRET", "")
    OAUTH_STATE_TTL_SECONDS: int = int(os.getenv("OAUTH_STATE_TTL_SECONDS", "600"))
    MCP_TIMEOUT: float = float(os.getenv("MCP_TIMEOUT", "30"))

    def provider_timeout(self, provider_id: str) -> float:
        return self.PROVIDER_TIMEOUTS.get(provider_id, self.DEFAULT_PROVIDER_TIMEOUT)

    def service_account_token(self, service_id: str) -> Optional[str]:
        """Operator-held credential for a service-account MCP integration."""
        env_key = "MCP_SERVICE_ACCOUNT_" + service_id.upper().replace("-", "_")
        return os.getenv(env_key) or None


settings = Settings()
