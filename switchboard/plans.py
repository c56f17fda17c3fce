"""
Subscription plan catalog.

Plans are immutable data. A user's access to a provider is always derived
from the plan the user is on at the moment of the request.
"""
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class PlanProvider:
    """A provider included in a plan, paid for with the operator's key."""
    provider_id: str
    model_ids: frozenset[str]
    monthly_token_allowance: int
    is_unlimited: bool = False
    priority: int = 1


@dataclass(frozen=True)
class PlanLimits:
    # 0 means unlimited
    monthly_tokens: int
    daily_requests: int
    max_concurrent_chats: int
    max_file_size_mb: int
    max_files_per_chat: int


@dataclass(frozen=True)
class SubscriptionPlan:
    id: str
    name: str
    display_name: str
    price_monthly: float
    price_yearly: float
    ai_providers: tuple[PlanProvider, ...]
    limits: PlanLimits
    features: tuple[str, ...] = field(default_factory=tuple)
    is_active: bool = True

    def get_provider(self, provider_id: str) -> Optional[PlanProvider]:
        for entry in self.ai_providers:
            if entry.provider_id == provider_id:
                return entry
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "price": {"monthly": self.price_monthly, "yearly": self.price_yearly},
            "features": list(self.features),
            "ai_providers": [
                {
                    "provider_id": p.provider_id,
                    "model_ids": sorted(p.model_ids),
                    "monthly_token_allowance": p.monthly_token_allowance,
                    "is_unlimited": p.is_unlimited,
                    "priority": p.priority,
                }
                for p in self.ai_providers
            ],
            "limits": {
                "monthly_tokens": self.limits.monthly_tokens,
                "daily_requests": self.limits.daily_requests,
                "max_concurrent_chats": self.limits.max_concurrent_chats,
                "max_file_size_mb": self.limits.max_file_size_mb,
                "max_files_per_chat": self.limits.max_files_per_chat,
            },
        }


_PRO_MODELS = {
    "openai": frozenset({"gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo"}),
    "anthropic": frozenset({"claude-3-5-sonnet-20241022", "claude-3-haiku-20240307"}),
    "deepseek": frozenset({"deepseek-chat", "deepseek-coder"}),
    "google": frozenset({"gemini-pro", "gemini-flash"}),
}

FREE_PLAN_ID = "free"
PAID_PLAN_IDS = frozenset({"pro", "enterprise"})

PLANS: dict[str, SubscriptionPlan] = {
    "free": SubscriptionPlan(
        id="free",
        name="Free",
        display_name="Free Plan",
        price_monthly=0,
        price_yearly=0,
        features=(
            "Basic AI chat with Gemini",
            "100 messages per day",
            "Basic file attachments",
            "Community support",
        ),
        ai_providers=(
            PlanProvider("google", frozenset({"gemini-flash"}), 50_000, priority=1),
        ),
        limits=PlanLimits(50_000, 100, 1, 5, 3),
    ),
    "pro": SubscriptionPlan(
        id="pro",
        name="Pro",
        display_name="Pro Plan",
        price_monthly=20,
        price_yearly=200,
        features=(
            "Access to OpenAI, Anthropic, DeepSeek and Gemini",
            "Higher daily limits",
            "Advanced file processing",
            "MCP integrations",
            "Priority support",
        ),
        ai_providers=(
            PlanProvider("openai", _PRO_MODELS["openai"], 1_000_000, priority=5),
            PlanProvider("anthropic", _PRO_MODELS["anthropic"], 500_000, priority=5),
            PlanProvider("deepseek", _PRO_MODELS["deepseek"], 2_000_000, priority=4),
            PlanProvider("google", _PRO_MODELS["google"], 1_000_000, priority=4),
        ),
        limits=PlanLimits(5_000_000, 10_000, 10, 100, 20),
    ),
    "enterprise": SubscriptionPlan(
        id="enterprise",
        name="Enterprise",
        display_name="Enterprise Plan",
        price_monthly=100,
        price_yearly=1000,
        features=(
            "Everything in Pro",
            "Unlimited AI usage",
            "Team collaboration",
            "SSO integration",
            "Dedicated support",
        ),
        ai_providers=(
            PlanProvider("openai", _PRO_MODELS["openai"], 0, is_unlimited=True, priority=10),
            PlanProvider("anthropic", _PRO_MODELS["anthropic"], 0, is_unlimited=True, priority=10),
            PlanProvider("deepseek", _PRO_MODELS["deepseek"], 0, is_unlimited=True, priority=8),
            PlanProvider("google", _PRO_MODELS["google"], 0, is_unlimited=True, priority=8),
        ),
        limits=PlanLimits(0, 0, 50, 500, 100),
    ),
}


def get_plan(plan_id: str) -> Optional[SubscriptionPlan]:
    return PLANS.get(plan_id)
