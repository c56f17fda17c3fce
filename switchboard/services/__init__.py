"""
Service layer for Switchboard.

Services encapsulate business logic and database operations,
providing a clean interface for routes and other consumers.
"""
from switchboard.services.ai_operations import AIOperationService
from switchboard.services.mcp_service import MCPService
from switchboard.services.provider_key_service import ProviderKeyService
from switchboard.services.provider_router import AIResponse, ProviderRouter, ProviderTarget
from switchboard.services.subscription_service import SubscriptionService

__all__ = [
    "AIOperationService",
    "AIResponse",
    "MCPService",
    "ProviderKeyService",
    "ProviderRouter",
    "ProviderTarget",
    "SubscriptionService",
]
