"""
Service health: encryption status and provider health.
"""
from fastapi import APIRouter, Request

from switchboard.services.provider_health import provider_health

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(request: Request):
    encryption_status = getattr(request.app.state, "encryption_status", None)
    providers = provider_health.get_summary()

    if encryption_status and encryption_status.get("status") == "error":
        overall_status = "degraded"
    elif not providers.get("all_healthy", True):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "service": "switchboard",
        "checks": {
            "encryption": encryption_status or {"status": "unknown"},
            "providers": providers,
        },
    }


@router.get("/api/health-status")
async def provider_health_status():
    return provider_health.get_summary()
