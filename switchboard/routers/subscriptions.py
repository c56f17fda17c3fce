"""
Subscription routes: plan catalog, status, usage and plan changes.
"""
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from switchboard.auth import get_current_user_id
from switchboard.database import get_db
from switchboard.plans import PLANS
from switchboard.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/api", tags=["Subscriptions"])


class UpgradeRequest(BaseModel):
    plan_id: str
    payment_method: str
    external_subscription_id: str


async def get_subscription_service(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionService:
    service = SubscriptionService(db)
    await service.load_user_subscription(user_id)
    return service


@router.get("/plans")
async def list_plans():
    return {"plans": [plan.to_dict() for plan in PLANS.values() if plan.is_active]}


@router.get("/subscription")
async def subscription_status(service: SubscriptionService = Depends(get_subscription_service)):
    return service.get_subscription_status()


@router.get("/subscription/usage")
async def subscription_usage(
    period: Literal["day", "week", "month"] = Query("month"),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.get_usage_stats(service.subscription.user_id, period)


@router.post("/subscription/upgrade")
async def upgrade(body: UpgradeRequest, service: SubscriptionService = Depends(get_subscription_service)):
    """
    Switch plans once the payment processor has confirmed the subscription.

    Payment itself is handled by the processor; the caller passes its
    subscription id.
    """
    result = await service.upgrade_subscription(
        service.subscription.user_id,
        body.plan_id,
        body.payment_method,
        body.external_subscription_id,
    )
    if not result.success:
        raise HTTPException(status_code=400, detail=result.error)
    return {"success": True, "subscription_id": result.subscription_id, **service.get_subscription_status()}
