"""
Subscription service - plans, entitlements, quotas and usage accounting.

A ``SubscriptionService`` is built per request around a database session
and the subscription of the user it was loaded for. Access decisions are
recomputed from the plan catalog on every call, so plan changes apply
immediately.

Usage counters live on the subscription row and are only ever changed by a
single UPDATE that increments them in SQL, so overlapping requests for the
same user cannot lose updates. The ``token_usage`` ledger is the audit
trail they are reconciled against.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from switchboard.config import settings
from switchboard.models import BILLING_PERIOD_MS, DAY_MS, TokenUsage, UserSubscription, now_ms
from switchboard.plans import FREE_PLAN_ID, PAID_PLAN_IDS, PLANS, SubscriptionPlan, get_plan

logger = logging.getLogger(__name__)

PRO_MANAGED = "pro_managed"
USER_API_KEY = "user_api_key"
FREE_TIER = "free_tier"

PAYMENT_METHODS = ("stripe", "razorpay")

USAGE_PERIODS_MS = {
    "day": DAY_MS,
    "week": 7 * DAY_MS,
    "month": BILLING_PERIOD_MS,
}


@dataclass
class UsageLimits:
    """Quota snapshot for one provider. 0 for a maximum means no maximum."""
    monthly_tokens: int
    daily_requests: int
    tokens_used: int
    requests_used: int
    last_reset_date: int

    def to_dict(self) -> dict:
        return {
            "monthly_tokens": self.monthly_tokens,
            "daily_requests": self.daily_requests,
            "tokens_used": self.tokens_used,
            "requests_used": self.requests_used,
            "last_reset_date": self.last_reset_date,
        }


@dataclass
class ProConfig:
    allowed_models: frozenset[str]
    priority: int
    is_unlimited: bool


@dataclass
class AIProviderAccess:
    provider_id: str
    access_type: str
    is_active: bool
    limits: Optional[UsageLimits] = None
    pro_config: Optional[ProConfig] = None

    def to_dict(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "access_type": self.access_type,
            "is_active": self.is_active,
            "limits": self.limits.to_dict() if self.limits else None,
            "pro_config": {
                "allowed_models": sorted(self.pro_config.allowed_models),
                "priority": self.pro_config.priority,
                "is_unlimited": self.pro_config.is_unlimited,
            } if self.pro_config else None,
        }


@dataclass
class AccessCheck:
    allowed: bool
    reason: Optional[str] = None
    requires_api_key: bool = False
    requires_upgrade: bool = False

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "requires_api_key": self.requires_api_key,
            "requires_upgrade": self.requires_upgrade,
        }


@dataclass
class UpgradeResult:
    success: bool
    subscription_id: Optional[str] = None
    error: Optional[str] = None


def new_free_subscription(user_id: str, now: Optional[int] = None) -> UserSubscription:
    now = now if now is not None else now_ms()
    return UserSubscription(
        user_id=user_id,
        plan_id=FREE_PLAN_ID,
        status="active",
        current_period_start=now,
        current_period_end=now + BILLING_PERIOD_MS,
        cancel_at_period_end=False,
        monthly_tokens_used=0,
        daily_requests_used=0,
        last_reset_date=now,
    )


class SubscriptionService:
    """Entitlement and usage accounting for a single user."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.subscription: Optional[UserSubscription] = None

    async def load_user_subscription(self, user_id: str) -> UserSubscription:
        """Load the user's subscription, creating a Free one on first access."""
        result = await self.db.execute(
            select(UserSubscription).where(UserSubscription.user_id == user_id)
        )
        subscription = result.scalar_one_or_none()

        if subscription is None:
            subscription = new_free_subscription(user_id)
            self.db.add(subscription)
            try:
                await self.db.commit()
                logger.info("Created free subscription", extra={"user_id": user_id})
            except IntegrityError:
                # A concurrent first request created it
                await self.db.rollback()
                result = await self.db.execute(
                    select(UserSubscription).where(UserSubscription.user_id == user_id)
                )
                subscription = result.scalar_one()

        self.subscription = subscription
        return subscription

    async def refresh(self) -> Optional[UserSubscription]:
        """Re-read the loaded subscription after an out-of-band change."""
        if self.subscription is None:
            return None
        await self.db.refresh(self.subscription)
        return self.subscription

    def get_current_plan(self) -> Optional[SubscriptionPlan]:
        if self.subscription is None:
            return None
        return get_plan(self.subscription.plan_id)

    def is_pro(self) -> bool:
        plan = self.get_current_plan()
        return plan is not None and plan.id in PAID_PLAN_IDS

    def is_enterprise(self) -> bool:
        plan = self.get_current_plan()
        return plan is not None and plan.id == "enterprise"

    def get_available_plans(self) -> list[SubscriptionPlan]:
        return [plan for plan in PLANS.values() if plan.is_active]

    def effective_usage(self, now: Optional[int] = None) -> tuple[int, int, int]:
        """(tokens_used, requests_used, last_reset_date) with elapsed windows treated as reset."""
        sub = self.subscription
        now = now if now is not None else now_ms()
        requests_used = sub.daily_requests_used or 0
        last_reset = sub.last_reset_date
        if now - sub.last_reset_date >= DAY_MS:
            requests_used = 0
            last_reset = now
        tokens_used = sub.monthly_tokens_used or 0
        if now - sub.current_period_start >= BILLING_PERIOD_MS:
            tokens_used = 0
        return tokens_used, requests_used, last_reset

    def get_ai_provider_access(self, user_id: str, provider_id: str, now: Optional[int] = None) -> AIProviderAccess:
        plan = self.get_current_plan()
        if plan is None or self.subscription.user_id != user_id:
            free_plan = PLANS[FREE_PLAN_ID]
            return AIProviderAccess(
                provider_id=provider_id,
                access_type=FREE_TIER,
                is_active=provider_id == settings.FREE_TIER_PROVIDER,
                limits=UsageLimits(
                    monthly_tokens=free_plan.limits.monthly_tokens,
                    daily_requests=free_plan.limits.daily_requests,
                    tokens_used=0,
                    requests_used=0,
                    last_reset_date=now if now is not None else now_ms(),
                ),
            )

        entry = plan.get_provider(provider_id)
        if entry is None:
            # Not in the plan: reachable only with the user's own key
            return AIProviderAccess(provider_id=provider_id, access_type=USER_API_KEY, is_active=False)

        limits = None
        if not entry.is_unlimited:
            tokens_used, requests_used, last_reset = self.effective_usage(now)
            limits = UsageLimits(
                monthly_tokens=entry.monthly_token_allowance,
                daily_requests=plan.limits.daily_requests,
                tokens_used=tokens_used,
                requests_used=requests_used,
                last_reset_date=last_reset,
            )

        return AIProviderAccess(
            provider_id=provider_id,
            access_type=PRO_MANAGED,
            is_active=True,
            limits=limits,
            pro_config=ProConfig(
                allowed_models=entry.model_ids,
                priority=entry.priority,
                is_unlimited=entry.is_unlimited,
            ),
        )

    def can_use_provider(
        self,
        provider_id: str,
        model_id: Optional[str] = None,
        has_user_api_key: bool = False,
        now: Optional[int] = None,
        pending_requests: int = 0,
    ) -> AccessCheck:
        """Gate run before every dispatch.

        ``has_user_api_key`` tells the gate the user stored a key for this
        provider, which opens providers outside the plan. ``pending_requests``
        counts calls already admitted but not yet recorded, as in a fan-out.
        """
        user_id = self.subscription.user_id if self.subscription else ""
        access = self.get_ai_provider_access(user_id, provider_id, now=now)

        if not access.is_active:
            if access.access_type == USER_API_KEY:
                if has_user_api_key:
                    return AccessCheck(allowed=True)
                return AccessCheck(
                    allowed=False,
                    requires_api_key=True,
                    requires_upgrade=not self.is_pro(),
                    reason="Please provide your API key for this provider",
                )
            return AccessCheck(
                allowed=False,
                requires_upgrade=True,
                reason="Upgrade to Pro to access this AI provider",
            )

        if access.access_type == PRO_MANAGED and model_id and access.pro_config:
            if model_id not in access.pro_config.allowed_models:
                return AccessCheck(
                    allowed=False,
                    requires_upgrade=True,
                    reason="This model requires a higher tier subscription",
                )

        limits = access.limits
        if limits is not None:
            if limits.daily_requests > 0 and limits.requests_used + pending_requests >= limits.daily_requests:
                return AccessCheck(
                    allowed=False,
                    requires_upgrade=not self.is_enterprise(),
                    reason=f"Daily request limit of {limits.daily_requests} reached. Upgrade for higher limits.",
                )
            if limits.monthly_tokens > 0 and limits.tokens_used >= limits.monthly_tokens:
                return AccessCheck(
                    allowed=False,
                    requires_upgrade=not self.is_enterprise(),
                    reason=f"Monthly token limit of {limits.monthly_tokens} reached. Upgrade for higher limits.",
                )

        return AccessCheck(allowed=True)

    async def track_token_usage(self, usage: TokenUsage, now: Optional[int] = None) -> None:
        """Count a completed request against the user's quotas and append it to the ledger.

        Elapsed daily/monthly windows are rolled inside the same UPDATE, and
        the counter change and ledger insert commit together.
        """
        now = now if now is not None else now_ms()
        if usage.timestamp is None:
            usage.timestamp = now
        if not usage.total_tokens:
            usage.total_tokens = (usage.input_tokens or 0) + (usage.output_tokens or 0)

        day_elapsed = UserSubscription.last_reset_date <= now - DAY_MS
        period_elapsed = UserSubscription.current_period_start <= now - BILLING_PERIOD_MS

        await self.db.execute(
            update(UserSubscription)
            .where(UserSubscription.user_id == usage.user_id)
            .values(
                daily_requests_used=case(
                    (day_elapsed, 1),
                    else_=UserSubscription.daily_requests_used + 1,
                ),
                last_reset_date=case((day_elapsed, now), else_=UserSubscription.last_reset_date),
                monthly_tokens_used=case(
                    (period_elapsed, usage.total_tokens),
                    else_=UserSubscription.monthly_tokens_used + usage.total_tokens,
                ),
                current_period_start=case(
                    (period_elapsed, now), else_=UserSubscription.current_period_start
                ),
                current_period_end=case(
                    (period_elapsed, now + BILLING_PERIOD_MS),
                    else_=UserSubscription.current_period_end,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.add(usage)
        await self.db.commit()

        if self.subscription is not None and self.subscription.user_id == usage.user_id:
            # Streams finish after the request scope may have closed the session
            if self.subscription in self.db:
                await self.db.refresh(self.subscription)
            else:
                self.subscription = await self.db.get(UserSubscription, usage.user_id)

    async def get_usage_stats(self, user_id: str, period: str = "month") -> dict:
        if period not in USAGE_PERIODS_MS:
            raise ValueError(f"Unknown usage period '{period}'")
        start = now_ms() - USAGE_PERIODS_MS[period]

        result = await self.db.execute(
            select(
                TokenUsage.provider_id,
                func.count(TokenUsage.id),
                func.coalesce(func.sum(TokenUsage.total_tokens), 0),
                func.coalesce(func.sum(TokenUsage.cost), 0.0),
            )
            .where(TokenUsage.user_id == user_id, TokenUsage.timestamp >= start)
            .group_by(TokenUsage.provider_id)
        )

        stats = {
            "period": period,
            "total_tokens": 0,
            "total_requests": 0,
            "total_cost": 0.0,
            "provider_breakdown": {},
        }
        for provider_id, requests, tokens, cost in result.all():
            stats["total_tokens"] += int(tokens)
            stats["total_requests"] += int(requests)
            stats["total_cost"] += float(cost)
            stats["provider_breakdown"][provider_id] = {
                "tokens": int(tokens),
                "requests": int(requests),
                "cost": float(cost),
            }
        return stats

    async def reconcile_usage(self, user_id: str) -> dict:
        """Compare the monthly counter with the ledger for the current billing period."""
        subscription = await self.db.get(UserSubscription, user_id, populate_existing=True)
        if subscription is None:
            raise ValueError(f"No subscription for user {user_id}")

        result = await self.db.execute(
            select(func.coalesce(func.sum(TokenUsage.total_tokens), 0)).where(
                TokenUsage.user_id == user_id,
                TokenUsage.timestamp >= subscription.current_period_start,
            )
        )
        ledger_tokens = int(result.scalar_one())
        counter_tokens = int(subscription.monthly_tokens_used or 0)
        return {
            "user_id": user_id,
            "period_start": subscription.current_period_start,
            "ledger_tokens": ledger_tokens,
            "counter_tokens": counter_tokens,
            "drift": counter_tokens - ledger_tokens,
        }

    async def upgrade_subscription(
        self,
        user_id: str,
        plan_id: str,
        payment_method: str,
        external_subscription_id: str,
    ) -> UpgradeResult:
        """Move a user onto a plan after the payment processor has confirmed it."""
        plan = get_plan(plan_id)
        if plan is None or not plan.is_active:
            return UpgradeResult(success=False, error="Invalid plan selected")
        if payment_method not in PAYMENT_METHODS:
            return UpgradeResult(success=False, error=f"Unsupported payment method '{payment_method}'")
        if not external_subscription_id:
            return UpgradeResult(success=False, error="Missing payment processor subscription id")

        if self.subscription is None or self.subscription.user_id != user_id:
            await self.load_user_subscription(user_id)

        now = now_ms()
        sub = self.subscription
        previous_plan = sub.plan_id
        sub.plan_id = plan.id
        sub.status = "active"
        sub.current_period_start = now
        sub.current_period_end = now + BILLING_PERIOD_MS
        sub.cancel_at_period_end = False
        sub.monthly_tokens_used = 0
        sub.daily_requests_used = 0
        sub.last_reset_date = now
        if payment_method == "stripe":
            sub.stripe_subscription_id = external_subscription_id
        else:
            sub.razorpay_subscription_id = external_subscription_id
        await self.db.commit()

        logger.info(
            "Subscription plan changed",
            extra={"user_id": user_id, "from_plan": previous_plan, "to_plan": plan.id},
        )
        return UpgradeResult(success=True, subscription_id=external_subscription_id)

    async def get_managed_api_key(self, provider_id: str) -> Optional[str]:
        """Operator-held key for pro_managed access. None for non-paying users."""
        if not self.is_pro():
            return None
        return settings.MANAGED_API_KEYS.get(provider_id) or None

    def get_subscription_status(self) -> dict:
        plan = self.get_current_plan()
        sub = self.subscription
        if sub is None or plan is None:
            return {"plan": None, "status": "none"}

        tokens_used, requests_used, _ = self.effective_usage()
        return {
            "plan": plan.to_dict(),
            "status": sub.status,
            "is_pro": self.is_pro(),
            "is_enterprise": self.is_enterprise(),
            "current_period_start": sub.current_period_start,
            "current_period_end": sub.current_period_end,
            "cancel_at_period_end": sub.cancel_at_period_end,
            "usage": {
                "monthly_tokens_used": tokens_used,
                "daily_requests_used": requests_used,
                "monthly_tokens_limit": plan.limits.monthly_tokens,
                "daily_requests_limit": plan.limits.daily_requests,
            },
        }
