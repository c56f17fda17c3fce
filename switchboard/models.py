import time
import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Float, Integer, JSON, String, Text, UniqueConstraint

from switchboard.database import Base


DAY_MS = 24 * 60 * 60 * 1000
BILLING_PERIOD_MS = 30 * DAY_MS


def generate_uuid():
    return str(uuid.uuid4())


def utc_now():
    return datetime.now(timezone.utc)


def now_ms() -> int:
    return int(time.time() * 1000)


class UserSubscription(Base):
    """A user's plan and rolling usage counters. One row per user."""
    __tablename__ = "user_subscriptions"

    user_id = Column(String, primary_key=True)
    plan_id = Column(String, nullable=False, default="free")
    status = Column(String, nullable=False, default="active")  # active, canceled, past_due, trialing
    current_period_start = Column(BigInteger, nullable=False)  # epoch ms
    current_period_end = Column(BigInteger, nullable=False)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)

    # Usage counters, kept flat so they can be incremented in a single UPDATE
    monthly_tokens_used = Column(BigInteger, default=0, nullable=False)
    daily_requests_used = Column(Integer, default=0, nullable=False)
    last_reset_date = Column(BigInteger, nullable=False)

    stripe_subscription_id = Column(String, nullable=True)
    razorpay_subscription_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class TokenUsage(Base):
    """Append-only ledger of dispatched requests."""
    __tablename__ = "token_usage"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=False, index=True)
    model_id = Column(String, nullable=False)
    input_tokens = Column(Integer, default=0, nullable=False)
    output_tokens = Column(Integer, default=0, nullable=False)
    total_tokens = Column(Integer, default=0, nullable=False)
    cost = Column(Float, default=0.0, nullable=False)  # USD
    timestamp = Column(BigInteger, nullable=False, default=now_ms, index=True)
    session_id = Column(String, nullable=True)
    message_id = Column(String, nullable=True)


class UserAISettings(Base):
    """Per-user default provider selection and generation defaults."""
    __tablename__ = "user_ai_settings"

    user_id = Column(String, primary_key=True)
    global_provider = Column(String, nullable=False, default="google")
    global_model = Column(String, nullable=False, default="gemini-flash")
    temperature = Column(Float, nullable=True)
    max_tokens = Column(Integer, nullable=True)
    system_prompt = Column(Text, nullable=True)
    preferences = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class UserProviderKey(Base):
    """A vendor API key the user brought themselves."""
    __tablename__ = "user_provider_keys"
    __table_args__ = (
        UniqueConstraint("user_id", "provider_id", name="uq_user_provider_key"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    provider_id = Column(String, nullable=False)
    encrypted_key = Column(Text, nullable=False)
    key_suffix = Column(String(8), nullable=True)  # Last 4 chars for display
    selected_model = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    last_used_at = Column(DateTime(timezone=True), nullable=True)


class MCPConnection(Base):
    """Stored credentials for one (service, user) tool integration."""
    __tablename__ = "mcp_connections"

    id = Column(String, primary_key=True)  # "{service_id}-{user_id}"
    service_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)
    expires_at = Column(BigInteger, nullable=True)  # epoch ms, null for non-expiring keys
    is_connected = Column(Boolean, default=True, nullable=False)
    last_used = Column(BigInteger, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class OAuthState(Base):
    """Pending OAuth authorization, consumed exactly once by the callback."""
    __tablename__ = "oauth_states"

    id = Column(String, primary_key=True)  # sha256 of the state token
    user_id = Column(String, nullable=False)
    service_id = Column(String, nullable=False)
    created_at = Column(BigInteger, nullable=False, default=now_ms)
    expires_at = Column(BigInteger, nullable=False)
