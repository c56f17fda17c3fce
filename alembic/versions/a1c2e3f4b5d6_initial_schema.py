"""initial schema

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c2e3f4b5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Counters live on the subscription row so they can be bumped in one UPDATE
    op.create_table(
        'user_subscriptions',
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('plan_id', sa.String(), nullable=False, server_default='free'),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('current_period_start', sa.BigInteger(), nullable=False),
        sa.Column('current_period_end', sa.BigInteger(), nullable=False),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('monthly_tokens_used', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('daily_requests_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_reset_date', sa.BigInteger(), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(), nullable=True),
        sa.Column('razorpay_subscription_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('user_id')
    )

    op.create_table(
        'token_usage',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('provider_id', sa.String(), nullable=False),
        sa.Column('model_id', sa.String(), nullable=False),
        sa.Column('input_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('output_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_tokens', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('timestamp', sa.BigInteger(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=True),
        sa.Column('message_id', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_token_usage_user_id', 'token_usage', ['user_id'])
    op.create_index('ix_token_usage_provider_id', 'token_usage', ['provider_id'])
    op.create_index('ix_token_usage_timestamp', 'token_usage', ['timestamp'])

    op.create_table(
        'user_ai_settings',
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('global_provider', sa.String(), nullable=False, server_default='google'),
        sa.Column('global_model', sa.String(), nullable=False, server_default='gemini-flash'),
        sa.Column('temperature', sa.Float(), nullable=True),
        sa.Column('max_tokens', sa.Integer(), nullable=True),
        sa.Column('system_prompt', sa.Text(), nullable=True),
        sa.Column('preferences', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('user_id')
    )

    op.create_table(
        'user_provider_keys',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('provider_id', sa.String(), nullable=False),
        sa.Column('encrypted_key', sa.Text(), nullable=False),
        sa.Column('key_suffix', sa.String(length=8), nullable=True),
        sa.Column('selected_model', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'provider_id', name='uq_user_provider_key')
    )
    op.create_index('ix_user_provider_keys_user_id', 'user_provider_keys', ['user_id'])

    op.create_table(
        'mcp_connections',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('service_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('encrypted_access_token', sa.Text(), nullable=False),
        sa.Column('encrypted_refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.BigInteger(), nullable=True),
        sa.Column('is_connected', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_used', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_mcp_connections_user_id', 'mcp_connections', ['user_id'])

    op.create_table(
        'oauth_states',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('service_id', sa.String(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('expires_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )


def downgrade() -> None:
    op.drop_table('oauth_states')
    op.drop_index('ix_mcp_connections_user_id', table_name='mcp_connections')
    op.drop_table('mcp_connections')
    op.drop_index('ix_user_provider_keys_user_id', table_name='user_provider_keys')
    op.drop_table('user_provider_keys')
    op.drop_table('user_ai_settings')
    op.drop_index('ix_token_usage_timestamp', table_name='token_usage')
    op.drop_index('ix_token_usage_provider_id', table_name='token_usage')
    op.drop_index('ix_token_usage_user_id', table_name='token_usage')
    op.drop_table('token_usage')
    op.drop_table('user_subscriptions')
