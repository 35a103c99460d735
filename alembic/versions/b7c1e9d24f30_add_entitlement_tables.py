"""Add entitlement tables

Revision ID: b7c1e9d24f30
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'b7c1e9d24f30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create user_usage table (one row per account, created at signup)
    op.create_table('user_usage',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('supabase_user_id', sa.String(), nullable=False),
        sa.Column('plan', sa.String(length=50), nullable=False, server_default='free'),
        sa.Column('prompts_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('enhancements_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('prompts_saved', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('period_anchor', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('prompts_saved >= 0', name='ck_user_usage_prompts_saved_non_negative'),
    )
    op.create_index(op.f('ix_user_usage_id'), 'user_usage', ['id'], unique=False)
    op.create_index(op.f('ix_user_usage_supabase_user_id'), 'user_usage', ['supabase_user_id'], unique=True)
    op.create_index('ix_user_usage_period_end', 'user_usage', ['period_end'], unique=False)

    # Create ai_models table (model registry)
    op.create_table('ai_models',
        sa.Column('id', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('provider', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('tier', sa.Enum('FREE', 'PRO', 'TEAM', 'ENTERPRISE', name='modeltier'), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('coming_soon', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('max_prompt_length', sa.Integer(), nullable=True),
        sa.Column('api_key_env_var', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_ai_models_id'), 'ai_models', ['id'], unique=False)
    op.create_index(op.f('ix_ai_models_tier'), 'ai_models', ['tier'], unique=False)

    # Create stripe_webhooks table (idempotency and auditing of webhook events)
    op.create_table('stripe_webhooks',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('supabase_user_id', sa.String(), nullable=True),
        sa.Column('plan', sa.String(length=50), nullable=True),
        sa.Column('subscription_status', sa.String(length=50), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=True),
        sa.Column('webhook_timestamp', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id'),
    )
    op.create_index(op.f('ix_stripe_webhooks_id'), 'stripe_webhooks', ['id'], unique=False)
    op.create_index(op.f('ix_stripe_webhooks_event_id'), 'stripe_webhooks', ['event_id'], unique=False)
    op.create_index(op.f('ix_stripe_webhooks_stripe_customer_id'), 'stripe_webhooks', ['stripe_customer_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_stripe_webhooks_stripe_customer_id'), table_name='stripe_webhooks')
    op.drop_index(op.f('ix_stripe_webhooks_event_id'), table_name='stripe_webhooks')
    op.drop_index(op.f('ix_stripe_webhooks_id'), table_name='stripe_webhooks')
    op.drop_table('stripe_webhooks')

    op.drop_index(op.f('ix_ai_models_tier'), table_name='ai_models')
    op.drop_index(op.f('ix_ai_models_id'), table_name='ai_models')
    op.drop_table('ai_models')

    op.drop_index('ix_user_usage_period_end', table_name='user_usage')
    op.drop_index(op.f('ix_user_usage_supabase_user_id'), table_name='user_usage')
    op.drop_index(op.f('ix_user_usage_id'), table_name='user_usage')
    op.drop_table('user_usage')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS modeltier')
