"""create_billing_tables

Revision ID: 3f1c2a9b7d10
Revises:
Create Date: 2026-10-18 09:12:31.402118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c2a9b7d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('accounts',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('plan_key', sa.String(length=20), server_default='free', nullable=False),
        sa.Column('plan_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('plan_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('entitlement_keys', sa.JSON(), nullable=True),
        sa.Column('entitlements_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_accounts'))
    )
    op.create_index(op.f('ix_accounts_id'), 'accounts', ['id'], unique=False)
    op.create_index(op.f('ix_accounts_email'), 'accounts', ['email'], unique=False)
    op.create_index(op.f('ix_accounts_stripe_customer_id'), 'accounts', ['stripe_customer_id'], unique=True)

    op.create_table('subscriptions',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.BigInteger(), nullable=False),
        sa.Column('is_current', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('plan', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('billing_cycle', sa.String(length=10), server_default='monthly', nullable=False),
        sa.Column('currency', sa.String(length=3), server_default='USD', nullable=False),
        sa.Column('amount_cents', sa.Integer(), server_default='0', nullable=False),
        sa.Column('mrr_cents', sa.Integer(), server_default='0', nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('trial_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('entitlements', sa.JSON(), nullable=False),
        sa.Column('projects_created', sa.Integer(), server_default='0', nullable=False),
        sa.Column('ai_tutor_minutes_used', sa.Integer(), server_default='0', nullable=False),
        sa.Column('code_executions_used', sa.Integer(), server_default='0', nullable=False),
        sa.Column('storage_used_mb', sa.Integer(), server_default='0', nullable=False),
        sa.Column('usage_reset_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('company_info', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('last_event_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('superseded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name=op.f('fk_subscriptions_account_id_accounts'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_subscriptions')),
        sa.UniqueConstraint('stripe_subscription_id', name=op.f('uq_subscriptions_stripe_subscription_id'))
    )
    op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)
    op.create_index(op.f('ix_subscriptions_account_id'), 'subscriptions', ['account_id'], unique=False)
    op.create_index(op.f('ix_subscriptions_plan'), 'subscriptions', ['plan'], unique=False)
    op.create_index(op.f('ix_subscriptions_status'), 'subscriptions', ['status'], unique=False)
    op.create_index(op.f('ix_subscriptions_stripe_customer_id'), 'subscriptions', ['stripe_customer_id'], unique=False)
    op.create_index('idx_subscription_period_end', 'subscriptions', ['current_period_end'], unique=False)
    op.create_index('idx_subscription_status_plan', 'subscriptions', ['status', 'plan'], unique=False)
    # One current row per account and per processor customer; superseded rows stay for audit
    op.create_index(
        'uq_subscriptions_current_account', 'subscriptions', ['account_id'],
        unique=True, postgresql_where=sa.text('is_current'),
    )
    op.create_index(
        'uq_subscriptions_current_customer', 'subscriptions', ['stripe_customer_id'],
        unique=True, postgresql_where=sa.text('is_current AND stripe_customer_id IS NOT NULL'),
    )

    op.create_table('processed_webhook_events',
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_kind', sa.String(length=50), nullable=False),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('event_id', name=op.f('pk_processed_webhook_events'))
    )

    op.create_table('pending_webhook_events',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=False),
        sa.Column('event_kind', sa.String(length=50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_pending_webhook_events')),
        sa.UniqueConstraint('event_id', name=op.f('uq_pending_webhook_events_event_id'))
    )
    op.create_index(op.f('ix_pending_webhook_events_id'), 'pending_webhook_events', ['id'], unique=False)
    op.create_index(op.f('ix_pending_webhook_events_stripe_subscription_id'), 'pending_webhook_events', ['stripe_subscription_id'], unique=False)
    op.create_index('idx_pending_event_expires', 'pending_webhook_events', ['expires_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_pending_event_expires', table_name='pending_webhook_events')
    op.drop_index(op.f('ix_pending_webhook_events_stripe_subscription_id'), table_name='pending_webhook_events')
    op.drop_index(op.f('ix_pending_webhook_events_id'), table_name='pending_webhook_events')
    op.drop_table('pending_webhook_events')

    op.drop_table('processed_webhook_events')

    op.drop_index('uq_subscriptions_current_customer', table_name='subscriptions')
    op.drop_index('uq_subscriptions_current_account', table_name='subscriptions')
    op.drop_index('idx_subscription_status_plan', table_name='subscriptions')
    op.drop_index('idx_subscription_period_end', table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_stripe_customer_id'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_status'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_plan'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_account_id'), table_name='subscriptions')
    op.drop_index(op.f('ix_subscriptions_id'), table_name='subscriptions')
    op.drop_table('subscriptions')

    op.drop_index(op.f('ix_accounts_stripe_customer_id'), table_name='accounts')
    op.drop_index(op.f('ix_accounts_email'), table_name='accounts')
    op.drop_index(op.f('ix_accounts_id'), table_name='accounts')
    op.drop_table('accounts')
