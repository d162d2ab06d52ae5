"""billing reconciliation schema

Revision ID: 0001_billing_reconciliation
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_billing_reconciliation'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Create accounts, subscriber records, usage, purchases, webhook log and admin log."""

    # 1. Accounts and auth sessions
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_is_admin'), 'users', ['is_admin'], unique=False)

    op.create_table(
        'user_sessions',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('refresh_expires_at', sa.DateTime(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_sessions_user_id'), 'user_sessions', ['user_id'], unique=False)
    op.create_index(op.f('ix_user_sessions_expires_at'), 'user_sessions', ['expires_at'], unique=False)

    # 2. Subscriber records (one per email)
    op.create_table(
        'subscribers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('external_customer_id', sa.String(), nullable=True),
        sa.Column('subscribed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('tier', sa.String(), nullable=False, server_default='Free Trial'),
        sa.Column('period_start', sa.DateTime(), nullable=True),
        sa.Column('period_end', sa.DateTime(), nullable=True),
        sa.Column('next_reset_date', sa.DateTime(), nullable=True),
        sa.Column('last_event_at', sa.DateTime(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('account_status', sa.String(), nullable=False, server_default='active'),
        sa.Column('unlimited_override', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paused_at', sa.DateTime(), nullable=True),
        sa.Column('paused_by', sa.String(), nullable=True),
        sa.Column('pause_reason', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint(
            'period_start IS NULL OR period_end IS NULL OR period_start < period_end',
            name='ck_subscribers_period_order'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_subscribers_id'), 'subscribers', ['id'], unique=False)
    op.create_index(op.f('ix_subscribers_email'), 'subscribers', ['email'], unique=True)
    op.create_index(op.f('ix_subscribers_external_customer_id'), 'subscribers', ['external_customer_id'], unique=False)
    op.create_index(op.f('ix_subscribers_subscribed'), 'subscribers', ['subscribed'], unique=False)
    op.create_index(op.f('ix_subscribers_next_reset_date'), 'subscribers', ['next_reset_date'], unique=False)

    # 3. Usage counters
    op.create_table(
        'usage_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('billing_period', sa.String(), nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=True),
        sa.Column('submissions_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', 'billing_period', name='uq_usage_counters_email_period')
    )
    op.create_index(op.f('ix_usage_counters_id'), 'usage_counters', ['id'], unique=False)
    op.create_index(op.f('ix_usage_counters_email'), 'usage_counters', ['email'], unique=False)

    # 4. Purchased submission packs
    op.create_table(
        'purchased_credits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('submissions_purchased', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('provider_session_id', sa.String(), nullable=False),
        sa.Column('amount_total', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_session_id', name='uq_purchased_credits_provider_session_id')
    )
    op.create_index(op.f('ix_purchased_credits_id'), 'purchased_credits', ['id'], unique=False)
    op.create_index(op.f('ix_purchased_credits_email'), 'purchased_credits', ['email'], unique=False)
    op.create_index(op.f('ix_purchased_credits_status'), 'purchased_credits', ['status'], unique=False)

    # 5. Processed webhook events (dedup by provider event id)
    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider_event_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('event_created_at', sa.DateTime(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('payload', JSONType, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_event_id', name='uq_webhook_events_provider_event_id')
    )
    op.create_index(op.f('ix_webhook_events_id'), 'webhook_events', ['id'], unique=False)
    op.create_index(op.f('ix_webhook_events_provider_event_id'), 'webhook_events', ['provider_event_id'], unique=False)
    op.create_index(op.f('ix_webhook_events_event_type'), 'webhook_events', ['event_type'], unique=False)
    op.create_index(op.f('ix_webhook_events_received_at'), 'webhook_events', ['received_at'], unique=False)

    # 6. Admin action log (append-only)
    op.create_table(
        'admin_actions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_email', sa.String(), nullable=False),
        sa.Column('target_email', sa.String(), nullable=False),
        sa.Column('action_type', sa.String(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('details', JSONType, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_admin_actions_id'), 'admin_actions', ['id'], unique=False)
    op.create_index(op.f('ix_admin_actions_actor_email'), 'admin_actions', ['actor_email'], unique=False)
    op.create_index(op.f('ix_admin_actions_target_email'), 'admin_actions', ['target_email'], unique=False)
    op.create_index(op.f('ix_admin_actions_action_type'), 'admin_actions', ['action_type'], unique=False)
    op.create_index(op.f('ix_admin_actions_created_at'), 'admin_actions', ['created_at'], unique=False)

    # 7. Account-owned content (deletion cascade targets)
    op.create_table(
        'rubrics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_email', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_rubrics_id'), 'rubrics', ['id'], unique=False)
    op.create_index(op.f('ix_rubrics_owner_email'), 'rubrics', ['owner_email'], unique=False)

    op.create_table(
        'custom_gpts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_custom_gpts_id'), 'custom_gpts', ['id'], unique=False)
    op.create_index(op.f('ix_custom_gpts_owner_email'), 'custom_gpts', ['owner_email'], unique=False)

    op.create_table(
        'custom_gpt_files',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('custom_gpt_id', sa.Integer(), nullable=False),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['custom_gpt_id'], ['custom_gpts.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_custom_gpt_files_id'), 'custom_gpt_files', ['id'], unique=False)
    op.create_index(op.f('ix_custom_gpt_files_custom_gpt_id'), 'custom_gpt_files', ['custom_gpt_id'], unique=False)


def downgrade() -> None:
    """Drop the billing reconciliation schema."""
    op.drop_table('custom_gpt_files')
    op.drop_table('custom_gpts')
    op.drop_table('rubrics')
    op.drop_table('admin_actions')
    op.drop_table('webhook_events')
    op.drop_table('purchased_credits')
    op.drop_table('usage_counters')
    op.drop_table('subscribers')
    op.drop_table('user_sessions')
    op.drop_table('users')
