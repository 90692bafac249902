"""initial entitlements schema

Revision ID: 2026_10_18_0000
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_18_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create entitlement and metering schema."""

    # ========================================================================
    # profiles (created by the identity backend in most deployments)
    # ========================================================================
    op.create_table(
        'profiles',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('plan', sa.String(50), nullable=False, server_default='starter'),
        sa.Column('plan_override', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('has_court_certification', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('court_certified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint("role IN ('user', 'support', 'admin')", name='ck_profile_role'),
    )
    op.create_index(
        'idx_profiles_stripe_customer', 'profiles', ['stripe_customer_id'],
        unique=True, postgresql_where=sa.text('stripe_customer_id IS NOT NULL'),
    )

    # ========================================================================
    # subscription_grants
    # ========================================================================
    op.create_table(
        'subscription_grants',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('plan', sa.String(50), nullable=False),
        sa.Column('minute_limit', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_price_id', sa.String(255), nullable=True),
        sa.Column('superseded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('minute_limit >= 0', name='ck_subscription_minutes_non_negative'),
        sa.CheckConstraint(
            "status IN ('trialing', 'active', 'past_due', 'canceled', 'unpaid', 'incomplete', 'paused')",
            name='ck_subscription_status',
        ),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], name='fk_subscription_grants_profile', ondelete='RESTRICT'),
    )
    op.create_index('ix_subscription_grants_user_id', 'subscription_grants', ['user_id'])
    op.create_index(
        'uq_subscription_current_per_user', 'subscription_grants', ['user_id'],
        unique=True, postgresql_where=sa.text('superseded_at IS NULL'),
    )

    # ========================================================================
    # credit_grants / credit_consumptions
    # ========================================================================
    op.create_table(
        'credit_grants',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('credits_granted', sa.Integer(), nullable=False),
        sa.Column('credits_remaining', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('granted_by', UUID(as_uuid=True), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('source', sa.String(20), nullable=False, server_default='admin'),
        sa.Column('source_event_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('credits_granted > 0', name='ck_credit_granted_positive'),
        sa.CheckConstraint('credits_remaining >= 0', name='ck_credit_remaining_non_negative'),
        sa.CheckConstraint('credits_remaining <= credits_granted', name='ck_credit_remaining_le_granted'),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], name='fk_credit_grants_profile', ondelete='RESTRICT'),
    )
    op.create_index('ix_credit_grants_user_id', 'credit_grants', ['user_id'])
    op.create_index('idx_credit_grants_user_expires', 'credit_grants', ['user_id', 'expires_at'])
    op.create_index(
        'uq_credit_grants_source_event', 'credit_grants', ['source_event_id'],
        unique=True, postgresql_where=sa.text('source_event_id IS NOT NULL'),
    )

    op.create_table(
        'credit_consumptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('grant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('recording_ref', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('quantity > 0', name='ck_consumption_quantity_positive'),
        sa.ForeignKeyConstraint(['grant_id'], ['credit_grants.id'], name='fk_consumptions_grant', ondelete='RESTRICT'),
    )
    op.create_index('ix_credit_consumptions_grant_id', 'credit_consumptions', ['grant_id'])
    op.create_index('ix_credit_consumptions_user_id', 'credit_consumptions', ['user_id'])
    op.create_index(
        'idx_credit_consumptions_recording', 'credit_consumptions', ['user_id', 'recording_ref'],
        postgresql_where=sa.text('recording_ref IS NOT NULL'),
    )

    # ========================================================================
    # court_certifications
    # ========================================================================
    op.create_table(
        'court_certifications',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('granted_by', UUID(as_uuid=True), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('valid', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('source', sa.String(20), nullable=False, server_default='admin'),
        sa.Column('source_event_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], name='fk_court_certifications_profile', ondelete='RESTRICT'),
    )
    op.create_index('ix_court_certifications_user_id', 'court_certifications', ['user_id'])
    op.create_index('idx_court_certifications_user_valid', 'court_certifications', ['user_id', 'valid'])
    op.create_index(
        'uq_court_certifications_source_event', 'court_certifications', ['source_event_id'],
        unique=True, postgresql_where=sa.text('source_event_id IS NOT NULL'),
    )

    # ========================================================================
    # usage_records (append-only)
    # ========================================================================
    op.create_table(
        'usage_records',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('seconds_consumed', sa.BigInteger(), nullable=False),
        sa.Column('minutes_consumed', sa.Integer(), nullable=False),
        sa.Column('recording_ref', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('seconds_consumed >= 0', name='ck_usage_seconds_non_negative'),
        sa.CheckConstraint('minutes_consumed >= 0', name='ck_usage_minutes_non_negative'),
    )
    op.create_index('idx_usage_records_user_created', 'usage_records', ['user_id', 'created_at'])

    # ========================================================================
    # processed_billing_events / admin_actions
    # ========================================================================
    op.create_table(
        'processed_billing_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('outcome', sa.String(20), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_table(
        'admin_actions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('admin_id', UUID(as_uuid=True), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('target_user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_admin_actions_admin_id', 'admin_actions', ['admin_id'])
    op.create_index('idx_admin_actions_target', 'admin_actions', ['target_user_id', 'created_at'])


def downgrade() -> None:
    """Drop entitlement and metering schema."""
    op.drop_table('admin_actions')
    op.drop_table('processed_billing_events')
    op.drop_table('usage_records')
    op.drop_table('court_certifications')
    op.drop_table('credit_consumptions')
    op.drop_table('credit_grants')
    op.drop_table('subscription_grants')
    op.drop_table('profiles')
