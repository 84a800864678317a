"""create tenancy and billing tables

Revision ID: 001
Revises:
Create Date: 2026-02-20 13:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create tenancy, membership, subscription, metering and catalog tables"""

    op.create_table(
        'tenants',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        *_timestamps()
    )
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('email_verified_at', sa.DateTime, nullable=True),
        sa.Column('onboarding_completed_at', sa.DateTime, nullable=True),
        *_timestamps()
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('context', sa.String(20), nullable=False),
        sa.Column('is_default', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('permissions', sa.JSON, nullable=False),
        *_timestamps()
    )
    op.create_index('ix_roles_slug', 'roles', ['slug'], unique=True)

    op.create_table(
        'tenant_memberships',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role_id', sa.String(36), sa.ForeignKey('roles.id'), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'user_id', name='uq_tenant_memberships_tenant_user'),
    )
    op.create_index('ix_tenant_memberships_tenant_id', 'tenant_memberships', ['tenant_id'])
    op.create_index('ix_tenant_memberships_user_id', 'tenant_memberships', ['user_id'])

    op.create_table(
        'tenant_subscriptions',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('seat_stripe_price_id', sa.String(255), nullable=True),
        sa.Column('usage_stripe_price_id', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('billing_interval', sa.String(20), nullable=False),
        sa.Column('module_slugs', sa.JSON, nullable=False),
        sa.Column('seat_limit', sa.Integer, nullable=False, server_default='0'),
        sa.Column('usage_quota', sa.Integer, nullable=False, server_default='0'),
        sa.Column('trial_ends_at', sa.DateTime, nullable=True),
        sa.Column('read_only_ends_at', sa.DateTime, nullable=True),
        sa.Column('current_period_end', sa.DateTime, nullable=True),
        *_timestamps()
    )
    op.create_index('ix_tenant_subscriptions_stripe_subscription_id', 'tenant_subscriptions',
                    ['stripe_subscription_id'], unique=True)
    op.create_index('idx_tenant_subscriptions_status_read_only', 'tenant_subscriptions',
                    ['status', 'read_only_ends_at'])

    op.create_table(
        'usage_records',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('recorded_at', sa.DateTime, nullable=False),
        *_timestamps(),
        sa.CheckConstraint('quantity > 0', name='ck_usage_records_quantity_positive'),
    )
    op.create_index('idx_usage_records_tenant_recorded', 'usage_records', ['tenant_id', 'recorded_at'])

    op.create_table(
        'seat_snapshots',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('tenant_id', sa.String(36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('seat_count', sa.Integer, nullable=False),
        sa.Column('recorded_at', sa.DateTime, nullable=False),
        *_timestamps()
    )
    op.create_index('idx_seat_snapshots_tenant_recorded', 'seat_snapshots', ['tenant_id', 'recorded_at'])

    op.create_table(
        'checkout_sessions',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('module_slugs', sa.JSON, nullable=False),
        sa.Column('seat_limit', sa.Integer, nullable=False),
        sa.Column('usage_quota', sa.Integer, nullable=False),
        sa.Column('billing_interval', sa.String(20), nullable=False),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        *_timestamps()
    )
    op.create_index('ix_checkout_sessions_session_id', 'checkout_sessions', ['session_id'], unique=True)

    op.create_table(
        'modules',
        sa.Column('id', sa.String(36), primary_key=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('monthly_price_cents', sa.Integer, nullable=False, server_default='0'),
        sa.Column('annual_price_cents', sa.Integer, nullable=False, server_default='0'),
        sa.Column('stripe_monthly_price_id', sa.String(255), nullable=True),
        sa.Column('stripe_annual_price_id', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('sort_order', sa.Integer, nullable=False, server_default='0'),
        *_timestamps()
    )
    op.create_index('ix_modules_slug', 'modules', ['slug'], unique=True)

    op.create_table(
        'app_settings',
        sa.Column('key', sa.String(255), primary_key=True, nullable=False),
        sa.Column('value', sa.Text, nullable=True),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop tenancy and billing tables"""
    op.drop_table('app_settings')
    op.drop_index('ix_modules_slug', table_name='modules')
    op.drop_table('modules')
    op.drop_index('ix_checkout_sessions_session_id', table_name='checkout_sessions')
    op.drop_table('checkout_sessions')
    op.drop_index('idx_seat_snapshots_tenant_recorded', table_name='seat_snapshots')
    op.drop_table('seat_snapshots')
    op.drop_index('idx_usage_records_tenant_recorded', table_name='usage_records')
    op.drop_table('usage_records')
    op.drop_index('idx_tenant_subscriptions_status_read_only', table_name='tenant_subscriptions')
    op.drop_index('ix_tenant_subscriptions_stripe_subscription_id', table_name='tenant_subscriptions')
    op.drop_table('tenant_subscriptions')
    op.drop_index('ix_tenant_memberships_user_id', table_name='tenant_memberships')
    op.drop_index('ix_tenant_memberships_tenant_id', table_name='tenant_memberships')
    op.drop_table('tenant_memberships')
    op.drop_index('ix_roles_slug', table_name='roles')
    op.drop_table('roles')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    op.drop_index('ix_tenants_slug', table_name='tenants')
    op.drop_table('tenants')
