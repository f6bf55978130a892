"""initial ledger schema

Revision ID: 2026_09_01_0000
Revises:
Create Date: 2026-09-01 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '2026_09_01_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create ledger, payment and affiliate tables."""

    # ========================================================================
    # users
    # ========================================================================
    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=True, unique=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('role', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('referral_code', sa.String(64), nullable=True, unique=True),
        sa.Column('referred_by_id', UUID(as_uuid=True), nullable=True),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False, server_default='10.00'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('commission_rate >= 0 AND commission_rate <= 100', name='ck_user_commission_rate'),
        sa.ForeignKeyConstraint(['referred_by_id'], ['users.id'], name='fk_users_referred_by', ondelete='SET NULL'),
    )
    op.create_index('ix_users_referred_by_id', 'users', ['referred_by_id'])

    # ========================================================================
    # sites
    # ========================================================================
    op.create_table(
        'sites',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('domain', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('has_game_screenshots', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('has_bonus_code_feed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_sites_user', ondelete='CASCADE'),
    )
    op.create_index('ix_sites_user_id', 'sites', ['user_id'])

    # ========================================================================
    # balance_accounts
    # ========================================================================
    op.create_table(
        'balance_accounts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('ledger_kind', sa.String(20), nullable=False),
        sa.Column('balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('lifetime', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('balance >= 0', name='ck_balance_non_negative'),
        sa.CheckConstraint('lifetime >= 0', name='ck_lifetime_non_negative'),
        sa.UniqueConstraint('user_id', 'ledger_kind', name='uq_balance_account_user_kind'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_balance_accounts_user', ondelete='CASCADE'),
    )

    # ========================================================================
    # payments
    # ========================================================================
    op.create_table(
        'payments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('site_id', UUID(as_uuid=True), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(20), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_type', sa.String(20), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('gateway_order_id', sa.String(64), nullable=True, unique=True),
        sa.Column('gateway_capture_id', sa.String(64), nullable=True),
        sa.Column('metadata', JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('amount >= 0', name='ck_payment_amount_non_negative'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_payments_user', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], name='fk_payments_site', ondelete='SET NULL'),
    )
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_gateway_capture_id', 'payments', ['gateway_capture_id'])
    op.create_index('idx_payments_status', 'payments', ['status'])
    op.create_index('idx_payments_created_at', 'payments', ['created_at'])

    # ========================================================================
    # ledger_transactions
    # ========================================================================
    op.create_table(
        'ledger_transactions',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('account_id', UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('ledger_kind', sa.String(20), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('cost_currency', sa.String(20), nullable=True),
        sa.Column('payment_id', UUID(as_uuid=True), nullable=True),
        sa.Column('site_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('amount <> 0', name='ck_transaction_amount_non_zero'),
        sa.CheckConstraint('balance_after >= 0', name='ck_transaction_balance_non_negative'),
        sa.ForeignKeyConstraint(['account_id'], ['balance_accounts.id'], name='fk_ledger_transactions_account', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], name='fk_ledger_transactions_payment', ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], name='fk_ledger_transactions_site', ondelete='SET NULL'),
    )
    op.create_index('ix_ledger_transactions_user_id', 'ledger_transactions', ['user_id'])
    op.create_index('ix_ledger_transactions_payment_id', 'ledger_transactions', ['payment_id'])
    op.create_index('idx_ledger_transactions_account_created', 'ledger_transactions', ['account_id', 'created_at'])
    op.create_index('idx_ledger_transactions_kind', 'ledger_transactions', ['kind'])

    # ========================================================================
    # subscriptions
    # ========================================================================
    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('site_id', UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column('plan', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('monthly_rate', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(20), nullable=False, server_default='USD'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('next_billing_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_payment_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_payment_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('auto_renew', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_subscriptions_user', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], name='fk_subscriptions_site', ondelete='CASCADE'),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])

    # ========================================================================
    # affiliate_commissions
    # ========================================================================
    op.create_table(
        'affiliate_commissions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('referrer_id', UUID(as_uuid=True), nullable=False),
        sa.Column('referred_user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('payment_id', UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column('subscription_id', UUID(as_uuid=True), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('percentage', sa.Numeric(5, 2), nullable=False),
        sa.Column('payment_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(20), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.CheckConstraint('amount >= 0', name='ck_commission_amount_non_negative'),
        sa.CheckConstraint('percentage >= 0 AND percentage <= 100', name='ck_commission_percentage_range'),
        sa.ForeignKeyConstraint(['referrer_id'], ['users.id'], name='fk_commissions_referrer', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['referred_user_id'], ['users.id'], name='fk_commissions_referred_user', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], name='fk_commissions_payment', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], name='fk_commissions_subscription', ondelete='SET NULL'),
    )
    op.create_index('ix_affiliate_commissions_referrer_id', 'affiliate_commissions', ['referrer_id'])
    op.create_index('ix_affiliate_commissions_referred_user_id', 'affiliate_commissions', ['referred_user_id'])
    op.create_index('idx_affiliate_commissions_status', 'affiliate_commissions', ['status'])

    # ========================================================================
    # notifications
    # ========================================================================
    op.create_table(
        'notifications',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('link', sa.String(500), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_notifications_user', ondelete='CASCADE'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    """Drop all ledger tables."""
    op.drop_table('notifications')
    op.drop_table('affiliate_commissions')
    op.drop_table('subscriptions')
    op.drop_table('ledger_transactions')
    op.drop_table('payments')
    op.drop_table('balance_accounts')
    op.drop_table('sites')
    op.drop_table('users')
