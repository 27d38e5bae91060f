"""create affiliate ledger tables

Revision ID: 20261019_120000
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_120000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Affiliates
    op.create_table(
        'affiliates',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('owner_account_id', sa.BigInteger(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('affiliate_code', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 2), server_default='10.00', nullable=False),
        sa.Column('total_earnings', sa.Numeric(12, 2), server_default='0.00', nullable=False),
        sa.Column('total_referrals', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_visits', sa.Integer(), server_default='0', nullable=False),
        sa.Column('payout_email', sa.String(length=255), nullable=True),
        sa.Column('payout_method', sa.String(length=20), server_default='paypal', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('total_earnings >= 0', name='ck_affiliates_earnings_non_negative'),
        sa.CheckConstraint(
            'commission_rate >= 0 AND commission_rate <= 100',
            name='ck_affiliates_commission_rate_range'
        ),
    )
    op.create_index('ix_affiliates_owner_account_id', 'affiliates', ['owner_account_id'], unique=True)
    op.create_index('ix_affiliates_affiliate_code', 'affiliates', ['affiliate_code'], unique=True)
    op.create_index('ix_affiliates_status', 'affiliates', ['status'])

    # Visits
    op.create_table(
        'affiliate_visits',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('affiliate_id', sa.BigInteger(), nullable=True),
        sa.Column('affiliate_code', sa.String(length=64), nullable=True),
        sa.Column('page_url', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('country', sa.String(length=64), nullable=True),
        sa.Column('device_type', sa.String(length=20), nullable=True),
        sa.Column('browser', sa.String(length=50), nullable=True),
        sa.Column('converted', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_affiliate_visits_affiliate_id', 'affiliate_visits', ['affiliate_id'])
    op.create_index('ix_affiliate_visits_converted', 'affiliate_visits', ['converted'])

    # Referrals
    op.create_table(
        'affiliate_referrals',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('affiliate_id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.String(length=255), nullable=False),
        sa.Column('referred_account_id', sa.BigInteger(), nullable=True),
        sa.Column('order_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('commission_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('conversion_type', sa.String(length=20), server_default='purchase', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('reviewed_by', sa.BigInteger(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('affiliate_id', 'order_id', name='uq_affiliate_referrals_affiliate_order'),
    )
    op.create_index('ix_affiliate_referrals_affiliate_id', 'affiliate_referrals', ['affiliate_id'])
    op.create_index('ix_affiliate_referrals_status', 'affiliate_referrals', ['status'])
    op.create_index('ix_affiliate_referrals_created_at', 'affiliate_referrals', ['created_at'])

    # Withdrawals
    op.create_table(
        'affiliate_withdrawals',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('affiliate_id', sa.BigInteger(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(length=20), nullable=False),
        sa.Column('payout_destination', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('transaction_ref', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('processed_by', sa.BigInteger(), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ondelete='CASCADE'),
        sa.CheckConstraint('amount > 0', name='ck_affiliate_withdrawals_amount_positive'),
    )
    op.create_index('ix_affiliate_withdrawals_affiliate_id', 'affiliate_withdrawals', ['affiliate_id'])
    op.create_index('ix_affiliate_withdrawals_status', 'affiliate_withdrawals', ['status'])


def downgrade() -> None:
    op.drop_table('affiliate_withdrawals')
    op.drop_table('affiliate_referrals')
    op.drop_table('affiliate_visits')
    op.drop_table('affiliates')
