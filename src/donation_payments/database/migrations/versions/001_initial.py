"""Initial migration - create tenant, donation, webhook marker and payout tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'churches',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=True, unique=True),
        sa.Column('country', sa.String(2), nullable=False, server_default='US'),
        sa.Column('onboarding_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'stripe_connect_accounts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('church_id', sa.String(36), sa.ForeignKey('churches.id'), nullable=False, unique=True),
        sa.Column('stripe_account_id', sa.String(255), nullable=False, unique=True),
        sa.Column('charges_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payouts_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('details_submitted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'donation_types',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('church_id', sa.String(36), sa.ForeignKey('churches.id'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('church_id', 'name', name='uq_donation_types_church_id_name'),
    )
    op.create_index('ix_donation_types_church_id', 'donation_types', ['church_id'])

    op.create_table(
        'donors',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('church_id', sa.String(36), sa.ForeignKey('churches.id'), nullable=False),
        sa.Column('member_id', sa.String(36), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('address_line1', sa.String(200), nullable=True),
        sa.Column('address_line2', sa.String(200), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(50), nullable=True),
        sa.Column('postal_code', sa.String(20), nullable=True),
        sa.Column('country', sa.String(2), nullable=True),
        sa.Column('is_phone_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_donors_church_id', 'donors', ['church_id'])

    op.create_table(
        'donation_transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('church_id', sa.String(36), sa.ForeignKey('churches.id'), nullable=False),
        sa.Column('donor_id', sa.String(36), sa.ForeignKey('donors.id'), nullable=True),
        sa.Column('donation_type_id', sa.String(36), sa.ForeignKey('donation_types.id'), nullable=False),
        sa.Column('donor_clerk_id', sa.String(255), nullable=True),
        sa.Column('donor_name', sa.String(255), nullable=True),
        sa.Column('donor_email', sa.String(255), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('charged_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_method_type', sa.String(50), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(255), nullable=True, unique=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=False, unique=True),
        sa.Column('processing_fee_covered_by_donor', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('platform_fee', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_international', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('donor_country', sa.String(2), nullable=True),
        sa.Column('donor_language', sa.String(10), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('refunded_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('dispute_status', sa.String(50), nullable=True),
        sa.Column('dispute_reason', sa.String(100), nullable=True),
        sa.Column('disputed_at', sa.DateTime(), nullable=True),
        sa.Column('transaction_date', sa.DateTime(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_donation_transactions_church_id', 'donation_transactions', ['church_id'])
    op.create_index('ix_donation_transactions_donation_type_id', 'donation_transactions', ['donation_type_id'])
    op.create_index('ix_donation_transactions_status', 'donation_transactions', ['status'])
    op.create_index('ix_donation_transactions_transaction_date', 'donation_transactions', ['transaction_date'])
    op.create_index(
        'ix_donation_transactions_church_id_status',
        'donation_transactions',
        ['church_id', 'status'],
    )

    op.create_table(
        'transaction_history',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('transaction_id', sa.String(36), sa.ForeignKey('donation_transactions.id'), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('previous_status', sa.String(20), nullable=True),
        sa.Column('new_status', sa.String(20), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=True),
        sa.Column('stripe_event_id', sa.String(255), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_transaction_history_transaction_id', 'transaction_history', ['transaction_id'])

    op.create_table(
        'processed_webhook_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('stripe_event_id', sa.String(255), nullable=False, unique=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_processed_webhook_events_expires_at', 'processed_webhook_events', ['expires_at'])

    op.create_table(
        'payout_summaries',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('stripe_payout_id', sa.String(255), nullable=False, unique=True),
        sa.Column('church_id', sa.String(36), sa.ForeignKey('churches.id'), nullable=False),
        sa.Column('payout_date', sa.DateTime(), nullable=False),
        sa.Column('arrival_date', sa.DateTime(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='usd'),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('transaction_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('gross_volume', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_fees', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_refunds', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_disputes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Integer(), nullable=False),
        sa.Column('reconciled_at', sa.DateTime(), nullable=True),
        sa.Column('details_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_payout_summaries_church_id', 'payout_summaries', ['church_id'])
    op.create_index('ix_payout_summaries_status', 'payout_summaries', ['status'])
    op.create_index(
        'ix_payout_summaries_church_id_payout_date',
        'payout_summaries',
        ['church_id', 'payout_date'],
    )


def downgrade() -> None:
    op.drop_table('payout_summaries')
    op.drop_table('processed_webhook_events')
    op.drop_table('transaction_history')
    op.drop_table('donation_transactions')
    op.drop_table('donors')
    op.drop_table('donation_types')
    op.drop_table('stripe_connect_accounts')
    op.drop_table('churches')
