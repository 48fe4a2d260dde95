"""Initial migration - create payment_links table

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
        'payment_links',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False, server_default='mxmerchant'),
        sa.Column('provider_link_ref', sa.String(255), nullable=True),
        sa.Column('provider_invoice_ref', sa.String(255), nullable=True),
        sa.Column('checkout_url', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='created'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('invoice_json', sa.Text(), nullable=False),
        sa.Column('customer_json', sa.Text(), nullable=False),
        sa.Column('line_items_json', sa.Text(), nullable=True),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('paid_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('balance', sa.Numeric(12, 2), nullable=True),
        sa.Column('payment_method', sa.String(100), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('unknown_event_type', sa.String(255), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('partially_paid_at', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('event_history_json', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('sms_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('sms_message_id', sa.String(255), nullable=True),
        sa.Column('sms_sent_at', sa.DateTime(), nullable=True),
        sa.Column('email_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('email_message_id', sa.String(255), nullable=True),
        sa.Column('email_sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('ttl', sa.Integer(), nullable=False),
    )

    op.create_index('ix_payment_links_status', 'payment_links', ['status'])
    op.create_index('ix_payment_links_provider_link_ref', 'payment_links', ['provider_link_ref'])
    op.create_index('ix_payment_links_provider_invoice_ref', 'payment_links', ['provider_invoice_ref'])
    op.create_index('ix_payment_links_created_at', 'payment_links', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_payment_links_created_at', table_name='payment_links')
    op.drop_index('ix_payment_links_provider_invoice_ref', table_name='payment_links')
    op.drop_index('ix_payment_links_provider_link_ref', table_name='payment_links')
    op.drop_index('ix_payment_links_status', table_name='payment_links')
    op.drop_table('payment_links')
