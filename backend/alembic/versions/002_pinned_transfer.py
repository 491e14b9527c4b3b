"""Pin the converted transfer and key sequence on earnings records.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('campaign_earnings_records', sa.Column('pending_transfer_amount_cents', sa.Integer(), nullable=True))
    op.add_column('campaign_earnings_records', sa.Column('pending_transfer_currency', sa.String(3), nullable=True))
    op.add_column('campaign_earnings_records', sa.Column('pending_exchange_rate', sa.Float(), nullable=True))
    op.add_column(
        'campaign_earnings_records',
        sa.Column('transfer_sequence', sa.Integer(), nullable=False, server_default='0'),
    )


def downgrade():
    op.drop_column('campaign_earnings_records', 'transfer_sequence')
    op.drop_column('campaign_earnings_records', 'pending_exchange_rate')
    op.drop_column('campaign_earnings_records', 'pending_transfer_currency')
    op.drop_column('campaign_earnings_records', 'pending_transfer_amount_cents')
