"""Initial promoter ledger schema.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('user_role', sa.String(50), nullable=True),
        sa.Column('used_currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('stripe_connect_account_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('idx_user_status', 'users', ['status'])
    op.create_index('idx_user_role', 'users', ['user_role'])

    op.create_table(
        'campaigns',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('advertiser_id', sa.String(36), sa.ForeignKey('users.uuid'), nullable=False),
        sa.Column('campaign_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('cpv_cents', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_campaign_advertiser_id', 'campaigns', ['advertiser_id'])
    op.create_index('idx_campaign_type', 'campaigns', ['campaign_type'])

    op.create_table(
        'unique_views',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.uuid'), nullable=False),
        sa.Column('promoter_id', sa.String(36), sa.ForeignKey('users.uuid'), nullable=False),
        sa.Column('fingerprint', sa.String(255), nullable=False),
        sa.Column('ip', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('campaign_id', 'promoter_id', 'fingerprint', name='uq_unique_view_fingerprint'),
    )
    op.create_index('idx_unique_view_campaign_id', 'unique_views', ['campaign_id'])
    op.create_index('idx_unique_view_promoter_id', 'unique_views', ['promoter_id'])
    op.create_index('idx_unique_view_created_at', 'unique_views', ['created_at'])

    op.create_table(
        'campaign_earnings_records',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('promoter_id', sa.String(36), sa.ForeignKey('users.uuid'), nullable=False),
        sa.Column('campaign_id', sa.String(36), sa.ForeignKey('campaigns.uuid'), nullable=False),
        sa.Column('earnings_month', sa.Integer(), nullable=False),
        sa.Column('earnings_year', sa.Integer(), nullable=False),
        sa.Column('views_generated', sa.Integer(), nullable=False),
        sa.Column('cpv_cents', sa.Integer(), nullable=False),
        sa.Column('gross_earnings_cents', sa.Integer(), nullable=False),
        sa.Column('platform_fee_cents', sa.Integer(), nullable=False),
        sa.Column('net_earnings_cents', sa.Integer(), nullable=False),
        sa.Column('qualifies_for_payout', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payout_executed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payout_amount_cents', sa.Integer(), nullable=True),
        sa.Column('payout_date', sa.DateTime(), nullable=True),
        sa.Column('payout_transaction_ref', sa.String(255), nullable=True),
        sa.Column('payout_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_payout_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('last_payout_error', sa.Text(), nullable=True),
        sa.Column('last_payout_error_category', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint(
            'promoter_id', 'campaign_id', 'earnings_month', 'earnings_year',
            name='uq_earnings_promoter_campaign_period',
        ),
    )
    op.create_index(
        'idx_earnings_payout_eligibility', 'campaign_earnings_records', ['qualifies_for_payout', 'payout_executed']
    )
    op.create_index('idx_earnings_period', 'campaign_earnings_records', ['earnings_year', 'earnings_month'])
    op.create_index('idx_earnings_promoter_id', 'campaign_earnings_records', ['promoter_id'])

    op.create_table(
        'payout_attempts',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column(
            'earnings_record_id', sa.String(36), sa.ForeignKey('campaign_earnings_records.uuid'), nullable=False
        ),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('error_category', sa.String(50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('transfer_amount_cents', sa.Integer(), nullable=True),
        sa.Column('transfer_currency', sa.String(3), nullable=True),
        sa.Column('exchange_rate', sa.Float(), nullable=True),
        sa.Column('transfer_ref', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('idx_payout_attempt_record_id', 'payout_attempts', ['earnings_record_id'])

    op.create_table(
        'notifications',
        sa.Column('uuid', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.uuid'), nullable=False),
        sa.Column('notification_type', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('campaign_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('read_at', sa.DateTime(), nullable=True),
    )
    op.create_index('idx_notification_user_id', 'notifications', ['user_id'])


def downgrade():
    op.drop_index('idx_notification_user_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('idx_payout_attempt_record_id', table_name='payout_attempts')
    op.drop_table('payout_attempts')
    op.drop_index('idx_earnings_promoter_id', table_name='campaign_earnings_records')
    op.drop_index('idx_earnings_period', table_name='campaign_earnings_records')
    op.drop_index('idx_earnings_payout_eligibility', table_name='campaign_earnings_records')
    op.drop_table('campaign_earnings_records')
    op.drop_index('idx_unique_view_created_at', table_name='unique_views')
    op.drop_index('idx_unique_view_promoter_id', table_name='unique_views')
    op.drop_index('idx_unique_view_campaign_id', table_name='unique_views')
    op.drop_table('unique_views')
    op.drop_index('idx_campaign_type', table_name='campaigns')
    op.drop_index('idx_campaign_advertiser_id', table_name='campaigns')
    op.drop_table('campaigns')
    op.drop_index('idx_user_role', table_name='users')
    op.drop_index('idx_user_status', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
