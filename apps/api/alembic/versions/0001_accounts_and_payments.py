"""
Accounts and subscription (payment) records

Revision ID: 0001_accounts_and_payments
Revises: 
Create Date: 2026-09-14 10:05:00
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_accounts_and_payments'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'user_accounts',
        sa.Column('owner_id', sa.String(length=128), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('plan', sa.String(length=16), nullable=False, server_default='free'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint("plan IN ('free', 'pro', 'premium')", name='ck_user_accounts_plan'),
    )
    op.create_index('ix_user_accounts_owner_id', 'user_accounts', ['owner_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('owner_id', sa.String(length=128), nullable=False),
        sa.Column('stripe_customer_id', sa.String(length=128), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=128), nullable=True),
        sa.Column('plan', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('last_event_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint("status IN ('active', 'inactive', 'cancelled')", name='ck_payments_status'),
        sa.UniqueConstraint('stripe_subscription_id', name='uq_payments_stripe_subscription_id'),
    )
    op.create_index('ix_payments_owner_id', 'payments', ['owner_id'])
    op.create_index('ix_payments_stripe_customer_id', 'payments', ['stripe_customer_id'])


def downgrade() -> None:
    op.drop_index('ix_payments_stripe_customer_id', table_name='payments')
    op.drop_index('ix_payments_owner_id', table_name='payments')
    op.drop_table('payments')

    op.drop_index('ix_user_accounts_owner_id', table_name='user_accounts')
    op.drop_table('user_accounts')
