"""
Processed Stripe events, for duplicate delivery suppression

Revision ID: 0003_billing_events
Revises: 0002_clients_and_budgets
Create Date: 2026-09-29 15:12:00
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0003_billing_events'
down_revision = '0002_clients_and_budgets'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'billing_events',
        sa.Column('id', sa.String(length=128), primary_key=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('billing_events')
