"""
Clients, budgets and budget items

Revision ID: 0002_clients_and_budgets
Revises: 0001_accounts_and_payments
Create Date: 2026-09-14 10:40:00
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002_clients_and_budgets'
down_revision = '0001_accounts_and_payments'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'clients',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('owner_id', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_clients_owner_id', 'clients', ['owner_id'])

    op.create_table(
        'budgets',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('owner_id', sa.String(length=128), nullable=False),
        sa.Column('client_id', sa.String(length=64), sa.ForeignKey('clients.id'), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('public_uuid', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('public_uuid', name='uq_budgets_public_uuid'),
    )
    op.create_index('ix_budgets_owner_id', 'budgets', ['owner_id'])
    op.create_index('ix_budgets_client_id', 'budgets', ['client_id'])
    op.create_index('ix_budgets_created_at', 'budgets', ['created_at'])

    op.create_table(
        'budget_items',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('budget_id', sa.String(length=64), sa.ForeignKey('budgets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(14, 2), nullable=False),
    )
    op.create_index('ix_budget_items_budget_id', 'budget_items', ['budget_id'])


def downgrade() -> None:
    op.drop_index('ix_budget_items_budget_id', table_name='budget_items')
    op.drop_table('budget_items')

    op.drop_index('ix_budgets_created_at', table_name='budgets')
    op.drop_index('ix_budgets_client_id', table_name='budgets')
    op.drop_index('ix_budgets_owner_id', table_name='budgets')
    op.drop_table('budgets')

    op.drop_index('ix_clients_owner_id', table_name='clients')
    op.drop_table('clients')
