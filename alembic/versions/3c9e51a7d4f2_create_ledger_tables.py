"""create_ledger_tables

Creates the four ledger tables: tier_membership, tier_budget,
budget_request and ledger_transaction.

Revision ID: 3c9e51a7d4f2
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c9e51a7d4f2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'tier_membership',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('child_kind', sa.String(length=20), nullable=False),
        sa.Column('child_id', sa.String(length=64), nullable=False),
        sa.Column('parent_kind', sa.String(length=20), nullable=False),
        sa.Column('parent_id', sa.String(length=64), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'child_kind', 'child_id', 'parent_kind', 'parent_id',
            name='uq_tier_membership_pair',
        ),
    )

    op.create_table(
        'tier_budget',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tier_kind', sa.String(length=20), nullable=False),
        sa.Column('tier_id', sa.String(length=64), nullable=False),
        sa.Column('fiscal_year', sa.Integer(), nullable=False),
        sa.Column('parent_kind', sa.String(length=20), nullable=True),
        sa.Column('parent_id', sa.String(length=64), nullable=True),
        sa.Column('total_allocation', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('remaining_balance', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tier_kind', 'tier_id', 'fiscal_year', name='uq_tier_budget_tier_year'),
        sa.CheckConstraint('remaining_balance >= 0', name='ck_tier_budget_remaining_nonneg'),
        sa.CheckConstraint(
            'remaining_balance <= total_allocation', name='ck_tier_budget_remaining_le_total'
        ),
    )
    op.create_index(
        'ix_tier_budget_parent', 'tier_budget', ['parent_kind', 'parent_id', 'fiscal_year']
    )

    op.create_table(
        'budget_request',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('requester_kind', sa.String(length=20), nullable=False),
        sa.Column('requester_id', sa.String(length=64), nullable=False),
        sa.Column('target_kind', sa.String(length=20), nullable=False),
        sa.Column('target_id', sa.String(length=64), nullable=False),
        sa.Column('fiscal_year', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('decided_by', sa.String(length=64), nullable=True),
        sa.Column('decision_notes', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='ck_budget_request_amount_pos'),
    )
    op.create_index(
        'ix_budget_request_target_status', 'budget_request',
        ['target_kind', 'target_id', 'status'],
    )
    op.create_index(
        'ix_budget_request_requester', 'budget_request', ['requester_kind', 'requester_id']
    )

    op.create_table(
        'ledger_transaction',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tier_kind', sa.String(length=20), nullable=False),
        sa.Column('tier_id', sa.String(length=64), nullable=False),
        sa.Column('fiscal_year', sa.Integer(), nullable=False),
        sa.Column('counterpart_kind', sa.String(length=20), nullable=True),
        sa.Column('counterpart_id', sa.String(length=64), nullable=True),
        sa.Column('transaction_type', sa.String(length=30), nullable=False),
        sa.Column('amount', sa.Numeric(15, 2), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('idempotency_key', sa.String(length=128), nullable=False),
        sa.Column('leg', sa.String(length=10), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=True),
        sa.Column('related_transaction_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['request_id'], ['budget_request.id']),
        sa.ForeignKeyConstraint(['related_transaction_id'], ['ledger_transaction.id']),
        sa.UniqueConstraint('idempotency_key', 'leg', name='uq_ledger_transaction_key_leg'),
    )
    op.create_index(
        'ix_ledger_transaction_tier', 'ledger_transaction',
        ['tier_kind', 'tier_id', 'occurred_at'],
    )


def downgrade() -> None:
    op.drop_index('ix_ledger_transaction_tier', table_name='ledger_transaction')
    op.drop_table('ledger_transaction')
    op.drop_index('ix_budget_request_requester', table_name='budget_request')
    op.drop_index('ix_budget_request_target_status', table_name='budget_request')
    op.drop_table('budget_request')
    op.drop_index('ix_tier_budget_parent', table_name='tier_budget')
    op.drop_table('tier_budget')
    op.drop_table('tier_membership')
