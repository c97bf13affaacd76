"""Transactions and queue checkpoints.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Transactions table
    op.create_table(
        'transactions',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('user_address', sa.String(42), nullable=False),
        sa.Column('chain_id', sa.String(20), nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('method', sa.String(100), nullable=False),
        sa.Column('args', sa.JSON(), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=True, index=True),
        sa.Column('queue_cursor', sa.String(64), nullable=True),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        sa.Column('nonce', sa.BigInteger(), nullable=True),
        sa.Column('status', sa.Enum(
            'PENDING_SIGN', 'PENDING', 'CONFIRMED', 'FAILED', 'REORGED',
            name='txstatus'
        ), nullable=False, default='PENDING_SIGN'),
        sa.Column('created_at', sa.DateTime(), default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )
    op.create_index('ix_transactions_chain_status', 'transactions', ['chain_id', 'status'])
    op.create_index('ix_transactions_user_address', 'transactions', ['user_address'])

    # Submission queue checkpoints
    op.create_table(
        'queue_checkpoints',
        sa.Column('name', sa.String(100), primary_key=True),
        sa.Column('cursor', sa.String(64), nullable=False),
        sa.Column('updated_at', sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('queue_checkpoints')
    op.drop_index('ix_transactions_user_address', table_name='transactions')
    op.drop_index('ix_transactions_chain_status', table_name='transactions')
    op.drop_table('transactions')

    # Drop enums
    op.execute("DROP TYPE IF EXISTS txstatus")
