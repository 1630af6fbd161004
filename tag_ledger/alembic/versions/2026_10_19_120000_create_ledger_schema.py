"""create_ledger_schema

Revision ID: 2026_10_19_120000
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '2026_10_19_120000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

AMOUNT = sa.Numeric(78, 18)


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS ledger")

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tag', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('tag', name='uq_users_tag'),
        schema='ledger',
    )

    op.create_table(
        'tokens',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('symbol', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('chain_key', sa.Text(), nullable=False),
        sa.Column('decimals', sa.Integer(), nullable=False),
        sa.Column('price', AMOUNT, nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_tokens'),
        sa.UniqueConstraint('symbol', name='uq_tokens_symbol'),
        schema='ledger',
    )

    op.create_table(
        'balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_id', sa.Integer(), nullable=False),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('usd_value', AMOUNT, nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['ledger.users.id'], name='fk_balances_user_id_users', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['token_id'], ['ledger.tokens.id'], name='fk_balances_token_id_tokens'),
        sa.PrimaryKeyConstraint('id', name='pk_balances'),
        sa.UniqueConstraint('user_id', 'token_id', name='uq_balances_user_id_token_id'),
        schema='ledger',
    )
    op.create_index('ix_balances_address', 'balances', ['address'], schema='ledger')

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_id', sa.Integer(), nullable=False),
        sa.Column('reference', sa.Text(), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('tx_hash', sa.Text(), nullable=True),
        sa.Column('amount', AMOUNT, nullable=False),
        sa.Column('usd_value', AMOUNT, nullable=False),
        sa.Column('from_address', sa.Text(), nullable=True),
        sa.Column('to_address', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('extra', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['ledger.users.id'], name='fk_transactions_user_id_users', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['token_id'], ['ledger.tokens.id'], name='fk_transactions_token_id_tokens'),
        sa.PrimaryKeyConstraint('id', name='pk_transactions'),
        sa.UniqueConstraint('reference', name='uq_transactions_reference'),
        sa.UniqueConstraint('tx_hash', 'type', name='uq_transactions_tx_hash_type'),
        schema='ledger',
    )
    op.create_index('ix_transactions_user_timestamp', 'transactions', ['user_id', 'timestamp'], schema='ledger')

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('read', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['ledger.users.id'], name='fk_notifications_user_id_users', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_notifications'),
        schema='ledger',
    )
    op.create_index('ix_notifications_user_created', 'notifications', ['user_id', 'created_at'], schema='ledger')

    op.create_table(
        'block_checkpoints',
        sa.Column('chain_key', sa.Text(), nullable=False),
        sa.Column('last_processed_block', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('chain_key', name='pk_block_checkpoints'),
        schema='ledger',
    )


def downgrade() -> None:
    op.drop_table('block_checkpoints', schema='ledger')
    op.drop_index('ix_notifications_user_created', table_name='notifications', schema='ledger')
    op.drop_table('notifications', schema='ledger')
    op.drop_index('ix_transactions_user_timestamp', table_name='transactions', schema='ledger')
    op.drop_table('transactions', schema='ledger')
    op.drop_index('ix_balances_address', table_name='balances', schema='ledger')
    op.drop_table('balances', schema='ledger')
    op.drop_table('tokens', schema='ledger')
    op.drop_table('users', schema='ledger')
