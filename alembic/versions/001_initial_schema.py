"""Initial schema: wallets, balances, key custody, transactions and audit.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

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
    # Wallets table
    op.create_table(
        'wallets',
        sa.Column('id', sa.String(24), nullable=False),
        sa.Column('principal_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_wallets_principal_id', 'wallets', ['principal_id'])
    op.create_index(
        'ix_wallets_principal_default', 'wallets', ['principal_id'], unique=True,
        sqlite_where=sa.text('is_default'), postgresql_where=sa.text('is_default')
    )

    # Balances table (amounts in integer cents)
    op.create_table(
        'balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('wallet_id', sa.String(24), nullable=False),
        sa.Column('asset', sa.String(20), nullable=False),
        sa.Column('available', sa.BigInteger(), nullable=False),
        sa.Column('locked', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('available >= 0', name='ck_balances_available_non_negative'),
        sa.CheckConstraint('locked >= 0', name='ck_balances_locked_non_negative')
    )
    op.create_index('ix_balances_wallet_asset', 'balances', ['wallet_id', 'asset'], unique=True)

    # Mnemonic records table
    op.create_table(
        'mnemonic_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('principal_id', sa.String(64), nullable=False),
        sa.Column('wallet_id', sa.String(24), nullable=False),
        sa.Column('network', sa.String(32), nullable=False),
        sa.Column('encrypted_mnemonic', sa.Text(), nullable=False),
        sa.Column('next_index', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_mnemonic_records_principal_id', 'mnemonic_records', ['principal_id'], unique=True)

    # Derived addresses table
    op.create_table(
        'derived_addresses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('wallet_id', sa.String(24), nullable=False),
        sa.Column('principal_id', sa.String(64), nullable=False),
        sa.Column('mnemonic_record_id', sa.Integer(), nullable=False),
        sa.Column('asset', sa.String(20), nullable=False),
        sa.Column('network', sa.String(32), nullable=False),
        sa.Column('address', sa.String(42), nullable=False),
        sa.Column('derivation_index', sa.Integer(), nullable=False),
        sa.Column('derivation_path', sa.String(100), nullable=False),
        sa.Column('label', sa.String(100), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id']),
        sa.ForeignKeyConstraint(['mnemonic_record_id'], ['mnemonic_records.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_derived_addresses_principal_id', 'derived_addresses', ['principal_id'])
    op.create_index('ix_derived_addresses_address', 'derived_addresses', ['address'])
    op.create_index(
        'ix_derived_addresses_wallet_asset_network_address', 'derived_addresses',
        ['wallet_id', 'asset', 'network', 'address'], unique=True
    )
    op.create_index(
        'ix_derived_addresses_default', 'derived_addresses', ['wallet_id', 'asset', 'network'],
        unique=True, sqlite_where=sa.text('is_default'), postgresql_where=sa.text('is_default')
    )

    # Transactions table
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('wallet_id', sa.String(24), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('asset', sa.String(20), nullable=False),
        sa.Column('network', sa.String(32), nullable=True),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('fee', sa.BigInteger(), nullable=False),
        sa.Column('from_asset', sa.String(20), nullable=True),
        sa.Column('to_asset', sa.String(20), nullable=True),
        sa.Column('amount_out', sa.BigInteger(), nullable=True),
        sa.Column('from_address', sa.String(42), nullable=True),
        sa.Column('to_address', sa.String(42), nullable=True),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('memo', sa.Text(), nullable=True),
        sa.Column('tx_hash', sa.String(66), nullable=True),
        sa.Column('confirmations', sa.Integer(), nullable=True),
        sa.Column('chain_id', sa.Integer(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash')
    )
    op.create_index('ix_transactions_wallet_id', 'transactions', ['wallet_id'])
    op.create_index('ix_transactions_wallet_created', 'transactions', ['wallet_id', 'created_at'])

    # Audit logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('principal_id', sa.String(64), nullable=True),
        sa.Column('wallet_id', sa.String(24), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_principal_created', 'audit_logs', ['principal_id', 'created_at'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('transactions')
    op.drop_table('derived_addresses')
    op.drop_table('mnemonic_records')
    op.drop_table('balances')
    op.drop_table('wallets')
