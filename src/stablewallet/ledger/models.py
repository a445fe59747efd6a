"""SQLAlchemy models for the wallet ledger."""

import json
import secrets
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from stablewallet.amounts import ZERO, from_cents, to_cents
from stablewallet.crypto import SecretEnvelope


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Cents(TypeDecorator):
    """Decimal amount stored as integer cents.

    Keeps SQL-side arithmetic (``available + :amt``) and comparisons exact.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_cents(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_cents(value)


class TransactionType(str, Enum):
    """Kind of ledger-affecting transaction."""

    TOPUP = "TOPUP"
    SEND = "SEND"
    RECEIVE = "RECEIVE"
    SWAP = "SWAP"


class TransactionStatus(str, Enum):
    """Status of a transaction. Only PENDING may change."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def generate_wallet_id() -> str:
    """24 hex characters, the id format carried in deposit references."""
    return secrets.token_hex(12)


class Wallet(Base):
    """Wallet registry entry. A principal may own several wallets."""

    __tablename__ = "wallets"
    __table_args__ = (
        Index(
            "ix_wallets_principal_default",
            "principal_id",
            unique=True,
            sqlite_where=text("is_default"),
            postgresql_where=text("is_default"),
        ),
    )

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=generate_wallet_id)
    principal_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), default="Main")
    is_default: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    balances: Mapped[list["Balance"]] = relationship(back_populates="wallet", lazy="selectin")


class Balance(Base):
    """Wallet balance for a specific asset."""

    __tablename__ = "balances"
    __table_args__ = (
        Index("ix_balances_wallet_asset", "wallet_id", "asset", unique=True),
        CheckConstraint("available >= 0", name="ck_balances_available_non_negative"),
        CheckConstraint("locked >= 0", name="ck_balances_locked_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    wallet_id: Mapped[str] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    asset: Mapped[str] = mapped_column(String(20), nullable=False)  # USDT, USDC, DAI
    available: Mapped[Decimal] = mapped_column(Cents, default=ZERO, nullable=False)
    locked: Mapped[Decimal] = mapped_column(
        Cents, default=ZERO, nullable=False
    )  # Held for pending sends
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    wallet: Mapped["Wallet"] = relationship(back_populates="balances")

    @property
    def total(self) -> Decimal:
        return self.available + self.locked


class MnemonicRecord(Base):
    """Encrypted BIP-39 mnemonic, one per principal.

    ``next_index`` only ever increases; indices are never reused. Records are
    never deleted since derived addresses depend on them for key recovery.
    """

    __tablename__ = "mnemonic_records"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    principal_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    wallet_id: Mapped[str] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    network: Mapped[str] = mapped_column(String(32), nullable=False)
    encrypted_mnemonic: Mapped[str] = mapped_column(Text, nullable=False)  # JSON envelope
    next_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def envelope(self) -> SecretEnvelope:
        return SecretEnvelope.from_dict(json.loads(self.encrypted_mnemonic))

    def __repr__(self) -> str:
        return (
            f"MnemonicRecord(id={self.id}, principal_id={self.principal_id!r}, "
            f"next_index={self.next_index})"
        )


class DerivedAddress(Base):
    """Address derived from a principal's mnemonic.

    Only the derivation index is stored; the private key is re-derived on demand.
    """

    __tablename__ = "derived_addresses"
    __table_args__ = (
        Index(
            "ix_derived_addresses_wallet_asset_network_address",
            "wallet_id",
            "asset",
            "network",
            "address",
            unique=True,
        ),
        # At most one default per (wallet, asset, network)
        Index(
            "ix_derived_addresses_default",
            "wallet_id",
            "asset",
            "network",
            unique=True,
            sqlite_where=text("is_default"),
            postgresql_where=text("is_default"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    wallet_id: Mapped[str] = mapped_column(ForeignKey("wallets.id"), nullable=False)
    principal_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    mnemonic_record_id: Mapped[int] = mapped_column(
        ForeignKey("mnemonic_records.id"), nullable=False
    )
    asset: Mapped[str] = mapped_column(String(20), nullable=False)
    network: Mapped[str] = mapped_column(String(32), nullable=False)
    address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)  # lowercase
    derivation_index: Mapped[int] = mapped_column(Integer, nullable=False)
    derivation_path: Mapped[str] = mapped_column(String(100), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_default: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class Transaction(Base):
    """Append-only settlement record.

    ``tx_hash`` is the idempotency key for on-chain sourced transactions.
    NULLs are allowed, so off-chain settlements never collide.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_wallet_created", "wallet_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    wallet_id: Mapped[str] = mapped_column(ForeignKey("wallets.id"), nullable=False, index=True)
    type: Mapped[TransactionType] = mapped_column(String(20), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        String(20), default=TransactionStatus.PENDING, nullable=False
    )
    asset: Mapped[str] = mapped_column(String(20), nullable=False)
    network: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Cents, nullable=False)
    fee: Mapped[Decimal] = mapped_column(Cents, default=ZERO, nullable=False)

    # Swap legs (asset == from_asset for swaps)
    from_asset: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_asset: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    amount_out: Mapped[Optional[Decimal]] = mapped_column(Cents, nullable=True)

    from_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    to_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    memo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # On-chain evidence
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), unique=True, nullable=True)
    confirmations: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    chain_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    meta: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class AuditLog(Base):
    """Structured audit record for compliance consumers."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_principal_created", "principal_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    principal_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    wallet_id: Mapped[Optional[str]] = mapped_column(String(24), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="SUCCESS")
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
