"""Ledger module for wallet balances, key records and transaction tracking."""

from stablewallet.ledger.database import get_db, init_db
from stablewallet.ledger.models import (
    AuditLog,
    Balance,
    DerivedAddress,
    MnemonicRecord,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
)
from stablewallet.ledger.repository import BalanceDiscrepancy, LedgerRepository

__all__ = [
    # Models
    "AuditLog",
    "Balance",
    "DerivedAddress",
    "MnemonicRecord",
    "Transaction",
    "Wallet",
    # Enums
    "TransactionStatus",
    "TransactionType",
    # Database
    "get_db",
    "init_db",
    "BalanceDiscrepancy",
    "LedgerRepository",
]
