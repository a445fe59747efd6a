"""Ledger service: the single gate for balance mutation.

Every public operation runs in its own database transaction. Amounts are
rounded to two decimals (half-up) before they reach the repository.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError as DBIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stablewallet.amounts import ZERO, require_non_negative, require_positive
from stablewallet.audit import AuditAction, AuditRecord, AuditTrail
from stablewallet.errors import DuplicateError, InvalidAmountError, UnsupportedAssetError
from stablewallet.hdwallet.base import (
    SUPPORTED_ASSETS,
    normalize_address,
    normalize_asset,
    normalize_network,
)
from stablewallet.ledger.database import get_db
from stablewallet.ledger.models import (
    Balance,
    DerivedAddress,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
)
from stablewallet.ledger.repository import BalanceDiscrepancy, LedgerRepository

logger = logging.getLogger(__name__)


@dataclass
class NewTransaction:
    """A settlement to record together with its balance change."""

    wallet_id: str
    type: TransactionType
    asset: str
    amount: Decimal
    fee: Decimal = ZERO
    network: Optional[str] = None
    to_asset: Optional[str] = None  # SWAP only
    amount_out: Optional[Decimal] = None  # SWAP only
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    reference: Optional[str] = None
    memo: Optional[str] = None
    tx_hash: Optional[str] = None
    confirmations: Optional[int] = None
    chain_id: Optional[int] = None
    meta: dict[str, Any] = field(default_factory=dict)
    principal_id: Optional[str] = None  # audit only


@dataclass
class SwapResult:
    from_balance: Balance
    to_balance: Balance


def _require_asset(asset: str) -> str:
    code = normalize_asset(asset)
    if code not in SUPPORTED_ASSETS:
        raise UnsupportedAssetError(
            f"Unsupported asset {asset}. Supported: {', '.join(SUPPORTED_ASSETS)}"
        )
    return code


class LedgerService:
    """Atomic credit, debit and swap on per-wallet balances."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        audit: Optional[AuditTrail] = None,
    ):
        self._session_factory = session_factory
        self.audit = audit or AuditTrail(session_factory)

    async def credit(self, wallet_id: str, asset: str, amount: Decimal) -> Balance:
        """Increase the available balance, creating the row if needed."""
        asset = _require_asset(asset)
        amount = require_positive(amount)
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).credit_balance(wallet_id, asset, amount)

    async def debit(self, wallet_id: str, asset: str, amount: Decimal) -> Balance:
        """Decrease the available balance.

        Raises:
            InsufficientBalanceError: If available < amount
        """
        asset = _require_asset(asset)
        amount = require_positive(amount)
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).debit_balance(wallet_id, asset, amount)

    async def swap(
        self,
        wallet_id: str,
        from_asset: str,
        to_asset: str,
        amount_in: Decimal,
        amount_out: Decimal,
        fee: Decimal = ZERO,
    ) -> SwapResult:
        """Debit ``amount_in + fee`` of from_asset and credit ``amount_out`` of to_asset.

        Both legs commit together or not at all.
        """
        from_asset = _require_asset(from_asset)
        to_asset = _require_asset(to_asset)
        if from_asset == to_asset:
            raise InvalidAmountError("Cannot swap an asset into itself")
        amount_in = require_positive(amount_in, "amount_in")
        amount_out = require_positive(amount_out, "amount_out")
        fee = require_non_negative(fee, "fee")

        async with get_db(self._session_factory) as session:
            repo = LedgerRepository(session)
            from_balance, to_balance = await repo.swap_balances(
                wallet_id, from_asset, to_asset, amount_in, amount_out, fee
            )
        return SwapResult(from_balance=from_balance, to_balance=to_balance)

    async def get_balance(self, wallet_id: str, asset: str) -> Decimal:
        """Available balance (0.00 if the wallet never held the asset)."""
        async with get_db(self._session_factory) as session:
            balance = await LedgerRepository(session).get_balance(wallet_id, normalize_asset(asset))
            return balance.available if balance else ZERO

    async def get_balances(self, wallet_id: str) -> list[Balance]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_all_balances(wallet_id)

    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_wallet(wallet_id)

    async def get_wallet_address(self, wallet_id: str, address: str) -> Optional[DerivedAddress]:
        """Derived address of this wallet, or None if the wallet does not own it."""
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).find_address_for_wallet(wallet_id, address)

    async def get_default_address(
        self, wallet_id: str, asset: str, network: str
    ) -> Optional[DerivedAddress]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_default_address(
                wallet_id, normalize_asset(asset), normalize_network(network)
            )

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[Transaction]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_transaction_by_hash(tx_hash)

    async def update_transaction_status(
        self, tx_id: int, status: TransactionStatus
    ) -> Transaction:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).update_transaction_status(tx_id, status)

    async def reconcile(self, wallet_id: str) -> list[BalanceDiscrepancy]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).reconcile_wallet(wallet_id)

    async def apply_settlement(self, new: NewTransaction) -> Transaction:
        """Record a COMPLETED transaction and apply its balance change atomically.

        TOPUP/RECEIVE credit ``amount``; SEND debits ``amount + fee``; SWAP
        debits ``amount + fee`` of ``asset`` and credits ``amount_out`` of
        ``to_asset``.

        Raises:
            DuplicateError: If tx_hash was already settled (nothing is changed)
            InsufficientBalanceError: If a debit leg cannot be covered
        """
        tx_type = TransactionType(new.type)
        asset = _require_asset(new.asset)
        amount = require_positive(new.amount)
        fee = require_non_negative(new.fee, "fee")
        tx_hash = new.tx_hash.lower() if new.tx_hash else None

        to_asset = None
        amount_out = None
        if tx_type == TransactionType.SWAP:
            if not new.to_asset or new.amount_out is None:
                raise InvalidAmountError("Swap settlement requires to_asset and amount_out")
            to_asset = _require_asset(new.to_asset)
            if to_asset == asset:
                raise InvalidAmountError("Cannot swap an asset into itself")
            amount_out = require_positive(new.amount_out, "amount_out")

        try:
            async with get_db(self._session_factory) as session:
                repo = LedgerRepository(session)
                if tx_hash and await repo.get_transaction_by_hash(tx_hash) is not None:
                    raise DuplicateError(tx_hash)

                tx = await repo.add_transaction(
                    wallet_id=new.wallet_id,
                    type=tx_type,
                    status=TransactionStatus.COMPLETED,
                    asset=asset,
                    network=new.network,
                    amount=amount,
                    fee=fee,
                    from_asset=asset if tx_type == TransactionType.SWAP else None,
                    to_asset=to_asset,
                    amount_out=amount_out,
                    from_address=normalize_address(new.from_address) or None,
                    to_address=normalize_address(new.to_address) or None,
                    reference=new.reference,
                    memo=new.memo,
                    tx_hash=tx_hash,
                    confirmations=new.confirmations,
                    chain_id=new.chain_id,
                    meta=new.meta or None,
                )

                if tx_type in (TransactionType.TOPUP, TransactionType.RECEIVE):
                    await repo.credit_balance(new.wallet_id, asset, amount)
                elif tx_type == TransactionType.SEND:
                    await repo.debit_balance(new.wallet_id, asset, amount + fee)
                else:
                    await repo.swap_balances(
                        new.wallet_id, asset, to_asset, amount, amount_out, fee
                    )

                tx.completed_at = datetime.now(timezone.utc)
                await session.flush()
        except DBIntegrityError as e:
            # Lost a race on the unique tx_hash
            if tx_hash and await self.get_transaction_by_hash(tx_hash) is not None:
                raise DuplicateError(tx_hash) from e
            raise

        logger.info(
            f"Settled {tx_type.value} {amount} {asset} for wallet {new.wallet_id}"
            + (f" (tx {tx_hash[:12]}...)" if tx_hash else "")
        )
        self.audit.emit(
            AuditRecord(
                action=AuditAction.LEDGER_SETTLED,
                principal_id=new.principal_id,
                wallet_id=new.wallet_id,
                entity_id=str(tx.id),
                metadata={
                    "type": tx_type.value,
                    "asset": asset,
                    "amount": str(amount),
                    "fee": str(fee),
                    "to_asset": to_asset,
                    "amount_out": str(amount_out) if amount_out is not None else None,
                    "tx_hash": tx_hash,
                },
            )
        )
        return tx
