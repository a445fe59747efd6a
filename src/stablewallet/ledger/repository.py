"""Repository for ledger operations.

Balance mutations are single conditional SQL statements so concurrent
requests cannot both pass an insufficiency check. Callers own the
transaction: the repository only flushes.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from stablewallet.amounts import ZERO, quantize_amount
from stablewallet.crypto import SecretEnvelope
from stablewallet.errors import InsufficientBalanceError, InvalidTransitionError
from stablewallet.hdwallet.base import SUPPORTED_ASSETS, normalize_address
from stablewallet.ledger.models import (
    AuditLog,
    Balance,
    DerivedAddress,
    MnemonicRecord,
    Transaction,
    TransactionStatus,
    TransactionType,
    Wallet,
    generate_wallet_id,
)


@dataclass
class BalanceDiscrepancy:
    """Difference between stored balance and the sum of completed transactions."""

    asset: str
    expected: Decimal
    actual: Decimal

    @property
    def difference(self) -> Decimal:
        return self.actual - self.expected


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _dialect(self) -> str:
        return self.session.bind.dialect.name if self.session.bind else "sqlite"

    def _insert(self, model):
        """Dialect-specific INSERT supporting ON CONFLICT DO NOTHING."""
        if self._dialect() == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert
        return insert(model)

    # Wallet registry
    async def create_wallet(
        self, principal_id: str, name: str = "Main", is_default: bool = False
    ) -> Wallet:
        """Create a wallet for a principal."""
        wallet = Wallet(
            id=generate_wallet_id(),
            principal_id=principal_id,
            name=name,
            is_default=is_default,
        )
        self.session.add(wallet)
        await self.session.flush()
        return wallet

    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.id == wallet_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_default_wallet(self, principal_id: str) -> Optional[Wallet]:
        stmt = select(Wallet).where(Wallet.principal_id == principal_id, Wallet.is_default.is_(True))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_default_wallet(self, principal_id: str) -> Wallet:
        """Get the principal's default wallet, creating it with zero balances if absent."""
        wallet = await self.get_default_wallet(principal_id)
        if wallet is not None:
            return wallet

        stmt = (
            self._insert(Wallet)
            .values(
                id=generate_wallet_id(),
                principal_id=principal_id,
                name="Main",
                is_default=True,
            )
            .on_conflict_do_nothing(
                index_elements=["principal_id"],
                index_where=text("is_default"),
            )
        )
        await self.session.execute(stmt)

        wallet = await self.get_default_wallet(principal_id)
        for asset in SUPPORTED_ASSETS:
            await self._ensure_balance_row(wallet.id, asset)
        return wallet

    async def get_wallet_ids_for_principal(self, principal_id: str) -> list[str]:
        stmt = select(Wallet.id).where(Wallet.principal_id == principal_id).order_by(Wallet.created_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_all_wallet_ids(self) -> list[str]:
        result = await self.session.execute(select(Wallet.id).order_by(Wallet.created_at))
        return list(result.scalars().all())

    # Balance operations
    async def get_balance(self, wallet_id: str, asset: str) -> Optional[Balance]:
        """Get wallet balance for a specific asset (fresh from the database)."""
        stmt = (
            select(Balance)
            .where(Balance.wallet_id == wallet_id, Balance.asset == asset.upper())
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all_balances(self, wallet_id: str) -> list[Balance]:
        """Get all balances for a wallet."""
        stmt = (
            select(Balance)
            .where(Balance.wallet_id == wallet_id)
            .order_by(Balance.asset)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _ensure_balance_row(self, wallet_id: str, asset: str) -> None:
        stmt = (
            self._insert(Balance)
            .values(wallet_id=wallet_id, asset=asset.upper(), available=ZERO, locked=ZERO)
            .on_conflict_do_nothing(index_elements=["wallet_id", "asset"])
        )
        await self.session.execute(stmt)

    async def credit_balance(self, wallet_id: str, asset: str, amount: Decimal) -> Balance:
        """Add amount to the available balance, creating the row if absent."""
        amount = quantize_amount(amount)
        await self._ensure_balance_row(wallet_id, asset)
        stmt = (
            update(Balance)
            .where(Balance.wallet_id == wallet_id, Balance.asset == asset.upper())
            .values(available=Balance.available + amount)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        return await self.get_balance(wallet_id, asset)

    async def debit_balance(self, wallet_id: str, asset: str, amount: Decimal) -> Balance:
        """Subtract amount from the available balance.

        Raises:
            InsufficientBalanceError: If available < amount (balance unchanged)
        """
        amount = quantize_amount(amount)
        stmt = (
            update(Balance)
            .where(
                Balance.wallet_id == wallet_id,
                Balance.asset == asset.upper(),
                Balance.available >= amount,
            )
            .values(available=Balance.available - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            balance = await self.get_balance(wallet_id, asset)
            available = balance.available if balance else ZERO
            raise InsufficientBalanceError(wallet_id, asset.upper(), available, amount)
        return await self.get_balance(wallet_id, asset)

    async def swap_balances(
        self,
        wallet_id: str,
        from_asset: str,
        to_asset: str,
        amount_in: Decimal,
        amount_out: Decimal,
        fee: Decimal = ZERO,
    ) -> tuple[Balance, Balance]:
        """Debit ``amount_in + fee`` of from_asset, then credit ``amount_out`` of to_asset.

        Both legs run in the caller's transaction; a failed debit raises before
        the credit is attempted.
        """
        total = quantize_amount(amount_in) + quantize_amount(fee)
        from_balance = await self.debit_balance(wallet_id, from_asset, total)
        to_balance = await self.credit_balance(wallet_id, to_asset, amount_out)
        return from_balance, to_balance

    async def lock_balance(self, wallet_id: str, asset: str, amount: Decimal) -> Balance:
        """Move amount from available to locked for a pending send.

        Raises:
            InsufficientBalanceError: If available < amount
        """
        amount = quantize_amount(amount)
        stmt = (
            update(Balance)
            .where(
                Balance.wallet_id == wallet_id,
                Balance.asset == asset.upper(),
                Balance.available >= amount,
            )
            .values(available=Balance.available - amount, locked=Balance.locked + amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            balance = await self.get_balance(wallet_id, asset)
            available = balance.available if balance else ZERO
            raise InsufficientBalanceError(wallet_id, asset.upper(), available, amount)
        return await self.get_balance(wallet_id, asset)

    async def unlock_balance(self, wallet_id: str, asset: str, amount: Decimal) -> Balance:
        """Return previously locked amount to available."""
        amount = quantize_amount(amount)
        stmt = (
            update(Balance)
            .where(
                Balance.wallet_id == wallet_id,
                Balance.asset == asset.upper(),
                Balance.locked >= amount,
            )
            .values(available=Balance.available + amount, locked=Balance.locked - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            raise ValueError(f"Cannot unlock {amount} {asset}: not locked for wallet {wallet_id}")
        return await self.get_balance(wallet_id, asset)

    # Transaction operations
    async def add_transaction(self, **fields: Any) -> Transaction:
        """Insert a transaction row. A duplicate tx_hash raises on flush."""
        tx = Transaction(**fields)
        self.session.add(tx)
        await self.session.flush()
        return tx

    async def get_transaction(self, tx_id: int) -> Optional[Transaction]:
        stmt = select(Transaction).where(Transaction.id == tx_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[Transaction]:
        """Get a transaction by on-chain hash."""
        stmt = select(Transaction).where(Transaction.tx_hash == tx_hash.lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_transaction_status(
        self, tx_id: int, status: TransactionStatus
    ) -> Transaction:
        """Move a transaction out of PENDING.

        Setting the current status again is a no-op.

        Raises:
            ValueError: If the transaction does not exist
            InvalidTransitionError: For any change other than PENDING -> COMPLETED/FAILED
        """
        tx = await self.get_transaction(tx_id)
        if tx is None:
            raise ValueError(f"Transaction {tx_id} not found")

        status = TransactionStatus(status)
        if tx.status == status:
            return tx
        if tx.status != TransactionStatus.PENDING or status == TransactionStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot move transaction {tx_id} from {tx.status} to {status.value}"
            )

        tx.status = status
        if status == TransactionStatus.COMPLETED:
            tx.completed_at = datetime.now(timezone.utc)
        await self.session.flush()
        return tx

    async def get_wallet_transactions(
        self,
        wallet_id: str,
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        asset: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Transaction]:
        """Get transactions for a wallet, newest first."""
        stmt = select(Transaction).where(Transaction.wallet_id == wallet_id)
        if type:
            stmt = stmt.where(Transaction.type == type)
        if status:
            stmt = stmt.where(Transaction.status == status)
        if asset:
            stmt = stmt.where(Transaction.asset == asset.upper())
        stmt = stmt.order_by(Transaction.created_at.desc(), Transaction.id.desc())
        stmt = stmt.limit(limit).offset(offset)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def reconcile_wallet(self, wallet_id: str) -> list[BalanceDiscrepancy]:
        """Compare balances against the sum of COMPLETED transactions.

        A swap that was debited but never credited, or a credit without a
        transaction row, shows up here.
        """
        stmt = select(Transaction).where(
            Transaction.wallet_id == wallet_id,
            Transaction.status == TransactionStatus.COMPLETED,
        )
        result = await self.session.execute(stmt)

        expected: dict[str, Decimal] = {}
        for tx in result.scalars().all():
            if tx.type in (TransactionType.TOPUP, TransactionType.RECEIVE):
                expected[tx.asset] = expected.get(tx.asset, ZERO) + tx.amount
            elif tx.type == TransactionType.SEND:
                expected[tx.asset] = expected.get(tx.asset, ZERO) - (tx.amount + tx.fee)
            elif tx.type == TransactionType.SWAP:
                from_asset = tx.from_asset or tx.asset
                expected[from_asset] = expected.get(from_asset, ZERO) - (tx.amount + tx.fee)
                if tx.to_asset and tx.amount_out is not None:
                    expected[tx.to_asset] = expected.get(tx.to_asset, ZERO) + tx.amount_out

        actual = {b.asset: b.total for b in await self.get_all_balances(wallet_id)}

        discrepancies = []
        for asset in sorted(set(expected) | set(actual)):
            exp = expected.get(asset, ZERO)
            act = actual.get(asset, ZERO)
            if exp != act:
                discrepancies.append(BalanceDiscrepancy(asset=asset, expected=exp, actual=act))
        return discrepancies

    # Mnemonic records
    async def get_mnemonic_record(self, principal_id: str) -> Optional[MnemonicRecord]:
        stmt = (
            select(MnemonicRecord)
            .where(MnemonicRecord.principal_id == principal_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all_mnemonic_records(self) -> list[MnemonicRecord]:
        result = await self.session.execute(select(MnemonicRecord).order_by(MnemonicRecord.id))
        return list(result.scalars().all())

    async def insert_mnemonic_if_absent(
        self,
        principal_id: str,
        wallet_id: str,
        network: str,
        envelope: SecretEnvelope,
    ) -> tuple[MnemonicRecord, bool]:
        """Atomically create the principal's mnemonic record unless one exists.

        Returns:
            (record, created) where created is False if another caller won
        """
        stmt = (
            self._insert(MnemonicRecord)
            .values(
                principal_id=principal_id,
                wallet_id=wallet_id,
                network=network,
                encrypted_mnemonic=json.dumps(envelope.to_dict()),
                next_index=0,
            )
            .on_conflict_do_nothing(index_elements=["principal_id"])
        )
        result = await self.session.execute(stmt)
        created = result.rowcount == 1
        record = await self.get_mnemonic_record(principal_id)
        return record, created

    async def claim_next_index(self, principal_id: str) -> int:
        """Atomically increment next_index and return the index to use.

        Raises:
            ValueError: If the principal has no mnemonic record
        """
        stmt = (
            update(MnemonicRecord)
            .where(MnemonicRecord.principal_id == principal_id)
            .values(next_index=MnemonicRecord.next_index + 1)
            .returning(MnemonicRecord.next_index)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        new_value = result.scalar_one_or_none()
        if new_value is None:
            raise ValueError(f"No mnemonic record for principal {principal_id}")
        return new_value - 1

    async def update_mnemonic_envelope(self, record_id: int, envelope: SecretEnvelope) -> None:
        """Replace a record's envelope (master key rotation)."""
        stmt = (
            update(MnemonicRecord)
            .where(MnemonicRecord.id == record_id)
            .values(encrypted_mnemonic=json.dumps(envelope.to_dict()))
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    # Derived addresses
    async def get_derived_address(
        self, wallet_id: str, asset: str, network: str, address: str
    ) -> Optional[DerivedAddress]:
        stmt = (
            select(DerivedAddress)
            .where(
                DerivedAddress.wallet_id == wallet_id,
                DerivedAddress.asset == asset,
                DerivedAddress.network == network,
                DerivedAddress.address == normalize_address(address),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_default_address(
        self, wallet_id: str, asset: str, network: str
    ) -> Optional[DerivedAddress]:
        stmt = (
            select(DerivedAddress)
            .where(
                DerivedAddress.wallet_id == wallet_id,
                DerivedAddress.asset == asset,
                DerivedAddress.network == network,
                DerivedAddress.is_default.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_derived_address(
        self,
        wallet_id: str,
        principal_id: str,
        mnemonic_record_id: int,
        asset: str,
        network: str,
        address: str,
        derivation_index: int,
        derivation_path: str,
        label: Optional[str] = None,
        set_default: bool = False,
    ) -> DerivedAddress:
        """Insert a derived address, or return the existing row on replay.

        The first address of a (wallet, asset, network) group becomes its
        default, as does any address added with ``set_default``.
        """
        address = normalize_address(address)
        stmt = (
            self._insert(DerivedAddress)
            .values(
                wallet_id=wallet_id,
                principal_id=principal_id,
                mnemonic_record_id=mnemonic_record_id,
                asset=asset,
                network=network,
                address=address,
                derivation_index=derivation_index,
                derivation_path=derivation_path,
                label=label,
                is_default=False,
            )
            .on_conflict_do_nothing(index_elements=["wallet_id", "asset", "network", "address"])
        )
        await self.session.execute(stmt)

        row = await self.get_derived_address(wallet_id, asset, network, address)
        current_default = await self.get_default_address(wallet_id, asset, network)

        if current_default is None or (set_default and current_default.id != row.id):
            # Clear first so the partial unique index never sees two defaults
            await self.session.execute(
                update(DerivedAddress)
                .where(
                    DerivedAddress.wallet_id == wallet_id,
                    DerivedAddress.asset == asset,
                    DerivedAddress.network == network,
                    DerivedAddress.is_default.is_(True),
                )
                .values(is_default=False)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                update(DerivedAddress)
                .where(DerivedAddress.id == row.id)
                .values(is_default=True)
                .execution_options(synchronize_session=False)
            )
            row = await self.get_derived_address(wallet_id, asset, network, address)

        return row

    async def find_address_for_principal(
        self, principal_id: str, address: str
    ) -> Optional[DerivedAddress]:
        """Look up a derived address owned by the principal.

        Scoped through both the wallet registry and the principal's mnemonic
        record, so another principal's address is never returned.
        """
        stmt = (
            select(DerivedAddress)
            .join(Wallet, Wallet.id == DerivedAddress.wallet_id)
            .join(MnemonicRecord, MnemonicRecord.id == DerivedAddress.mnemonic_record_id)
            .where(
                DerivedAddress.address == normalize_address(address),
                Wallet.principal_id == principal_id,
                MnemonicRecord.principal_id == principal_id,
            )
            .order_by(DerivedAddress.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_address_for_wallet(
        self, wallet_id: str, address: str
    ) -> Optional[DerivedAddress]:
        """Look up a derived address of the wallet, for any asset or network."""
        stmt = (
            select(DerivedAddress)
            .where(
                DerivedAddress.wallet_id == wallet_id,
                DerivedAddress.address == normalize_address(address),
            )
            .order_by(DerivedAddress.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_addresses(
        self,
        principal_id: str,
        asset: Optional[str] = None,
        network: Optional[str] = None,
    ) -> list[DerivedAddress]:
        """List the principal's derived addresses, oldest first."""
        stmt = (
            select(DerivedAddress)
            .join(Wallet, Wallet.id == DerivedAddress.wallet_id)
            .where(Wallet.principal_id == principal_id)
        )
        if asset:
            stmt = stmt.where(DerivedAddress.asset == asset)
        if network:
            stmt = stmt.where(DerivedAddress.network == network)
        stmt = stmt.order_by(DerivedAddress.derivation_index, DerivedAddress.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Audit Log operations
    async def add_audit_log(
        self,
        action: str,
        principal_id: Optional[str] = None,
        wallet_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        status: str = "SUCCESS",
        details: Optional[dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> AuditLog:
        """Add an audit log entry."""
        audit = AuditLog(
            action=action,
            principal_id=principal_id,
            wallet_id=wallet_id,
            entity_id=entity_id,
            status=status,
            details=details,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.session.add(audit)
        await self.session.flush()
        return audit

    async def get_audit_logs(
        self,
        principal_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 50,
    ) -> list[AuditLog]:
        """Get audit logs, oldest first."""
        stmt = select(AuditLog)
        if principal_id:
            stmt = stmt.where(AuditLog.principal_id == principal_id)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        stmt = stmt.order_by(AuditLog.created_at, AuditLog.id).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_transactions(self, wallet_id: Optional[str] = None) -> int:
        stmt = select(func.count(Transaction.id))
        if wallet_id:
            stmt = stmt.where(Transaction.wallet_id == wallet_id)
        result = await self.session.execute(stmt)
        return result.scalar_one()
