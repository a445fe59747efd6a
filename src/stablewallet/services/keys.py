"""HD key service: mnemonic custody, address derivation and key export.

Mnemonics are stored only as encrypted envelopes. Derived private keys are
never persisted; export re-derives them from the mnemonic and the stored
derivation index, and checks the result against the stored address.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stablewallet.audit import AuditAction, AuditRecord, AuditTrail
from stablewallet.crypto import EnvelopeCipher, get_cipher
from stablewallet.errors import (
    AddressNotFoundError,
    ConfirmationRequiredError,
    DerivationMismatchError,
    IntegrityError,
    NoMnemonicError,
    RateLimitedError,
    UnsupportedAssetError,
    WalletNotFoundError,
)
from stablewallet.hdwallet import (
    SUPPORTED_ASSETS,
    SUPPORTED_NETWORKS,
    EVMHDWallet,
    address_from_private_key,
    generate_mnemonic,
)
from stablewallet.hdwallet.base import normalize_address, normalize_asset, normalize_network
from stablewallet.ledger.database import get_db
from stablewallet.ledger.models import DerivedAddress, MnemonicRecord, Wallet
from stablewallet.ledger.repository import LedgerRepository
from stablewallet.ratelimit import InMemoryRateLimiter, KeyExportLimiter

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Network metadata of whoever asked for a key."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None
    device_id: Optional[str] = None

    def to_metadata(self) -> dict:
        return {"ip": self.ip, "user_agent": self.user_agent, "device_id": self.device_id}


@dataclass
class DerivedAddressResult:
    """Outcome of an address derivation."""

    address: str
    index: int
    wallet_id: str
    asset: str
    network: str
    derivation_path: str
    is_default: bool = False
    label: Optional[str] = None


@dataclass
class RecoveredKey:
    """Private key recovered for export. Never stored."""

    address: str
    derivation_index: int
    private_key: str = field(repr=False)


class HDKeyService:
    """Per-principal HD key custody.

    Example:
        service = HDKeyService(session_factory)
        await service.get_or_create_mnemonic("u1", wallet_id, "POLYGON_AMOY")
        result = await service.derive_next_address("u1", "USDT", "POLYGON_AMOY")
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        cipher: Optional[EnvelopeCipher] = None,
        limiter: Optional[KeyExportLimiter] = None,
        audit: Optional[AuditTrail] = None,
        mnemonic_words: int = 12,
        default_network: str = "POLYGON_AMOY",
    ):
        self._session_factory = session_factory
        self._cipher = cipher
        self.limiter = limiter or InMemoryRateLimiter()
        self.audit = audit or AuditTrail(session_factory)
        self.mnemonic_words = mnemonic_words
        self.default_network = default_network

    @property
    def cipher(self) -> EnvelopeCipher:
        """Envelope cipher, built from settings on first use.

        Raises:
            ConfigurationError: If MASTER_KEY is missing or too short
        """
        if self._cipher is None:
            self._cipher = get_cipher()
        return self._cipher

    async def provision_principal(
        self, principal_id: str, network: Optional[str] = None
    ) -> tuple[Wallet, MnemonicRecord]:
        """Ensure the principal has a default wallet and a mnemonic."""
        async with get_db(self._session_factory) as session:
            wallet = await LedgerRepository(session).get_or_create_default_wallet(principal_id)
        record = await self.get_or_create_mnemonic(principal_id, wallet.id, network)
        return wallet, record

    async def get_or_create_mnemonic(
        self, principal_id: str, wallet_id: str, network: Optional[str] = None
    ) -> MnemonicRecord:
        """Get the principal's mnemonic record, creating it on first use.

        Concurrent callers for one principal all receive the same record.

        Raises:
            WalletNotFoundError: If the wallet does not belong to the principal
            ConfigurationError: If a new mnemonic is needed and MASTER_KEY is unusable
        """
        network = normalize_network(network or self.default_network)
        created = False

        async with get_db(self._session_factory) as session:
            repo = LedgerRepository(session)
            wallet = await repo.get_wallet(wallet_id)
            if wallet is None or wallet.principal_id != principal_id:
                raise WalletNotFoundError(f"Wallet {wallet_id} not found for principal")

            record = await repo.get_mnemonic_record(principal_id)
            if record is None:
                envelope = self.cipher.encrypt(generate_mnemonic(self.mnemonic_words))
                record, created = await repo.insert_mnemonic_if_absent(
                    principal_id, wallet_id, network, envelope
                )

        if created:
            logger.info(f"Created mnemonic record {record.id} for principal {principal_id}")
            self.audit.emit(
                AuditRecord(
                    action=AuditAction.MNEMONIC_CREATED,
                    principal_id=principal_id,
                    wallet_id=wallet_id,
                    entity_id=str(record.id),
                    metadata={"network": network, "words": self.mnemonic_words},
                )
            )
        return record

    async def derive_next_address(
        self,
        principal_id: str,
        asset: str,
        network: str,
        label: Optional[str] = None,
        set_default: bool = False,
    ) -> DerivedAddressResult:
        """Derive the address at the principal's next unused index.

        The index is claimed with a single atomic increment, so concurrent
        calls never share an index. A failure after the claim rolls the claim
        back with the rest of the transaction.

        Raises:
            UnsupportedAssetError: Unknown asset or network
            NoMnemonicError: The principal has no mnemonic yet
            IntegrityError: The stored mnemonic cannot be decrypted
        """
        asset = normalize_asset(asset)
        network = normalize_network(network)
        if asset not in SUPPORTED_ASSETS:
            raise UnsupportedAssetError(
                f"Unsupported asset {asset}. Supported: {', '.join(SUPPORTED_ASSETS)}"
            )
        if network not in SUPPORTED_NETWORKS:
            raise UnsupportedAssetError(
                f"Unsupported network {network}. Supported: {', '.join(SUPPORTED_NETWORKS)}"
            )

        async with get_db(self._session_factory) as session:
            repo = LedgerRepository(session)
            record = await repo.get_mnemonic_record(principal_id)
            if record is None:
                raise NoMnemonicError(principal_id)

            wallet = EVMHDWallet(self.cipher.decrypt(record.envelope))
            index = await repo.claim_next_index(principal_id)
            info = wallet.derive_address(index)

            row = await repo.add_derived_address(
                wallet_id=record.wallet_id,
                principal_id=principal_id,
                mnemonic_record_id=record.id,
                asset=asset,
                network=network,
                address=info.address,
                derivation_index=index,
                derivation_path=info.derivation_path,
                label=label,
                set_default=set_default,
            )
            result = DerivedAddressResult(
                address=row.address,
                index=row.derivation_index,
                wallet_id=row.wallet_id,
                asset=row.asset,
                network=row.network,
                derivation_path=row.derivation_path,
                is_default=row.is_default,
                label=row.label,
            )

        logger.info(
            f"Derived {asset}/{network} address {result.address[:10]}... "
            f"index {result.index} for principal {principal_id}"
        )
        self.audit.emit(
            AuditRecord(
                action=AuditAction.ADDRESS_DERIVED,
                principal_id=principal_id,
                wallet_id=result.wallet_id,
                entity_id=result.address,
                metadata={
                    "asset": asset,
                    "network": network,
                    "index": result.index,
                    "is_default": result.is_default,
                },
            )
        )
        return result

    async def get_private_key_for_address(
        self,
        principal_id: str,
        address: str,
        *,
        confirmed: bool,
        reason: str = "export",
        context: Optional[RequestContext] = None,
    ) -> RecoveredKey:
        """Recover the private key of one of the principal's derived addresses.

        Every attempt is audited, granted or not.

        Args:
            principal_id: Authenticated principal
            address: Derived address to export
            confirmed: Explicit user confirmation of the export
            reason: Free-text reason recorded in the audit trail
            context: Requester network metadata

        Raises:
            ConfirmationRequiredError: ``confirmed`` is False
            RateLimitedError: Too many exports in the current window
            AddressNotFoundError: Unknown address or owned by someone else
            DerivationMismatchError: Re-derived address differs from the stored one
            IntegrityError: The stored mnemonic cannot be decrypted
        """
        address = normalize_address(address)
        context = context or RequestContext()
        metadata = {"address": address, "reason": reason, **context.to_metadata()}

        if not confirmed:
            self._audit_export(
                AuditAction.KEY_EXPORT_DENIED, principal_id, address,
                {**metadata, "denied_reason": "confirmation_required"}, status="DENIED",
            )
            raise ConfirmationRequiredError("Explicit confirmation is required to export a private key")

        if not self.limiter.allow(principal_id):
            retry_after = self.limiter.retry_after(principal_id)
            self._audit_export(
                AuditAction.KEY_EXPORT_RATE_LIMITED, principal_id, address,
                {**metadata, "retry_after": round(retry_after)}, status="RATE_LIMITED",
            )
            logger.warning(f"Key export rate limited for principal {principal_id}")
            raise RateLimitedError(
                "Too many key export attempts. Try again later.", retry_after=retry_after
            )

        async with get_db(self._session_factory) as session:
            repo = LedgerRepository(session)
            row = await repo.find_address_for_principal(principal_id, address)
            record = await repo.get_mnemonic_record(principal_id) if row else None

        if row is None or record is None:
            self._audit_export(
                AuditAction.KEY_EXPORT_DENIED, principal_id, address,
                {**metadata, "denied_reason": "address_not_found"}, status="DENIED",
            )
            raise AddressNotFoundError("Address not found or not HD-derived for this principal")

        try:
            key = EVMHDWallet(self.cipher.decrypt(record.envelope)).derive_key(row.derivation_index)
        except IntegrityError:
            self._audit_export(
                AuditAction.KEY_EXPORT_DENIED, principal_id, address,
                {**metadata, "denied_reason": "integrity_error"}, status="FAILED",
                wallet_id=row.wallet_id,
            )
            raise

        if key.address != row.address or address_from_private_key(key.private_key) != row.address:
            self._audit_export(
                AuditAction.KEY_EXPORT_DENIED, principal_id, address,
                {**metadata, "denied_reason": "derivation_mismatch"}, status="FAILED",
                wallet_id=row.wallet_id,
            )
            logger.error(
                f"Derivation mismatch for {address[:10]}... index {row.derivation_index} "
                f"(principal {principal_id})"
            )
            raise DerivationMismatchError("Derived key does not match stored address")

        self._audit_export(
            AuditAction.KEY_EXPORT_GRANTED, principal_id, address,
            {**metadata, "derivation_index": row.derivation_index},
            wallet_id=row.wallet_id,
        )
        logger.warning(f"Private key exported for {address[:10]}... (principal {principal_id})")
        return RecoveredKey(
            address=row.address,
            derivation_index=row.derivation_index,
            private_key=key.private_key,
        )

    async def rotate_master_key(self, target: EnvelopeCipher) -> int:
        """Re-encrypt every stored mnemonic under a new master key.

        All records are rewritten in one transaction: either every envelope
        moves to ``target`` or none does.

        Returns:
            Number of records rotated

        Raises:
            IntegrityError: A record cannot be decrypted with the current key
        """
        async with get_db(self._session_factory) as session:
            repo = LedgerRepository(session)
            records = await repo.get_all_mnemonic_records()
            for record in records:
                await repo.update_mnemonic_envelope(
                    record.id, self.cipher.rotate(record.envelope, target)
                )

        self._cipher = target
        logger.info(f"Rotated master key for {len(records)} mnemonic records")
        self.audit.emit(
            AuditRecord(
                action=AuditAction.MASTER_KEY_ROTATED,
                metadata={"records": len(records)},
            )
        )
        return len(records)

    async def list_addresses(
        self,
        principal_id: str,
        asset: Optional[str] = None,
        network: Optional[str] = None,
    ) -> list[DerivedAddress]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).list_addresses(
                principal_id,
                normalize_asset(asset) if asset else None,
                normalize_network(network) if network else None,
            )

    async def get_default_address(
        self, wallet_id: str, asset: str, network: str
    ) -> Optional[DerivedAddress]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_default_address(
                wallet_id, normalize_asset(asset), normalize_network(network)
            )

    def _audit_export(
        self,
        action: AuditAction,
        principal_id: str,
        address: str,
        metadata: dict,
        status: str = "SUCCESS",
        wallet_id: Optional[str] = None,
    ) -> None:
        self.audit.emit(
            AuditRecord(
                action=action,
                principal_id=principal_id,
                wallet_id=wallet_id,
                entity_id=address,
                metadata=metadata,
                status=status,
            )
        )
