"""Settlement dispatch for client-initiated topups, sends and swaps.

A request carries either on-chain evidence (a transaction hash to verify) or
an off-chain reference. Each mode has its own verification strategy; both
end in a single ``LedgerService.apply_settlement`` call.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Union

from stablewallet.amounts import ZERO, from_base_units, quantize_amount
from stablewallet.errors import DuplicateError, VerificationError
from stablewallet.hdwallet.base import normalize_address
from stablewallet.ledger.models import Transaction, TransactionType
from stablewallet.services.ledger import LedgerService, NewTransaction
from stablewallet.services.verification import OnchainVerifier

logger = logging.getLogger(__name__)

SETTLEABLE_TYPES = (TransactionType.TOPUP, TransactionType.SEND, TransactionType.SWAP)


@dataclass(frozen=True)
class OnChainSettlement:
    """Settlement backed by a transaction hash that must verify on-chain."""

    tx_hash: str
    from_address: Optional[str] = None
    to_address: Optional[str] = None


@dataclass(frozen=True)
class OffChainSettlement:
    """Internal settlement identified by a caller reference."""

    reference: Optional[str] = None
    memo: Optional[str] = None
    to_address: Optional[str] = None


SettlementMode = Union[OnChainSettlement, OffChainSettlement]


@dataclass
class SettlementRequest:
    """A topup, send or swap to settle into the ledger."""

    wallet_id: str
    type: TransactionType
    asset: str
    amount: Decimal
    mode: SettlementMode
    network: str = "POLYGON_AMOY"
    fee: Decimal = ZERO
    to_asset: Optional[str] = None  # SWAP only
    amount_out: Optional[Decimal] = None  # SWAP only; must match the event when on-chain
    principal_id: Optional[str] = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class SettlementResult:
    transaction: Transaction
    duplicate: bool = False


class SettlementService:
    """Verifies a settlement request according to its mode and applies it."""

    def __init__(
        self,
        ledger: LedgerService,
        verifier: Optional[OnchainVerifier] = None,
        swap_address: Optional[str] = None,
    ):
        self.ledger = ledger
        self.verifier = verifier
        self.swap_address = swap_address

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        """Settle a request exactly once.

        Re-submitting an already settled transaction hash returns the existing
        transaction with ``duplicate=True`` and changes nothing.

        Raises:
            VerificationError: On-chain evidence does not support the request
            InsufficientBalanceError: A debit leg cannot be covered
        """
        tx_type = TransactionType(request.type)
        if tx_type not in SETTLEABLE_TYPES:
            raise ValueError(f"{tx_type.value} transactions cannot be client-settled")

        if isinstance(request.mode, OnChainSettlement):
            existing = await self.ledger.get_transaction_by_hash(request.mode.tx_hash)
            if existing is not None:
                logger.info(f"Settlement {request.mode.tx_hash[:12]}... already processed")
                return SettlementResult(transaction=existing, duplicate=True)
            new = await self._verify_onchain(request, tx_type, request.mode)
        elif isinstance(request.mode, OffChainSettlement):
            new = self._build_offchain(request, tx_type, request.mode)
        else:
            raise TypeError(f"Unknown settlement mode: {type(request.mode).__name__}")

        try:
            tx = await self.ledger.apply_settlement(new)
        except DuplicateError as e:
            existing = await self.ledger.get_transaction_by_hash(e.tx_hash)
            return SettlementResult(transaction=existing, duplicate=True)
        return SettlementResult(transaction=tx)

    async def _verify_onchain(
        self,
        request: SettlementRequest,
        tx_type: TransactionType,
        mode: OnChainSettlement,
    ) -> NewTransaction:
        if self.verifier is None:
            raise VerificationError("On-chain verification is not available", field="tx_hash")

        meta = {**request.meta, "mode": "onchain"}
        amount_out = request.amount_out
        fee = request.fee

        if tx_type == TransactionType.TOPUP:
            to_address = await self._wallet_address(request, mode.to_address, "to")
            proof = await self.verifier.verify_deposit(
                request.network, request.asset, mode.tx_hash, to_address, request.amount
            )
            from_address, to_address = proof.from_address, proof.to_address
        elif tx_type == TransactionType.SEND:
            if not mode.from_address or not mode.to_address:
                raise VerificationError("Sender and recipient are required", field="from")
            await self._wallet_address(request, mode.from_address, "from")
            proof = await self.verifier.verify_send(
                request.network,
                request.asset,
                mode.tx_hash,
                mode.from_address,
                mode.to_address,
                request.amount,
            )
            from_address, to_address = proof.from_address, proof.to_address
        else:
            if not request.to_asset:
                raise VerificationError("Swap target asset is required", field="to_asset")
            token_in = self.verifier.tokens.get(request.asset, request.network)
            token_out = self.verifier.tokens.get(request.to_asset, request.network)
            user_address = await self._wallet_address(request, mode.from_address, "from")
            swap = await self.verifier.verify_swap(
                mode.tx_hash, self.swap_address, user_address, request.amount, token_in.decimals
            )
            if not token_in.address or normalize_address(swap.token_in) != token_in.address:
                raise VerificationError("Swap tokenIn mismatch", field="token_in")
            if not token_out.address or normalize_address(swap.token_out) != token_out.address:
                raise VerificationError("Swap tokenOut mismatch", field="token_out")

            amount_out = from_base_units(swap.amount_out, token_out.decimals)
            if request.amount_out is not None and quantize_amount(request.amount_out) != amount_out:
                raise VerificationError("Swap amountOut mismatch", field="amount_out")

            # amountOut is already net of the on-chain fee
            fee = ZERO
            from_address, to_address = swap.user, self.swap_address
            meta.update(
                {
                    "token_in": swap.token_in,
                    "token_out": swap.token_out,
                    "fee": str(from_base_units(swap.fee, token_out.decimals)),
                }
            )
            proof = swap

        meta["block_number"] = proof.block_number
        return NewTransaction(
            wallet_id=request.wallet_id,
            type=tx_type,
            asset=request.asset,
            amount=request.amount,
            fee=fee,
            network=request.network,
            to_asset=request.to_asset,
            amount_out=amount_out,
            from_address=from_address,
            to_address=to_address,
            tx_hash=mode.tx_hash,
            chain_id=self.verifier.expected_chain_id,
            meta=meta,
            principal_id=request.principal_id,
        )

    async def _wallet_address(
        self, request: SettlementRequest, address: Optional[str], field: str
    ) -> str:
        """Resolve an on-chain party to an address the requesting wallet owns.

        Without an explicit address the wallet's default address for the
        request's asset and network is used.

        Raises:
            VerificationError: No address resolves, or it belongs to another wallet
        """
        if not address:
            default = await self.ledger.get_default_address(
                request.wallet_id, request.asset, request.network
            )
            if default is None:
                raise VerificationError(
                    f"No {request.asset} address on {request.network} for this wallet", field=field
                )
            return default.address

        if await self.ledger.get_wallet_address(request.wallet_id, address) is None:
            logger.warning(
                f"Settlement {field} address {address} is not owned by wallet {request.wallet_id}"
            )
            raise VerificationError("Address does not belong to this wallet", field=field)
        return address

    def _build_offchain(
        self,
        request: SettlementRequest,
        tx_type: TransactionType,
        mode: OffChainSettlement,
    ) -> NewTransaction:
        return NewTransaction(
            wallet_id=request.wallet_id,
            type=tx_type,
            asset=request.asset,
            amount=request.amount,
            fee=request.fee,
            network=request.network,
            to_asset=request.to_asset,
            amount_out=request.amount_out,
            to_address=mode.to_address,
            reference=mode.reference,
            memo=mode.memo,
            meta={**request.meta, "mode": "offchain"},
            principal_id=request.principal_id,
        )
