"""On-chain verification of client-submitted transaction hashes.

Used before the ledger accepts an externally initiated deposit, send or swap.
Client-supplied amounts and addresses are never trusted: each expectation is
checked against the decoded receipt logs.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from stablewallet.amounts import to_base_units
from stablewallet.chain.base import ChainReader, Receipt
from stablewallet.chain.events import (
    SWAP_TOPIC,
    TRANSFER_TOPIC,
    ZERO_ADDRESS,
    decode_swap,
    decode_transfer,
)
from stablewallet.errors import ConfigurationError, UnsupportedAssetError, VerificationError
from stablewallet.hdwallet.base import normalize_address
from stablewallet.tokens import TokenRegistry, get_token_registry

logger = logging.getLogger(__name__)

_TX_HASH_RE = re.compile(r"0x[0-9a-fA-F]{64}")


@dataclass
class TransferProof:
    """Transfer confirmed on-chain."""

    token: str
    from_address: str
    to_address: str
    value: int  # base units (tokenId for NFTs)
    tx_hash: str
    block_number: int


@dataclass
class SwapProof:
    """MockSwap swap confirmed on-chain."""

    user: str
    token_in: str
    token_out: str
    amount_in: int
    amount_out: int
    fee: int
    tx_hash: str
    block_number: int


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return normalize_address(a) == normalize_address(b)


class OnchainVerifier:
    """Verifies receipts and transfer/swap events against expectations."""

    def __init__(
        self,
        chain: ChainReader,
        expected_chain_id: int = 80002,
        tokens: Optional[TokenRegistry] = None,
    ):
        self.chain = chain
        self.expected_chain_id = expected_chain_id
        self._tokens = tokens

    @property
    def tokens(self) -> TokenRegistry:
        if self._tokens is None:
            self._tokens = get_token_registry()
        return self._tokens

    async def verify_receipt(self, tx_hash: str) -> Receipt:
        """Require a well-formed hash, the expected chain and a successful receipt.

        Raises:
            VerificationError: field is tx_hash, chain_id or status
        """
        if not isinstance(tx_hash, str) or not _TX_HASH_RE.fullmatch(tx_hash):
            raise VerificationError("Invalid transaction hash", field="tx_hash")

        chain_id = await self.chain.get_chain_id()
        if chain_id != self.expected_chain_id:
            raise VerificationError(
                f"Wrong chain: connected to {chain_id}, expected {self.expected_chain_id}",
                field="chain_id",
            )

        receipt = await self.chain.get_transaction_receipt(tx_hash.lower())
        if receipt is None:
            raise VerificationError("Transaction not found", field="tx_hash")
        if not receipt.succeeded:
            raise VerificationError("Transaction failed on-chain", field="status")
        return receipt

    async def verify_transferred(
        self,
        network: str,
        token_address: str,
        tx_hash: str,
        expected_from: Optional[str] = None,
        expected_to: Optional[str] = None,
        expected_amount: Optional[int] = None,
    ) -> TransferProof:
        """Verify an ERC-20 Transfer emitted by ``token_address``.

        Args:
            network: Network name (recorded in logs)
            token_address: Token contract that must have emitted the Transfer
            tx_hash: Transaction hash
            expected_from: Required sender, if given
            expected_to: Required recipient, if given
            expected_amount: Required value in base units, if given

        Raises:
            VerificationError: Naming the mismatched field
        """
        receipt = await self.verify_receipt(tx_hash)
        token = normalize_address(token_address)

        log = next(
            (
                log for log in receipt.logs
                if log.address == token and log.topics and log.topics[0] == TRANSFER_TOPIC
            ),
            None,
        )
        if log is None:
            raise VerificationError("Transfer log not found for token", field="token")

        try:
            transfer = decode_transfer(log)
        except ValueError:
            raise VerificationError("Invalid Transfer log", field="token")

        if expected_from is not None and not _same(transfer.from_address, expected_from):
            raise VerificationError("Transfer from mismatch", field="from")
        if expected_to is not None and not _same(transfer.to_address, expected_to):
            raise VerificationError("Transfer to mismatch", field="to")
        if expected_amount is not None and transfer.value != int(expected_amount):
            raise VerificationError("Transfer amount mismatch", field="amount")

        logger.info(
            f"Verified {network} transfer {tx_hash[:12]}...: "
            f"{transfer.value} of {token[:10]}... to {transfer.to_address[:10]}..."
        )
        return TransferProof(
            token=token,
            from_address=transfer.from_address,
            to_address=transfer.to_address,
            value=transfer.value,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )

    def _token_expectation(self, asset: str, network: str, amount: Decimal) -> tuple[str, int]:
        try:
            token = self.tokens.get(asset, network)
        except UnsupportedAssetError:
            raise VerificationError(f"Unsupported asset/network for on-chain: {asset}/{network}", field="asset")
        if not token.address:
            raise VerificationError(f"Token address not configured for {asset}/{network}", field="asset")
        return token.address, to_base_units(amount, token.decimals)

    async def verify_deposit(
        self,
        network: str,
        asset: str,
        tx_hash: str,
        to_address: str,
        amount: Decimal,
    ) -> TransferProof:
        """Verify a deposit of ``amount`` of asset into the user's address."""
        token_address, base_amount = self._token_expectation(asset, network, amount)
        return await self.verify_transferred(
            network,
            token_address,
            tx_hash,
            expected_to=to_address,
            expected_amount=base_amount,
        )

    async def verify_send(
        self,
        network: str,
        asset: str,
        tx_hash: str,
        from_address: str,
        to_address: str,
        amount: Decimal,
    ) -> TransferProof:
        """Verify a send of ``amount`` from the user's address to a recipient."""
        token_address, base_amount = self._token_expectation(asset, network, amount)
        return await self.verify_transferred(
            network,
            token_address,
            tx_hash,
            expected_from=from_address,
            expected_to=to_address,
            expected_amount=base_amount,
        )

    async def verify_swap(
        self,
        tx_hash: str,
        swap_address: Optional[str],
        user_address: Optional[str],
        amount_in: Decimal,
        decimals: int = 6,
    ) -> SwapProof:
        """Verify a MockSwap Swap event.

        Raises:
            ConfigurationError: If no swap contract is configured
            VerificationError: Naming the mismatched field
        """
        if not swap_address:
            raise ConfigurationError("MOCK_SWAP_ADDRESS not configured")

        receipt = await self.verify_receipt(tx_hash)
        contract = normalize_address(swap_address)
        log = next(
            (
                log for log in receipt.logs
                if log.address == contract and log.topics and log.topics[0] == SWAP_TOPIC
            ),
            None,
        )
        if log is None:
            raise VerificationError("Swap event not found", field="swap")

        try:
            swap = decode_swap(log)
        except ValueError:
            raise VerificationError("Swap log data missing or invalid", field="swap")

        if user_address and not _same(swap.user, user_address):
            raise VerificationError("Swap user mismatch", field="user")
        if swap.amount_in != to_base_units(amount_in, decimals):
            raise VerificationError("Swap amountIn mismatch", field="amount_in")

        return SwapProof(
            user=swap.user,
            token_in=swap.token_in,
            token_out=swap.token_out,
            amount_in=swap.amount_in,
            amount_out=swap.amount_out,
            fee=swap.fee,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )

    async def verify_nft_mint(
        self,
        tx_hash: str,
        nft_contract: str,
        expected_to: Optional[str] = None,
    ) -> TransferProof:
        """Verify an ERC-721 mint (Transfer from the zero address).

        Raises:
            VerificationError: field is token, from or to
        """
        receipt = await self.verify_receipt(tx_hash)
        contract = normalize_address(nft_contract)
        log = next(
            (
                log for log in receipt.logs
                if log.address == contract
                and len(log.topics) == 4
                and log.topics[0] == TRANSFER_TOPIC
            ),
            None,
        )
        if log is None:
            raise VerificationError("NFT Transfer (mint) log not found", field="token")

        transfer = decode_transfer(log)
        if transfer.from_address != ZERO_ADDRESS:
            raise VerificationError("Not a mint (from must be zero)", field="from")
        if expected_to is not None and not _same(transfer.to_address, expected_to):
            raise VerificationError("Mint recipient mismatch", field="to")

        return TransferProof(
            token=contract,
            from_address=transfer.from_address,
            to_address=transfer.to_address,
            value=transfer.value,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
        )
