"""In-memory chain for tests and dry runs (no RPC calls)."""

from typing import Optional

from stablewallet.chain.base import ChainReader, LogEntry, Receipt
from stablewallet.chain.events import (
    ZERO_ADDRESS,
    encode_deposited,
    encode_swap,
    encode_transfer,
    random_tx_hash,
)


class SimulatedChain(ChainReader):
    """Simulated chain holding receipts and logs in memory."""

    def __init__(self, chain_id: int = 80002, block_number: int = 1000):
        self.chain_id = chain_id
        self.block_number = block_number
        self._receipts: dict[str, Receipt] = {}
        self._logs: list[LogEntry] = []

    async def get_block_number(self) -> int:
        return self.block_number

    async def get_chain_id(self) -> int:
        return self.chain_id

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        return self._receipts.get(tx_hash.lower())

    async def get_logs(
        self,
        address: str,
        topics: list[Optional[str]],
        from_block: int,
        to_block: int,
    ) -> list[LogEntry]:
        address = address.lower()
        matched = []
        for log in self._logs:
            if log.address != address:
                continue
            if not from_block <= log.block_number <= to_block:
                continue
            if any(
                want is not None and (i >= len(log.topics) or log.topics[i] != want.lower())
                for i, want in enumerate(topics)
            ):
                continue
            matched.append(log)
        return sorted(matched, key=lambda log: (log.block_number, log.log_index))

    # Simulation helpers

    def mine(self, blocks: int = 1) -> int:
        """Advance the head by a number of blocks."""
        self.block_number += blocks
        return self.block_number

    def add_receipt(self, receipt: Receipt) -> Receipt:
        receipt.tx_hash = receipt.tx_hash.lower()
        self._receipts[receipt.tx_hash] = receipt
        for log in receipt.logs:
            self._logs.append(log)
        return receipt

    def remove_receipt(self, tx_hash: str) -> None:
        """Drop a receipt but keep its logs (simulates a lagging node)."""
        self._receipts.pop(tx_hash.lower(), None)

    def add_deposit(
        self,
        vault: str,
        user: str,
        token: str,
        amount: int,
        reference: str,
        block_number: Optional[int] = None,
        tx_hash: Optional[str] = None,
        status: int = 1,
    ) -> Receipt:
        """Add a mined Deposited event."""
        tx_hash = (tx_hash or random_tx_hash()).lower()
        block = self.block_number if block_number is None else block_number
        log = encode_deposited(vault, user, token, amount, reference, tx_hash, block)
        return self.add_receipt(
            Receipt(
                tx_hash=tx_hash,
                block_number=block,
                status=status,
                from_address=user.lower(),
                to_address=vault.lower(),
                logs=[log],
            )
        )

    def add_token_transfer(
        self,
        token: str,
        from_address: str,
        to_address: str,
        value: int,
        block_number: Optional[int] = None,
        tx_hash: Optional[str] = None,
        status: int = 1,
        nft: bool = False,
    ) -> Receipt:
        """Add a mined ERC-20 (or ERC-721 with ``nft=True``) Transfer."""
        tx_hash = (tx_hash or random_tx_hash()).lower()
        block = self.block_number if block_number is None else block_number
        log = encode_transfer(token, from_address, to_address, value, tx_hash, block, nft=nft)
        sender = from_address if from_address != ZERO_ADDRESS else to_address
        return self.add_receipt(
            Receipt(
                tx_hash=tx_hash,
                block_number=block,
                status=status,
                from_address=sender.lower(),
                to_address=token.lower(),
                logs=[log],
            )
        )

    def add_swap(
        self,
        swap_contract: str,
        user: str,
        token_in: str,
        token_out: str,
        amount_in: int,
        amount_out: int,
        fee: int = 0,
        block_number: Optional[int] = None,
        tx_hash: Optional[str] = None,
        status: int = 1,
    ) -> Receipt:
        """Add a mined MockSwap Swap event."""
        tx_hash = (tx_hash or random_tx_hash()).lower()
        block = self.block_number if block_number is None else block_number
        log = encode_swap(
            swap_contract, user, token_in, token_out, amount_in, amount_out, fee, tx_hash, block
        )
        return self.add_receipt(
            Receipt(
                tx_hash=tx_hash,
                block_number=block,
                status=status,
                from_address=user.lower(),
                to_address=swap_contract.lower(),
                logs=[log],
            )
        )
