"""Base interface for read-only EVM chain access."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class LogEntry:
    """An event log as returned by eth_getLogs or inside a receipt."""

    address: str  # emitting contract, lowercase
    topics: list[str]  # 0x-prefixed 32-byte hex
    data: str  # 0x-prefixed hex
    block_number: int
    tx_hash: str
    log_index: int = 0


@dataclass
class Receipt:
    """Transaction receipt."""

    tx_hash: str
    block_number: int
    status: int  # 1 = success, 0 = reverted
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    logs: list[LogEntry] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainReader(ABC):
    """Read-only access to an EVM chain.

    Every call is expected to be bounded by a timeout in the implementation.
    """

    @abstractmethod
    async def get_block_number(self) -> int:
        """Get the latest block number."""
        pass

    @abstractmethod
    async def get_chain_id(self) -> int:
        """Get the chain id of the connected network."""
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Get a transaction receipt.

        Args:
            tx_hash: 0x-prefixed transaction hash

        Returns:
            Receipt, or None if the transaction is unknown or not yet mined
        """
        pass

    @abstractmethod
    async def get_logs(
        self,
        address: str,
        topics: list[Optional[str]],
        from_block: int,
        to_block: int,
    ) -> list[LogEntry]:
        """Get logs emitted by a contract in an inclusive block range.

        Args:
            address: Contract address
            topics: Topic filter; None matches anything in that position
            from_block: First block (inclusive)
            to_block: Last block (inclusive)
        """
        pass

    async def close(self) -> None:
        """Release transport resources."""
        pass
