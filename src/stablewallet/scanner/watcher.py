"""Deposit watcher for vault ``Deposited`` events.

Each polling cycle moves through:

    IDLE -> FETCH_HEAD -> FETCH_EVENTS -> PROCESS_EACH -> ADVANCE_CURSOR -> SLEEP

The cursor (last processed block) starts at the chain head, so history is
not replayed, and only moves after a whole batch was processed without
raising. Re-delivery of events is expected; the transaction hash makes
crediting idempotent.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from stablewallet.amounts import ZERO, from_base_units
from stablewallet.audit import AuditAction, AuditRecord
from stablewallet.chain.base import ChainReader, LogEntry
from stablewallet.chain.events import DEPOSITED_TOPIC, decode_deposited, parse_deposit_reference
from stablewallet.errors import DuplicateError
from stablewallet.ledger.models import TransactionType
from stablewallet.services.ledger import LedgerService, NewTransaction
from stablewallet.tokens import TokenRegistry, get_token_registry

logger = logging.getLogger(__name__)


class WatcherState(str, Enum):
    """Phase of the current polling cycle."""

    IDLE = "IDLE"
    FETCH_HEAD = "FETCH_HEAD"
    FETCH_EVENTS = "FETCH_EVENTS"
    PROCESS_EACH = "PROCESS_EACH"
    ADVANCE_CURSOR = "ADVANCE_CURSOR"
    SLEEP = "SLEEP"
    STOPPED = "STOPPED"


class DepositOutcome(str, Enum):
    """What happened to a single Deposited event."""

    CREDITED = "CREDITED"
    DUPLICATE = "DUPLICATE"
    NO_RECEIPT = "NO_RECEIPT"
    REVERTED = "REVERTED"
    PENDING_CONFIRMATIONS = "PENDING_CONFIRMATIONS"
    UNATTRIBUTED = "UNATTRIBUTED"
    UNKNOWN_TOKEN = "UNKNOWN_TOKEN"
    DUST = "DUST"


# Outcomes that must be re-evaluated on a later cycle
RETRY_OUTCOMES = (DepositOutcome.NO_RECEIPT, DepositOutcome.PENDING_CONFIRMATIONS)


@dataclass
class CycleResult:
    """Summary of one polling cycle."""

    from_block: Optional[int] = None
    to_block: Optional[int] = None
    events: int = 0
    credited: int = 0
    deferred: int = 0
    cursor: Optional[int] = None


class DepositWatcher:
    """Polls the vault for deposits and credits the ledger exactly once per tx hash.

    Only one instance should run per vault and network. Several instances are
    safe (crediting is idempotent) but waste RPC calls.
    """

    def __init__(
        self,
        chain: ChainReader,
        ledger: LedgerService,
        vault_address: str,
        tokens: Optional[TokenRegistry] = None,
        network: str = "POLYGON_AMOY",
        confirmations: int = 6,
        poll_interval: float = 12.0,
        max_block_range: int = 2000,
        cycle_timeout: float = 60.0,
        chain_id: Optional[int] = None,
    ):
        """Initialize the watcher.

        Args:
            chain: Chain reader
            ledger: Ledger service used for crediting
            vault_address: Contract emitting Deposited events
            tokens: Token registry (defaults to the settings-configured one)
            network: Network the vault lives on
            confirmations: Blocks required on top of the deposit block
            poll_interval: Seconds to sleep between cycles
            max_block_range: Maximum blocks queried per cycle
            cycle_timeout: Upper bound on one cycle, in seconds
            chain_id: Recorded on transactions (fetched from the chain if omitted)
        """
        if max_block_range < 1:
            raise ValueError("max_block_range must be at least 1")
        self.chain = chain
        self.ledger = ledger
        self.vault_address = vault_address.lower()
        self.tokens = tokens or get_token_registry()
        self.network = network
        self.confirmations = confirmations
        self.poll_interval = poll_interval
        self.max_block_range = max_block_range
        self.cycle_timeout = cycle_timeout
        self.chain_id = chain_id

        self.last_processed_block: Optional[int] = None
        self.state = WatcherState.IDLE
        self._running = False
        self._lock = asyncio.Lock()

    async def start(self, start_block: Optional[int] = None) -> int:
        """Initialize the cursor.

        Args:
            start_block: First block to scan; defaults to blocks after the current head

        Returns:
            The last processed block
        """
        if start_block is not None:
            self.last_processed_block = start_block - 1
        else:
            self.last_processed_block = await self.chain.get_block_number()
        if self.chain_id is None:
            self.chain_id = await self.chain.get_chain_id()
        logger.info(
            f"Deposit watcher for {self.vault_address[:10]}... starting after block "
            f"{self.last_processed_block} (confirmations: {self.confirmations})"
        )
        return self.last_processed_block

    async def poll_once(self) -> CycleResult:
        """Run one polling cycle. Not re-entrant: overlapping calls wait.

        Raises:
            Any error from the chain or the ledger; the cursor is then left unchanged.
        """
        async with self._lock:
            try:
                return await self._cycle()
            finally:
                if self.state != WatcherState.STOPPED:
                    self.state = WatcherState.IDLE

    async def _cycle(self) -> CycleResult:
        if self.last_processed_block is None:
            await self.start()

        self.state = WatcherState.FETCH_HEAD
        head = await self.chain.get_block_number()
        from_block = self.last_processed_block + 1
        to_block = min(head - self.confirmations, from_block + self.max_block_range - 1)
        if to_block < from_block:
            return CycleResult(cursor=self.last_processed_block)

        self.state = WatcherState.FETCH_EVENTS
        logs = await self.chain.get_logs(self.vault_address, [DEPOSITED_TOPIC], from_block, to_block)
        logs.sort(key=lambda log: (log.block_number, log.log_index))

        self.state = WatcherState.PROCESS_EACH
        result = CycleResult(from_block=from_block, to_block=to_block, events=len(logs))
        advance_to = to_block
        for log in logs:
            outcome = await self.process_event(log, head=head)
            if outcome == DepositOutcome.CREDITED:
                result.credited += 1
            elif outcome in RETRY_OUTCOMES:
                result.deferred += 1
                # Stop just before this block so the event is seen again
                advance_to = min(advance_to, log.block_number - 1)

        self.state = WatcherState.ADVANCE_CURSOR
        self.last_processed_block = max(self.last_processed_block, advance_to)
        result.cursor = self.last_processed_block

        if logs:
            logger.info(
                f"Blocks {from_block}-{to_block}: {len(logs)} deposits, "
                f"{result.credited} credited, {result.deferred} deferred"
            )
        return result

    async def process_event(self, log: LogEntry, head: Optional[int] = None) -> DepositOutcome:
        """Process a single Deposited log.

        Idempotent: an event whose tx hash is already recorded is a no-op.
        """
        try:
            event = decode_deposited(log)
        except ValueError as e:
            logger.warning(f"Dropping undecodable deposit log {log.tx_hash}: {e}")
            return DepositOutcome.UNATTRIBUTED

        tx_hash = event.tx_hash.lower()
        if await self.ledger.get_transaction_by_hash(tx_hash) is not None:
            logger.debug(f"Deposit {tx_hash[:12]}... already recorded")
            return DepositOutcome.DUPLICATE

        receipt = await self.chain.get_transaction_receipt(tx_hash)
        if receipt is None:
            logger.debug(f"No receipt yet for {tx_hash[:12]}...")
            return DepositOutcome.NO_RECEIPT
        if not receipt.succeeded:
            logger.warning(f"Deposit {tx_hash[:12]}... reverted, skipping")
            return DepositOutcome.REVERTED

        if head is None:
            head = await self.chain.get_block_number()
        confirmations = head - receipt.block_number
        if confirmations < self.confirmations:
            logger.debug(
                f"Deposit {tx_hash[:12]}... has {confirmations} confirmations, "
                f"need {self.confirmations}"
            )
            return DepositOutcome.PENDING_CONFIRMATIONS

        wallet_id = parse_deposit_reference(event.reference)
        wallet = await self.ledger.get_wallet(wallet_id) if wallet_id else None
        if wallet is None:
            logger.warning(
                f"Unattributable deposit {tx_hash[:12]}... (reference {event.reference!r}), not credited"
            )
            self.ledger.audit.emit(
                AuditRecord(
                    action=AuditAction.DEPOSIT_UNATTRIBUTED,
                    entity_id=tx_hash,
                    status="DROPPED",
                    metadata={
                        "reference": event.reference[:64],
                        "token": event.token,
                        "amount": str(event.amount),
                        "block_number": event.block_number,
                    },
                )
            )
            return DepositOutcome.UNATTRIBUTED

        token = self.tokens.asset_for_token(event.token, self.network)
        if token is None:
            logger.warning(f"Deposit {tx_hash[:12]}... in unknown token {event.token}, not credited")
            return DepositOutcome.UNKNOWN_TOKEN

        amount = from_base_units(event.amount, token.decimals)
        if amount <= ZERO:
            logger.warning(f"Deposit {tx_hash[:12]}... rounds to zero {token.asset}, not credited")
            return DepositOutcome.DUST

        try:
            await self.ledger.apply_settlement(
                NewTransaction(
                    wallet_id=wallet.id,
                    type=TransactionType.RECEIVE,
                    asset=token.asset,
                    amount=amount,
                    network=self.network,
                    from_address=event.user,
                    to_address=self.vault_address,
                    reference=event.reference,
                    tx_hash=tx_hash,
                    confirmations=confirmations,
                    chain_id=self.chain_id,
                    meta={
                        "block_number": receipt.block_number,
                        "log_index": event.log_index,
                        "token": event.token,
                    },
                    principal_id=wallet.principal_id,
                )
            )
        except DuplicateError:
            return DepositOutcome.DUPLICATE

        logger.info(f"Credited {amount} {token.asset} to wallet {wallet.id} (tx {tx_hash[:12]}...)")
        return DepositOutcome.CREDITED

    async def run(self) -> None:
        """Poll forever. Cycle errors and timeouts are logged and retried next tick."""
        self._running = True
        logger.info(
            f"Starting deposit watcher (interval: {self.poll_interval}s, "
            f"max range: {self.max_block_range} blocks)"
        )

        while self._running:
            try:
                await asyncio.wait_for(self.poll_once(), timeout=self.cycle_timeout)
            except asyncio.TimeoutError:
                logger.error(f"Watcher cycle timed out after {self.cycle_timeout}s")
            except Exception as e:
                logger.error(f"Watcher cycle error: {e}")

            if not self._running:
                break
            self.state = WatcherState.SLEEP
            await asyncio.sleep(self.poll_interval)

        self.state = WatcherState.STOPPED

    def stop(self) -> None:
        """Stop the loop after the current cycle."""
        self._running = False
        logger.info("Stopping deposit watcher")
