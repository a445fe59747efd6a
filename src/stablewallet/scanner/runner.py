"""Deposit watcher runner.

Watches the vault from the deployment descriptor for Deposited events and
credits the referenced wallets.

Usage:
    python -m stablewallet.scanner.runner --interval 12000
    python -m stablewallet.scanner.runner --once --start-block 1234567

Environment variables:
    RPC_URL: EVM JSON-RPC endpoint (required)
    CHAIN_ID: Selects deployments/<network>.json (default: 80002)
    CONFIRMATIONS: Confirmations required before crediting (default: 6)
    WATCHER_POLL_MS: Milliseconds between cycles (default: 12000)
"""

import argparse
import asyncio
import logging
from typing import Optional

from stablewallet.audit import AuditTrail
from stablewallet.chain.rpc import get_chain_reader
from stablewallet.config import get_settings
from stablewallet.deployment import get_deployment
from stablewallet.ledger.database import close_db, init_db
from stablewallet.scanner.watcher import DepositWatcher
from stablewallet.services.ledger import LedgerService
from stablewallet.tokens import TokenRegistry

logger = logging.getLogger(__name__)


def create_watcher_from_settings(interval_ms: Optional[int] = None) -> DepositWatcher:
    """Build a watcher from settings and the deployment descriptor.

    Raises:
        ConfigurationError: Missing RPC URL, deployment file or vault contract
    """
    settings = get_settings()
    deployment = get_deployment(settings)

    # Explicit environment overrides win over the deployment file
    tokens = TokenRegistry(
        {**deployment.tokens, **settings.get_token_overrides()},
        settings.default_network,
    )
    ledger = LedgerService(audit=AuditTrail(maxsize=settings.audit_queue_size))

    poll_ms = interval_ms if interval_ms is not None else settings.watcher_poll_ms
    return DepositWatcher(
        chain=get_chain_reader(),
        ledger=ledger,
        vault_address=deployment.vault_address,
        tokens=tokens,
        network=settings.default_network,
        confirmations=settings.confirmations,
        poll_interval=poll_ms / 1000,
        max_block_range=settings.watcher_max_block_range,
        cycle_timeout=settings.watcher_cycle_timeout_seconds,
        chain_id=deployment.chain_id,
    )


async def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run the vault deposit watcher")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle and exit",
    )
    parser.add_argument(
        "--start-block",
        type=int,
        default=None,
        help="First block to scan (default: current head)",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Milliseconds between cycles (default: WATCHER_POLL_MS)",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    watcher = create_watcher_from_settings(args.interval)
    await init_db()

    try:
        await watcher.start(args.start_block)
        if args.once:
            result = await watcher.poll_once()
            print(
                f"Scanned blocks {result.from_block}-{result.to_block}: "
                f"{result.credited} credited, {result.deferred} deferred, cursor {result.cursor}"
            )
        else:
            await watcher.run()
    finally:
        await watcher.ledger.audit.stop()
        await watcher.chain.close()
        await close_db()


def cli() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Deposit watcher interrupted")


if __name__ == "__main__":
    cli()
