#!/usr/bin/env python3
"""Ledger Reconciliation Script.

Recomputes expected balances from COMPLETED transactions and compares them
with the stored balances. Discrepancies are reported, never corrected:
balances only change through settlements.

Usage:
    python scripts/reconcile.py [--wallet WALLET_ID] [--principal PRINCIPAL_ID]

Exit status is 1 when any discrepancy is found.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from stablewallet.ledger.database import close_db, get_db, init_db
from stablewallet.ledger.repository import LedgerRepository
from stablewallet.services.ledger import LedgerService

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def select_wallets(wallet_id: str = None, principal_id: str = None) -> list[str]:
    """Wallet ids to reconcile."""
    if wallet_id:
        return [wallet_id]
    async with get_db() as session:
        repo = LedgerRepository(session)
        if principal_id:
            return await repo.get_wallet_ids_for_principal(principal_id)
        return await repo.get_all_wallet_ids()


async def main() -> int:
    parser = argparse.ArgumentParser(description="Ledger Reconciliation")
    parser.add_argument("--wallet", type=str, help="Only reconcile one wallet")
    parser.add_argument("--principal", type=str, help="Only reconcile a principal's wallets")
    args = parser.parse_args()

    await init_db()
    ledger = LedgerService()

    try:
        wallet_ids = await select_wallets(args.wallet, args.principal)

        logger.info("=" * 60)
        logger.info(f"LEDGER RECONCILIATION ({len(wallet_ids)} wallets)")
        logger.info("=" * 60)

        discrepancies = 0
        for wallet_id in wallet_ids:
            for d in await ledger.reconcile(wallet_id):
                discrepancies += 1
                logger.warning(
                    f"{wallet_id} {d.asset}: stored {d.actual}, expected {d.expected} "
                    f"(difference {d.difference})"
                )

        logger.info("=" * 60)
        if discrepancies:
            logger.info(f"SUMMARY: {discrepancies} discrepancies")
        else:
            logger.info("SUMMARY: OK")
        return 1 if discrepancies else 0
    finally:
        await ledger.audit.stop()
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
