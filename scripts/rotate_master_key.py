#!/usr/bin/env python3
"""Master key rotation.

Re-encrypts every stored mnemonic envelope under a new master key in a
single transaction. Run with the service stopped, then deploy the new key.

Usage:
    NEW_MASTER_KEY=... python scripts/rotate_master_key.py

The current key is read from MASTER_KEY as usual.
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

from stablewallet.config import get_settings
from stablewallet.crypto import EnvelopeCipher
from stablewallet.errors import WalletCoreError
from stablewallet.ledger.database import close_db
from stablewallet.services.keys import HDKeyService

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def main() -> int:
    settings = get_settings()
    new_key = os.getenv("NEW_MASTER_KEY")

    try:
        target = EnvelopeCipher(
            new_key, n=settings.scrypt_n, r=settings.scrypt_r, p=settings.scrypt_p
        )
    except WalletCoreError as e:
        logger.error(f"NEW_MASTER_KEY rejected: {e}")
        return 1

    if new_key == settings.master_key:
        logger.error("NEW_MASTER_KEY must differ from MASTER_KEY")
        return 1

    service = HDKeyService()
    try:
        count = await service.rotate_master_key(target)
        logger.info(f"Rotated {count} mnemonic records. Set MASTER_KEY to the new value now.")
        return 0
    except WalletCoreError as e:
        logger.error(f"Rotation aborted, nothing was changed: {e}")
        return 1
    finally:
        await service.audit.stop()
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
