#!/usr/bin/env python3
"""Database setup script - creates all tables.

For schema upgrades of an existing database use ``alembic upgrade head``.
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv

load_dotenv()

from stablewallet.config import get_settings
from stablewallet.ledger.database import close_db, init_db


async def main():
    """Create database tables."""
    settings = get_settings()

    print(f"Database URL: {settings.get_safe_dict()['database_url']}")
    print("Creating database tables...")

    try:
        await init_db()
        print("Database tables created successfully!")
    except Exception as e:
        print(f"Error creating tables: {e}")
        raise
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
