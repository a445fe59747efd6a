"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["MASTER_KEY"] = "test-master-key-0123456789abcdef"
os.environ["SCRYPT_N"] = "1024"
os.environ["DEBUG"] = "false"

from stablewallet.audit import AuditTrail
from stablewallet.chain.simulated import SimulatedChain
from stablewallet.crypto import EnvelopeCipher
from stablewallet.ledger.database import create_engine_for_url, create_session_factory, init_db
from stablewallet.ledger.repository import LedgerRepository
from stablewallet.ratelimit import InMemoryRateLimiter
from stablewallet.scanner.watcher import DepositWatcher
from stablewallet.services.keys import HDKeyService
from stablewallet.services.ledger import LedgerService
from stablewallet.services.settlement import SettlementService
from stablewallet.services.verification import OnchainVerifier
from stablewallet.tokens import TokenRegistry

# Well-known development mnemonic and its first accounts
TEST_MNEMONIC = "test test test test test test test test test test test junk"
TEST_ADDRESS_0 = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
TEST_PRIVATE_KEY_0 = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS_1 = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

VAULT_ADDRESS = "0x" + "ab" * 20
SWAP_ADDRESS = "0x" + "5a" * 20
DEPOSITOR = "0x" + "d0" * 20
USDT_ADDRESS = "0x83e4d17029a1a81d5f4bbd1d3ef1c1c91f35022f"
USDC_ADDRESS = "0x23c6cda5c992acddc99cb8df1164d42d20e77838"
DAI_ADDRESS = "0x" + "da" * 20


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine (separate connections per session)."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'wallet.db'}")
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture(scope="session")
def cipher() -> EnvelopeCipher:
    """Cipher with a low scrypt cost so tests stay fast."""
    return EnvelopeCipher("test-master-key-0123456789abcdef", n=2**10)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> InMemoryRateLimiter:
    return InMemoryRateLimiter(max_attempts=5, window_seconds=900, clock=clock)


@pytest_asyncio.fixture
async def audit(session_factory) -> AsyncGenerator[AuditTrail, None]:
    trail = AuditTrail(session_factory)

    yield trail

    await trail.stop()


@pytest.fixture
def ledger(session_factory, audit) -> LedgerService:
    return LedgerService(session_factory, audit=audit)


@pytest.fixture
def key_service(session_factory, cipher, limiter, audit) -> HDKeyService:
    return HDKeyService(session_factory, cipher=cipher, limiter=limiter, audit=audit)


@pytest.fixture
def tokens() -> TokenRegistry:
    return TokenRegistry({"DAI": DAI_ADDRESS}, "POLYGON_AMOY")


@pytest.fixture
def chain() -> SimulatedChain:
    return SimulatedChain(chain_id=80002, block_number=1000)


@pytest.fixture
def verifier(chain, tokens) -> OnchainVerifier:
    return OnchainVerifier(chain, expected_chain_id=80002, tokens=tokens)


@pytest.fixture
def settlement(ledger, verifier) -> SettlementService:
    return SettlementService(ledger, verifier=verifier, swap_address=SWAP_ADDRESS)


@pytest.fixture
def watcher(chain, ledger, tokens) -> DepositWatcher:
    return DepositWatcher(
        chain=chain,
        ledger=ledger,
        vault_address=VAULT_ADDRESS,
        tokens=tokens,
        network="POLYGON_AMOY",
        confirmations=6,
        poll_interval=0.01,
        max_block_range=2000,
    )


@pytest_asyncio.fixture
async def wallet(session_factory):
    """Default wallet for principal ``u1`` with zero balances."""
    async with session_factory() as session:
        wallet = await LedgerRepository(session).get_or_create_default_wallet("u1")
        await session.commit()
    return wallet
