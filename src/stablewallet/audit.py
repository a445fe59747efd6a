"""Audit trail for key material and settlement events.

Records are handed to a bounded in-memory queue and written by a background
worker. The primary operation never waits for, or fails because of, an
audit write: overflow and write errors are reported on this module's logger.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stablewallet.ledger.database import get_db
from stablewallet.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Audited actions."""

    MNEMONIC_CREATED = "MNEMONIC_CREATED"
    ADDRESS_DERIVED = "ADDRESS_DERIVED"
    KEY_EXPORT_GRANTED = "KEY_EXPORT_GRANTED"
    KEY_EXPORT_DENIED = "KEY_EXPORT_DENIED"
    KEY_EXPORT_RATE_LIMITED = "KEY_EXPORT_RATE_LIMITED"
    LEDGER_SETTLED = "LEDGER_SETTLED"
    DEPOSIT_UNATTRIBUTED = "DEPOSIT_UNATTRIBUTED"
    MASTER_KEY_ROTATED = "MASTER_KEY_ROTATED"


@dataclass
class AuditRecord:
    """Structured audit event. Never carries secrets."""

    action: AuditAction
    principal_id: Optional[str] = None
    entity_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    status: str = "SUCCESS"
    wallet_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditTrail:
    """Fire-and-forget audit sink backed by the audit_logs table.

    Usage:
        trail = AuditTrail(session_factory)
        trail.emit(AuditRecord(AuditAction.ADDRESS_DERIVED, principal_id="u1"))
        await trail.flush()
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        maxsize: int = 1000,
    ):
        self._session_factory = session_factory
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def emit(self, record: AuditRecord) -> None:
        """Queue a record without blocking. Drops it if the queue is full."""
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Audit queue full, dropped {record.action.value} "
                f"(principal={record.principal_id}, entity={record.entity_id})"
            )
            return

        if self._worker is None:
            try:
                self.start()
            except RuntimeError:
                # No running loop; flush() will drain the queue later
                pass

    def start(self) -> None:
        """Start the background writer on the running loop."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self._write(record)
            except Exception as e:
                self.failed += 1
                logger.error(f"Audit write failed for {record.action.value}: {e}")
            finally:
                self._queue.task_done()

    async def _write(self, record: AuditRecord) -> None:
        async with get_db(self._session_factory) as session:
            repo = LedgerRepository(session)
            await repo.add_audit_log(
                action=record.action.value,
                principal_id=record.principal_id,
                wallet_id=record.wallet_id,
                entity_id=record.entity_id,
                status=record.status,
                details=record.metadata or None,
                created_at=record.timestamp,
            )
        logger.debug(f"Audit {record.action.value} {record.status} principal={record.principal_id}")

    async def flush(self) -> None:
        """Wait until every queued record has been written (or has failed)."""
        if self._worker is not None and not self._worker.done():
            await self._queue.join()
            return

        while not self._queue.empty():
            record = self._queue.get_nowait()
            try:
                await self._write(record)
            except Exception as e:
                self.failed += 1
                logger.error(f"Audit write failed for {record.action.value}: {e}")
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        """Flush pending records and stop the worker."""
        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
