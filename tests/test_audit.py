"""Audit trail tests."""

import pytest

from stablewallet.audit import AuditAction, AuditRecord, AuditTrail
from stablewallet.ledger.repository import LedgerRepository


def _record(principal_id="u1", **kwargs) -> AuditRecord:
    return AuditRecord(action=AuditAction.ADDRESS_DERIVED, principal_id=principal_id, **kwargs)


class TestAuditTrail:
    """Tests for the queued audit writer."""

    @pytest.mark.asyncio
    async def test_records_are_written(self, audit, session_factory):
        """Test that emitted records reach the audit_logs table."""
        audit.emit(_record(entity_id="0xabc", metadata={"asset": "USDT", "index": 0}))
        audit.emit(_record(status="DENIED"))
        await audit.flush()

        async with session_factory() as session:
            logs = await LedgerRepository(session).get_audit_logs(principal_id="u1")

        assert [log.status for log in logs] == ["SUCCESS", "DENIED"]
        assert logs[0].action == "ADDRESS_DERIVED"
        assert logs[0].entity_id == "0xabc"
        assert logs[0].details == {"asset": "USDT", "index": 0}
        assert audit.pending == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_without_raising(self, session_factory):
        """Test that overflow is counted and logged, never raised to the caller."""
        trail = AuditTrail(session_factory, maxsize=2)
        # Keep the worker from draining while we fill the queue
        trail._worker = object()

        trail.emit(_record())
        trail.emit(_record())
        trail.emit(_record())

        assert trail.pending == 2
        assert trail.dropped == 1

    @pytest.mark.asyncio
    async def test_write_failure_is_counted(self, session_factory, caplog):
        """Test that a failing write does not propagate."""
        trail = AuditTrail(session_factory)

        async def broken(record):
            raise RuntimeError("database unavailable")

        trail._write = broken
        trail.emit(_record())
        await trail.flush()
        await trail.stop()

        assert trail.failed == 1
        assert "Audit write failed" in caplog.text

    @pytest.mark.asyncio
    async def test_flush_without_worker_drains_inline(self, session_factory):
        """Test that records queued outside a running loop are written on flush."""
        trail = AuditTrail(session_factory)
        trail._queue.put_nowait(_record(principal_id="offline"))

        await trail.flush()

        async with session_factory() as session:
            logs = await LedgerRepository(session).get_audit_logs(principal_id="offline")
        assert len(logs) == 1

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, audit):
        audit.emit(_record())
        await audit.stop()
        await audit.stop()

        assert audit.pending == 0
