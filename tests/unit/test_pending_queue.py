# =============================================================================
# tests/unit/test_pending_queue.py
# Unit Tests for PendingQueue
# =============================================================================

from datetime import date
from decimal import Decimal

import numpy as np
import pytest

from costa_core.errors import PayloadValidationError, UnknownOperationError
from costa_core.offline.local_database import LocalDatabase
from costa_core.offline.pending_queue import (
    EntryBatchPayload,
    OperationKind,
    OperationStatus,
    PendingQueue,
    RecordInsertPayload,
)


def pulp(n):
    return RecordInsertPayload({"polpa_id": f"p{n}", "quantidade": n})


def batch():
    return EntryBatchPayload(
        entry={"observacao": None, "usuario_id": "u1"},
        items=[{"item_id": "i1", "quantidade_perdida": 2, "preco_unitario": 6.5}],
    )


class TestEnqueue:
    """Adding operations"""

    def test_enqueue_returns_id_and_persists(self, queue):
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))

        op = queue.get(op_id)
        assert op is not None
        assert op.kind == OperationKind.RECORD_PULP_COUNT
        assert op.payload.record == {"polpa_id": "p1", "quantidade": 1}
        assert op.status == OperationStatus.PENDING
        assert op.attempts == 0

    def test_kind_accepts_wire_value(self, queue):
        op_id = queue.enqueue("create-entry-batch", batch())

        assert queue.get(op_id).kind == OperationKind.CREATE_ENTRY_BATCH

    def test_created_at_uses_clock(self, queue, clock):
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))

        assert queue.get(op_id).created_at == clock.now

    def test_unknown_kind_rejected(self, queue):
        with pytest.raises(UnknownOperationError):
            queue.enqueue("delete-everything", pulp(1))

    def test_payload_must_match_kind(self, queue):
        """A record payload cannot be queued as an entry batch"""
        with pytest.raises(PayloadValidationError):
            queue.enqueue(OperationKind.CREATE_ENTRY_BATCH, pulp(1))

    def test_entry_batch_needs_items(self, queue):
        with pytest.raises(PayloadValidationError):
            queue.enqueue(OperationKind.CREATE_ENTRY_BATCH,
                          EntryBatchPayload(entry={"usuario_id": "u1"}, items=[]))

    def test_empty_record_rejected(self, queue):
        with pytest.raises(PayloadValidationError):
            queue.enqueue(OperationKind.RECORD_BEVERAGE_COUNT, RecordInsertPayload({}))

    def test_values_normalized_to_json(self, queue):
        """numpy, Decimal, dates and NaN are stored as plain JSON values"""
        op_id = queue.enqueue(OperationKind.RECORD_PRODUCE_RECEIPT, RecordInsertPayload({
            "quantidade": np.int64(4),
            "peso": np.float64(2.5),
            "preco": Decimal("3.10"),
            "data": date(2026, 10, 19),
            "obs": float("nan"),
        }))

        record = queue.get(op_id).payload.record
        assert record == {
            "quantidade": 4,
            "peso": 2.5,
            "preco": 3.1,
            "data": "2026-10-19",
            "obs": None,
        }
        assert type(record["quantidade"]) is int

    def test_unserializable_value_rejected(self, queue):
        with pytest.raises(PayloadValidationError):
            queue.enqueue(OperationKind.RECORD_PULP_COUNT, RecordInsertPayload({"x": object()}))


class TestOrdering:
    """FIFO list and dequeue"""

    def test_list_is_fifo(self, queue):
        ids = [queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(n)) for n in range(5)]

        assert [op.id for op in queue.list()] == ids

    def test_dequeue_removes(self, queue):
        first = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))
        second = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(2))

        queue.dequeue(first)

        assert [op.id for op in queue.list()] == [second]
        assert queue.count() == 1

    def test_dequeue_is_idempotent(self, queue):
        """Removing an absent id is a no-op"""
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))
        queue.dequeue(op_id)
        queue.dequeue(op_id)
        queue.dequeue("never-existed")

        assert queue.count() == 0

    def test_count_by_kind(self, queue):
        queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))
        queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(2))
        queue.enqueue(OperationKind.CREATE_ENTRY_BATCH, batch())

        assert queue.count_by_kind() == {"record-pulp-count": 2, "create-entry-batch": 1}


class TestReplayBookkeeping:
    """Failure tracking, checkpoints and parking"""

    def test_record_failure_increments_attempts(self, queue, clock):
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))

        assert queue.record_failure(op_id, "timeout") == 1
        clock.advance(minutes=5)
        assert queue.record_failure(op_id, "timeout again") == 2

        op = queue.get(op_id)
        assert op.last_error == "timeout again"
        assert op.last_attempt == clock.now

    def test_record_failure_unknown_id(self, queue):
        assert queue.record_failure("missing", "x") == 0

    def test_update_payload_checkpoint(self, queue):
        op_id = queue.enqueue(OperationKind.CREATE_ENTRY_BATCH, batch())
        checkpointed = batch()
        checkpointed.remote_entry_id = "header-9"

        queue.update_payload(op_id, checkpointed)

        assert queue.get(op_id).payload.remote_entry_id == "header-9"

    def test_park_moves_to_failed_list(self, queue):
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))

        queue.park(op_id, "violates check constraint")

        assert queue.count() == 0
        assert queue.list() == []
        failed = queue.failed()
        assert [op.id for op in failed] == [op_id]
        assert failed[0].status == OperationStatus.FAILED
        assert queue.failed_count() == 1

    def test_parked_ops_ignore_dequeue(self, queue):
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))
        queue.park(op_id, "bad")

        queue.dequeue(op_id)

        assert queue.failed_count() == 1

    def test_retry_failed_keeps_original_position(self, queue):
        first = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))
        second = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(2))
        queue.park(first, "bad")

        assert queue.retry_failed(first) is True
        assert [op.id for op in queue.list()] == [first, second]
        assert queue.get(first).attempts == 0

    def test_retry_failed_only_applies_to_parked(self, queue):
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))

        assert queue.retry_failed(op_id) is False

    def test_discard_deletes_parked(self, queue):
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))
        queue.park(op_id, "bad")

        assert queue.discard(op_id) is True
        assert queue.get(op_id) is None

    def test_discard_does_not_touch_pending(self, queue):
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))

        assert queue.discard(op_id) is False
        assert queue.count() == 1


class TestDurability:
    """Queue contents across restarts"""

    def test_survives_restart(self, db_path, clock):
        """A new process on the same file sees the same queue"""
        first_db = LocalDatabase(db_path)
        first_db.initialize()
        ids = [PendingQueue(first_db, clock).enqueue(OperationKind.RECORD_PULP_COUNT, pulp(n))
               for n in range(3)]
        first_db.close()

        second_db = LocalDatabase(db_path)
        second_db.initialize()
        try:
            restored = PendingQueue(second_db, clock).list()
            assert [op.id for op in restored] == ids
            assert restored[2].payload.record["quantidade"] == 2
        finally:
            second_db.close()

    def test_list_skips_unknown_kind_without_writing(self, queue, database):
        """Listing leaves rows this build cannot replay where they are"""
        database.execute(
            "INSERT INTO pending_operations (id, kind, payload_json, created_at) VALUES (?, ?, ?, ?)",
            ["legacy", "print-label", "{}", "2026-10-19T09:00:00"]
        )
        good = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))

        assert [op.id for op in queue.list()] == [good]
        assert queue.failed_count() == 0
        assert queue.count() == 2

    def test_quarantine_unknown_parks_rows(self, queue, database):
        """Rows this build cannot replay are moved out of the way"""
        database.execute(
            "INSERT INTO pending_operations (id, kind, payload_json, created_at) VALUES (?, ?, ?, ?)",
            ["legacy", "print-label", "{}", "2026-10-19T09:00:00"]
        )
        good = queue.enqueue(OperationKind.RECORD_PULP_COUNT, pulp(1))

        assert queue.quarantine_unknown() == ["legacy"]
        assert [op.id for op in queue.list()] == [good]
        assert queue.count() == 1
        assert database.count("pending_operations", "status = 'failed'") == 1
        assert queue.quarantine_unknown() == []
