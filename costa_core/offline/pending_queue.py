# =============================================================================
# costa_core/offline/pending_queue.py
# Durable FIFO Queue of Writes Waiting for the Backend
# =============================================================================
"""
PendingQueue - writes captured while offline, replayed in creation order.

Each operation is a tagged union: an OperationKind plus the payload type
that kind requires. Operations are persisted the moment they are enqueued
and leave the queue only when the backend confirms the replay, or when an
operator discards a parked one.

Row lifecycle:
    pending --(replay ok)--> removed
    pending --(permanent failure, attempts exhausted)--> failed (parked)
    failed  --(retry_failed)--> pending (original position)
    failed  --(discard)--> removed
"""

from __future__ import annotations
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from costa_core.errors import PayloadValidationError, UnknownOperationError
from costa_core.utils.serialization import to_json_safe
from .local_database import LocalDatabase

logger = logging.getLogger(__name__)


class OperationKind(Enum):
    """Kinds of deferred writes."""
    CREATE_ENTRY_BATCH = "create-entry-batch"          # Loss entry header + items
    RECORD_PULP_COUNT = "record-pulp-count"            # Frozen pulp stock count
    RECORD_PRODUCE_RECEIPT = "record-produce-receipt"  # Produce receiving check
    RECORD_BEVERAGE_COUNT = "record-beverage-count"    # Beverage stock count


class OperationStatus(Enum):
    """Queue row status."""
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class EntryBatchPayload:
    """
    A loss entry: one header row plus its item rows.

    ``remote_entry_id`` is filled in once the header has been created on
    the backend, so a retried replay only inserts the items.
    """
    entry: Dict[str, Any]
    items: List[Dict[str, Any]]
    remote_entry_id: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry": self.entry,
            "items": self.items,
            "remote_entry_id": self.remote_entry_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EntryBatchPayload:
        return cls(
            entry=dict(data.get("entry") or {}),
            items=[dict(item) for item in data.get("items") or []],
            remote_entry_id=data.get("remote_entry_id"),
        )


@dataclass
class RecordInsertPayload:
    """A single row for the table bound to the operation kind."""
    record: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"record": self.record}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RecordInsertPayload:
        return cls(record=dict(data.get("record") or {}))


Payload = Union[EntryBatchPayload, RecordInsertPayload]

PAYLOAD_TYPES = {
    OperationKind.CREATE_ENTRY_BATCH: EntryBatchPayload,
    OperationKind.RECORD_PULP_COUNT: RecordInsertPayload,
    OperationKind.RECORD_PRODUCE_RECEIPT: RecordInsertPayload,
    OperationKind.RECORD_BEVERAGE_COUNT: RecordInsertPayload,
}


@dataclass
class PendingOperation:
    """A queued write."""
    id: str
    kind: OperationKind
    payload: Payload
    created_at: datetime
    attempts: int = 0
    last_error: Optional[str] = None
    last_attempt: Optional[datetime] = None
    status: OperationStatus = OperationStatus.PENDING
    seq: int = field(default=0, repr=False)


def parse_kind(kind: Union[OperationKind, str]) -> OperationKind:
    """Resolve an OperationKind from its enum or wire value."""
    if isinstance(kind, OperationKind):
        return kind
    try:
        return OperationKind(kind)
    except ValueError:
        raise UnknownOperationError(str(kind))


def validate_payload(kind: OperationKind, payload: Payload) -> None:
    """
    Check that a payload has the shape its kind requires.

    Raises:
        PayloadValidationError: on mismatch
    """
    expected = PAYLOAD_TYPES[kind]
    if not isinstance(payload, expected):
        raise PayloadValidationError(
            f"{kind.value} requires {expected.__name__}, got {type(payload).__name__}",
            kind=kind.value,
        )

    if isinstance(payload, EntryBatchPayload):
        if not isinstance(payload.entry, dict):
            raise PayloadValidationError("Entry header must be a mapping",
                                         kind=kind.value, field="entry")
        if not payload.items:
            raise PayloadValidationError("Entry batch has no items",
                                         kind=kind.value, field="items")
        if not all(isinstance(item, dict) for item in payload.items):
            raise PayloadValidationError("Entry items must be mappings",
                                         kind=kind.value, field="items")
    elif not isinstance(payload.record, dict) or not payload.record:
        raise PayloadValidationError("Record must be a non-empty mapping",
                                     kind=kind.value, field="record")


def normalize_payload(kind: OperationKind, payload: Payload) -> Payload:
    """Return a copy of the payload holding only JSON-safe values."""
    try:
        clean = to_json_safe(payload.to_dict())
    except TypeError as e:
        raise PayloadValidationError(str(e), kind=kind.value)
    return PAYLOAD_TYPES[kind].from_dict(clean)


class PendingQueue:
    """
    Durable FIFO of pending writes backed by LocalDatabase.

    Usage:
        queue = PendingQueue(database)
        op_id = queue.enqueue(OperationKind.RECORD_PULP_COUNT,
                              RecordInsertPayload({"polpa_id": "p1", "quantidade": 12}))
        for op in queue.list():
            ...
        queue.dequeue(op_id)
    """

    def __init__(
        self,
        database: LocalDatabase,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            database: Initialized local database
            clock: Time source (injectable for tests)
        """
        self.database = database
        self._clock = clock

    # =========================================================================
    # CORE OPERATIONS
    # =========================================================================

    def enqueue(self, kind: Union[OperationKind, str], payload: Payload) -> str:
        """
        Persist a new operation at the tail of the queue.

        Args:
            kind: Operation kind
            payload: Payload matching the kind

        Returns:
            The new operation id
        """
        kind = parse_kind(kind)
        validate_payload(kind, payload)
        payload = normalize_payload(kind, payload)

        op_id = uuid.uuid4().hex
        self.database.execute(
            """
            INSERT INTO pending_operations (id, kind, payload_json, created_at, status)
            VALUES (?, ?, ?, ?, ?)
            """,
            [op_id, kind.value, json.dumps(payload.to_dict()),
             self._clock().isoformat(), OperationStatus.PENDING.value]
        )
        logger.info(f"Queued {kind.value} operation {op_id}")
        return op_id

    def dequeue(self, op_id: str) -> None:
        """Remove a pending operation. Unknown ids are ignored."""
        removed = self.database.execute(
            "DELETE FROM pending_operations WHERE id = ? AND status = ?",
            [op_id, OperationStatus.PENDING.value]
        )
        if removed:
            logger.debug(f"Dequeued operation {op_id}")

    def list(self) -> List[PendingOperation]:
        """Pending operations, oldest first."""
        rows = self.database.query(
            "SELECT * FROM pending_operations WHERE status = ? ORDER BY seq ASC",
            [OperationStatus.PENDING.value]
        )
        operations = []
        for row in rows:
            try:
                operations.append(self._row_to_operation(row))
            except UnknownOperationError as e:
                logger.debug(f"Skipping operation {row['id']}: {e.message}")
        return operations

    def quarantine_unknown(self) -> List[str]:
        """
        Park pending rows whose kind this build cannot replay.

        Returns:
            Ids of the rows that were parked
        """
        known = [kind.value for kind in OperationKind]
        placeholders = ", ".join("?" for _ in known)
        rows = self.database.query(
            f"SELECT id, kind FROM pending_operations WHERE status = ? AND kind NOT IN ({placeholders})",
            [OperationStatus.PENDING.value, *known]
        )
        parked = []
        for row in rows:
            # A row written by another build; keep it out of the way
            message = UnknownOperationError(row["kind"]).message
            self.park(row["id"], message)
            parked.append(row["id"])
        return parked

    def count(self) -> int:
        """Number of pending operations."""
        return self.database.count(
            "pending_operations", "status = ?", [OperationStatus.PENDING.value]
        )

    def get(self, op_id: str) -> Optional[PendingOperation]:
        """Fetch one operation (pending or parked) by id."""
        rows = self.database.query(
            "SELECT * FROM pending_operations WHERE id = ?",
            [op_id]
        )
        return self._row_to_operation(rows[0]) if rows else None

    # =========================================================================
    # REPLAY BOOKKEEPING
    # =========================================================================

    def record_failure(self, op_id: str, error: str) -> int:
        """
        Record a failed replay attempt.

        Returns:
            Attempt count after this failure (0 if the id is unknown)
        """
        with self.database.transaction() as conn:
            conn.execute(
                """
                UPDATE pending_operations
                SET attempts = attempts + 1, last_attempt = ?, last_error = ?
                WHERE id = ?
                """,
                [self._clock().isoformat(), error, op_id]
            )
            row = conn.execute(
                "SELECT attempts FROM pending_operations WHERE id = ?", [op_id]
            ).fetchone()
        return row["attempts"] if row else 0

    def update_payload(self, op_id: str, payload: Payload) -> None:
        """Persist a replay checkpoint into an operation's payload."""
        op = self.get(op_id)
        if op is None:
            return
        validate_payload(op.kind, payload)
        payload = normalize_payload(op.kind, payload)
        self.database.execute(
            "UPDATE pending_operations SET payload_json = ? WHERE id = ?",
            [json.dumps(payload.to_dict()), op_id]
        )

    def park(self, op_id: str, error: str) -> None:
        """Move an operation to the failed list so it stops blocking the queue."""
        self.database.execute(
            "UPDATE pending_operations SET status = ?, last_error = ? WHERE id = ?",
            [OperationStatus.FAILED.value, error, op_id]
        )
        logger.warning(f"Operation {op_id} parked as failed: {error}")

    def failed(self) -> List[PendingOperation]:
        """Parked operations, oldest first."""
        rows = self.database.query(
            "SELECT * FROM pending_operations WHERE status = ? ORDER BY seq ASC",
            [OperationStatus.FAILED.value]
        )
        operations = []
        for row in rows:
            try:
                operations.append(self._row_to_operation(row))
            except UnknownOperationError as e:
                logger.debug(f"Skipping parked operation {row['id']}: {e.message}")
        return operations

    def failed_count(self) -> int:
        """Number of parked operations."""
        return self.database.count(
            "pending_operations", "status = ?", [OperationStatus.FAILED.value]
        )

    def retry_failed(self, op_id: str) -> bool:
        """
        Put a parked operation back in the queue at its original position.

        Returns:
            True if an operation was moved back
        """
        moved = self.database.execute(
            "UPDATE pending_operations SET status = ?, attempts = 0 WHERE id = ? AND status = ?",
            [OperationStatus.PENDING.value, op_id, OperationStatus.FAILED.value]
        )
        if moved:
            logger.info(f"Operation {op_id} returned to the queue")
        return bool(moved)

    def discard(self, op_id: str) -> bool:
        """
        Permanently delete a parked operation (manual clear).

        Returns:
            True if an operation was deleted
        """
        removed = self.database.execute(
            "DELETE FROM pending_operations WHERE id = ? AND status = ?",
            [op_id, OperationStatus.FAILED.value]
        )
        if removed:
            logger.warning(f"Operation {op_id} discarded by operator")
        return bool(removed)

    def count_by_kind(self) -> Dict[str, int]:
        """Pending operation counts per kind."""
        rows = self.database.query(
            """
            SELECT kind, COUNT(*) AS count FROM pending_operations
            WHERE status = ? GROUP BY kind
            """,
            [OperationStatus.PENDING.value]
        )
        return {row["kind"]: row["count"] for row in rows}

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _row_to_operation(self, row) -> PendingOperation:
        kind = parse_kind(row["kind"])
        return PendingOperation(
            id=row["id"],
            kind=kind,
            payload=PAYLOAD_TYPES[kind].from_dict(json.loads(row["payload_json"])),
            created_at=datetime.fromisoformat(row["created_at"]),
            attempts=row["attempts"] or 0,
            last_error=row["last_error"],
            last_attempt=datetime.fromisoformat(row["last_attempt"]) if row["last_attempt"] else None,
            status=OperationStatus(row["status"]),
            seq=row["seq"],
        )
