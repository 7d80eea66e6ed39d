# =============================================================================
# costa_core/offline/sync_engine.py
# Automatic Synchronization Engine
# =============================================================================
"""
SyncEngine - Replays queued writes to Supabase when connectivity returns.

Features:
- Strict FIFO drain that stops at the first failure
- At most one drain at a time (overlapping triggers are ignored)
- Drain shortly after an offline -> online transition
- Background loop draining pending work and refreshing a stale catalog
- Direct writes when online, queueing when offline or on failure
- Event callbacks

A permanent backend rejection that keeps failing is parked in the failed
list after MAX_REPLAY_ATTEMPTS so later writes are not blocked forever.
"""

from __future__ import annotations
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from costa_core.config import RemoteTables
from costa_core.data.supabase_client import RemoteClient
from costa_core.errors import LocalStorageError, RemoteStoreError
from costa_core.logging import LogContext
from .catalog_cache import CatalogCache
from .connection_manager import ConnectionManager, ConnectionState, ConnectionStatus
from .pending_queue import (
    EntryBatchPayload,
    OperationKind,
    Payload,
    PendingOperation,
    PendingQueue,
    RecordInsertPayload,
    normalize_payload,
    parse_kind,
    validate_payload,
)

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_sync_time"


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync_time: Optional[datetime] = None
    last_attempt: Optional[datetime] = None
    pending_count: int = 0
    failed_count: int = 0
    total_synced: int = 0
    last_error: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of one drain attempt."""
    replayed: int = 0
    remaining: int = 0
    skipped: bool = False
    reason: Optional[str] = None
    failed_operation_id: Optional[str] = None
    error: Optional[str] = None
    parked: List[str] = field(default_factory=list)
    refreshed: bool = False

    @property
    def success(self) -> bool:
        """True when the drain ran and nothing failed."""
        return not self.skipped and self.error is None


class SubmitOutcome(Enum):
    """What happened to a submitted write."""
    SYNCED = "synced"   # Written to the backend now
    QUEUED = "queued"   # Stored locally, will be replayed
    FAILED = "failed"   # Neither written nor stored


@dataclass
class SubmitResult:
    """Outcome of SyncEngine.submit()."""
    outcome: SubmitOutcome
    operation_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def synced(self) -> bool:
        return self.outcome == SubmitOutcome.SYNCED

    @property
    def queued(self) -> bool:
        return self.outcome == SubmitOutcome.QUEUED


class SyncEngine:
    """
    Drains the pending queue into Supabase.

    Usage:
        engine = SyncEngine(queue, cache, remote, monitor)
        engine.start()                       # reconnect trigger + background loop
        engine.submit(OperationKind.RECORD_PULP_COUNT, RecordInsertPayload({...}))
        engine.sync_now()                    # drain immediately
    """

    # Configuration
    SYNC_INTERVAL = 300             # Seconds between background passes
    RECONNECT_SYNC_DELAY = 1.0      # Seconds to wait after reconnecting
    MAX_REPLAY_ATTEMPTS = 5         # Attempts before a rejected write is parked

    def __init__(
        self,
        queue: PendingQueue,
        cache: CatalogCache,
        remote: RemoteClient,
        monitor: ConnectionManager,
        tables: Optional[RemoteTables] = None,
        sync_interval: float = SYNC_INTERVAL,
        reconnect_delay: float = RECONNECT_SYNC_DELAY,
        max_replay_attempts: int = MAX_REPLAY_ATTEMPTS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            queue: Pending operation queue
            cache: Catalog cache refreshed after a successful drain
            remote: Backend client
            monitor: Connectivity monitor
            tables: Backend collection names
            sync_interval: Seconds between background passes
            reconnect_delay: Seconds between reconnect and drain
            max_replay_attempts: Attempts before a permanently rejected write is parked
            clock: Time source (injectable for tests)
        """
        self.queue = queue
        self.cache = cache
        self.remote = remote
        self.monitor = monitor
        self.tables = tables or RemoteTables()
        self.sync_interval = sync_interval
        self.reconnect_delay = reconnect_delay
        self.max_replay_attempts = max_replay_attempts
        self._clock = clock

        self._drain_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = SyncState(last_sync_time=self._load_last_sync_time())
        self._callbacks: List[Callable[[SyncState], None]] = []

        self._sync_thread: Optional[threading.Thread] = None
        self._stop_sync = threading.Event()
        self._reconnect_timer: Optional[threading.Timer] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

        self._handlers: Dict[OperationKind, Callable[..., None]] = {
            OperationKind.CREATE_ENTRY_BATCH: self._replay_entry_batch,
            OperationKind.RECORD_PULP_COUNT: self._replay_record,
            OperationKind.RECORD_PRODUCE_RECEIPT: self._replay_record,
            OperationKind.RECORD_BEVERAGE_COUNT: self._replay_record,
        }
        self._record_tables: Dict[OperationKind, str] = {
            OperationKind.RECORD_PULP_COUNT: self.tables.pulp_counts,
            OperationKind.RECORD_PRODUCE_RECEIPT: self.tables.produce_receipts,
            OperationKind.RECORD_BEVERAGE_COUNT: self.tables.beverage_counts,
        }

    @property
    def state(self) -> SyncState:
        """Snapshot of the current sync state."""
        with self._state_lock:
            state = replace(self._state)
        state.pending_count = self.queue.count()
        state.failed_count = self.queue.failed_count()
        return state

    @property
    def is_syncing(self) -> bool:
        """Check if a drain is in progress."""
        return self._state.is_syncing

    @property
    def last_sync_time(self) -> Optional[datetime]:
        return self._state.last_sync_time

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Listen for reconnects and start the background loop."""
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_connection_change)

        if self._sync_thread is not None and self._sync_thread.is_alive():
            return

        self._stop_sync.clear()
        self._sync_thread = threading.Thread(
            target=self._sync_loop,
            daemon=True,
            name="SyncEngine"
        )
        self._sync_thread.start()
        logger.info("Sync engine started")

    def stop(self) -> None:
        """Stop the background loop and any scheduled reconnect drain."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_reconnect_timer()
        self._stop_sync.set()
        if self._sync_thread:
            self._sync_thread.join(timeout=10)
            self._sync_thread = None
        logger.info("Sync engine stopped")

    def _sync_loop(self) -> None:
        """Background sync loop."""
        while not self._stop_sync.is_set():
            # Wait for interval or stop signal
            if self._stop_sync.wait(timeout=self.sync_interval):
                break

            if not self.monitor.is_online:
                continue

            try:
                self.run_periodic_pass()
            except Exception as e:
                logger.error(f"Sync error: {e}", exc_info=True)

    def run_periodic_pass(self) -> None:
        """Drain if work is pending, then refresh the catalog if stale."""
        result = None
        if self.queue.count() > 0:
            result = self.sync_now()
        if (result is None or result.replayed == 0) and self.cache.is_stale():
            self.cache.refresh()

    # =========================================================================
    # RECONNECT TRIGGER
    # =========================================================================

    def _on_connection_change(self, state: ConnectionState) -> None:
        """Handle connection status changes."""
        if state.status == ConnectionStatus.ONLINE:
            logger.info(f"Connection restored, syncing in {self.reconnect_delay:.1f}s")
            self._cancel_reconnect_timer()
            timer = threading.Timer(self.reconnect_delay, self._on_reconnect)
            timer.daemon = True
            self._reconnect_timer = timer
            timer.start()
        else:
            self._cancel_reconnect_timer()

    def _cancel_reconnect_timer(self) -> None:
        timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is not None:
            timer.cancel()

    def _on_reconnect(self) -> None:
        """Drain after reconnecting; refresh the catalog if the drain replayed nothing."""
        try:
            result = self.sync_now()
            if result.replayed == 0 and self.cache.is_stale():
                self.cache.refresh()
        except Exception as e:
            logger.error(f"Reconnect sync failed: {e}", exc_info=True)

    def trigger_sync(self) -> None:
        """Start a drain on a background thread."""
        threading.Thread(target=self.sync_now, daemon=True, name="SyncTrigger").start()

    # =========================================================================
    # DRAIN
    # =========================================================================

    def sync_now(self) -> SyncResult:
        """
        Drain the queue in FIFO order, stopping at the first failure.

        Returns:
            SyncResult; ``skipped`` is set when offline or a drain is already running
        """
        if not self.monitor.is_online:
            logger.debug("Cannot sync: offline")
            return SyncResult(skipped=True, reason="offline", remaining=self.queue.count())

        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Sync already in progress, trigger ignored")
            return SyncResult(skipped=True, reason="in-progress")

        try:
            with self._state_lock:
                self._state.is_syncing = True
                self._state.last_attempt = self._clock()
            self._notify_callbacks()

            try:
                result = self._drain()
            finally:
                with self._state_lock:
                    self._state.is_syncing = False

            if result.replayed > 0:
                result.refreshed = self.cache.refresh()
                self._mark_synced()

            logger.info(
                f"Sync complete: {result.replayed} replayed, {result.remaining} remaining"
                + (f", stopped on {result.failed_operation_id}" if result.failed_operation_id else "")
            )
            return result
        finally:
            self._drain_lock.release()
            self._notify_callbacks()

    def _drain(self) -> SyncResult:
        """
        Replay until the queue is empty or a replay fails.

        The queue is re-read after each pass so writes submitted while the
        drain was running go out in the same drain.
        """
        result = SyncResult()

        with LogContext(logger, "Draining pending queue"):
            try:
                for op_id in self.queue.quarantine_unknown():
                    result.parked.append(op_id)
                operations = self.queue.list()
                while operations and self._replay_pass(operations, result):
                    operations = self.queue.list()
            except LocalStorageError as e:
                logger.error(f"Local storage failed while reading the queue: {e.message}")
                result.error = e.message

        try:
            result.remaining = self.queue.count()
        except LocalStorageError as e:
            logger.error(f"Could not count pending operations: {e.message}")
            result.error = result.error or e.message

        with self._state_lock:
            self._state.total_synced += result.replayed
            self._state.last_error = result.error
        return result

    def _replay_pass(self, operations: List[PendingOperation], result: SyncResult) -> bool:
        """Replay operations in order. Returns False at the first failure."""
        logger.info(f"Syncing {len(operations)} pending operations")
        for op in operations:
            try:
                self._replay(op)
                self.queue.dequeue(op.id)
            except RemoteStoreError as e:
                self._handle_failure(op, e, result)
                return False
            except LocalStorageError as e:
                # The remote write may have landed; keep the op and stop
                logger.error(f"Local storage failed while replaying {op.id}: {e.message}")
                result.failed_operation_id = op.id
                result.error = e.message
                return False

            result.replayed += 1
            logger.debug(f"Replayed {op.kind.value} operation {op.id}")
        return True

    def _handle_failure(self, op: PendingOperation, error: RemoteStoreError, result: SyncResult) -> None:
        attempts = self.queue.record_failure(op.id, error.message)
        result.failed_operation_id = op.id
        result.error = error.message

        if error.permanent and attempts >= self.max_replay_attempts:
            self.queue.park(op.id, error.message)
            result.parked.append(op.id)
            logger.error(
                f"Operation {op.id} rejected {attempts} times, moved to failed list: {error.message}"
            )
        else:
            logger.warning(
                f"Replay of {op.kind.value} operation {op.id} failed "
                f"(attempt {attempts}): {error.message}"
            )

    def _replay(self, op: PendingOperation) -> None:
        self._dispatch(
            op.kind,
            op.payload,
            checkpoint=lambda payload: self.queue.update_payload(op.id, payload),
        )

    def _dispatch(
        self,
        kind: OperationKind,
        payload: Payload,
        checkpoint: Callable[[Payload], None],
    ) -> None:
        """Send one operation to the backend using the handler for its kind."""
        self._handlers[kind](kind, payload, checkpoint)

    def _replay_entry_batch(
        self,
        kind: OperationKind,
        payload: EntryBatchPayload,
        checkpoint: Callable[[Payload], None],
    ) -> None:
        """Insert the entry header (once), then its items linked by the header id."""
        entry_id = payload.remote_entry_id
        if entry_id is None:
            rows = self.remote.insert(self.tables.entry_batches, payload.entry)
            if not rows or rows[0].get("id") is None:
                raise RemoteStoreError(
                    "Entry header insert returned no id",
                    table=self.tables.entry_batches,
                    operation="insert",
                )
            entry_id = rows[0]["id"]
            checkpoint(replace(payload, remote_entry_id=entry_id))

        items = [{**item, "lancamento_id": entry_id} for item in payload.items]
        self.remote.insert(self.tables.entry_items, items)

    def _replay_record(
        self,
        kind: OperationKind,
        payload: RecordInsertPayload,
        checkpoint: Callable[[Payload], None],
    ) -> None:
        self.remote.insert(self._record_tables[kind], payload.record)

    # =========================================================================
    # SUBMIT
    # =========================================================================

    def submit(self, kind: Union[OperationKind, str], payload: Payload) -> SubmitResult:
        """
        Write now when online, otherwise queue for later.

        When earlier writes are still queued the new one is queued behind
        them so the backend sees operations in creation order.

        Args:
            kind: Operation kind
            payload: Payload matching the kind

        Returns:
            SubmitResult (synced, queued or failed)
        """
        kind = parse_kind(kind)
        validate_payload(kind, payload)
        payload = normalize_payload(kind, payload)

        has_backlog = self.queue.count() > 0
        if self.monitor.is_online and not has_backlog:
            latest = {"payload": payload}

            def remember(updated: Payload) -> None:
                latest["payload"] = updated

            try:
                self._dispatch(kind, payload, checkpoint=remember)
                with self._state_lock:
                    self._state.total_synced += 1
                self._notify_callbacks()
                logger.info(f"{kind.value} written directly")
                return SubmitResult(SubmitOutcome.SYNCED)
            except RemoteStoreError as e:
                logger.warning(f"Direct write of {kind.value} failed, queueing: {e.message}")
                payload = latest["payload"]

        try:
            op_id = self.queue.enqueue(kind, payload)
        except LocalStorageError as e:
            logger.error(f"Could not queue {kind.value}: {e.message}")
            return SubmitResult(SubmitOutcome.FAILED, error=e.message)

        self._notify_callbacks()
        if has_backlog and self.monitor.is_online:
            self.trigger_sync()
        return SubmitResult(SubmitOutcome.QUEUED, operation_id=op_id)

    # =========================================================================
    # MANUAL CONTROLS
    # =========================================================================

    def force_sync(self) -> SyncResult:
        """Drain, then refresh the catalog (the manual sync button)."""
        result = self.sync_now()
        if not result.skipped and not result.refreshed:
            result.refreshed = self.cache.refresh()
        return result

    def retry_failed(self, op_id: str) -> bool:
        """Return a parked operation to the queue."""
        moved = self.queue.retry_failed(op_id)
        if moved:
            self._notify_callbacks()
        return moved

    def discard_failed(self, op_id: str) -> bool:
        """Delete a parked operation."""
        removed = self.queue.discard(op_id)
        if removed:
            self._notify_callbacks()
        return removed

    # =========================================================================
    # LAST SYNC TIME
    # =========================================================================

    def _load_last_sync_time(self) -> Optional[datetime]:
        value = self.queue.database.get_setting(LAST_SYNC_KEY)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None

    def _mark_synced(self) -> None:
        now = self._clock()
        with self._state_lock:
            self._state.last_sync_time = now
        try:
            self.queue.database.set_setting(LAST_SYNC_KEY, now.isoformat())
        except LocalStorageError as e:
            logger.warning(f"Could not persist last sync time: {e.message}")

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks."""
        if not self._callbacks:
            return
        state = self.state
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        state = self.state
        return {
            "is_syncing": state.is_syncing,
            "last_sync": state.last_sync_time.isoformat() if state.last_sync_time else None,
            "last_attempt": state.last_attempt.isoformat() if state.last_attempt else None,
            "pending_count": state.pending_count,
            "failed_count": state.failed_count,
            "total_synced": state.total_synced,
            "last_error": state.last_error,
        }
