# =============================================================================
# costa_core/offline/offline_service.py
# Offline Data Service - Single API for Online/Offline Operations
# =============================================================================
"""
OfflineDataService - the object pages talk to.

It owns the local database, catalog cache, pending queue, connectivity
monitor and sync engine, and exposes:
- Barcode lookup that works offline (cache first, backend second)
- Write submission that queues when the backend is unreachable
- A status snapshot for the offline indicator

Usage:
------
from costa_core.config import load_settings
from costa_core.offline import build_offline_service

service = build_offline_service(load_settings())
service.start()

item = service.lookup_barcode("7894900011517")
result = service.submit_entry_batch(cart.build_batch(user_id))
print(service.status().pending_count)
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from costa_core.config import Settings
from costa_core.data.supabase_client import RemoteClient
from costa_core.errors import RemoteStoreError
from .catalog_cache import CatalogCache, CatalogItem, barcode_matches, normalize_barcode
from .connection_manager import ConnectionManager
from .local_database import LocalDatabase
from .pending_queue import (
    EntryBatchPayload,
    OperationKind,
    PendingOperation,
    PendingQueue,
    RecordInsertPayload,
)
from .sync_engine import SubmitResult, SyncEngine, SyncResult

logger = logging.getLogger(__name__)

# Codes shorter than this are treated as typing noise
MIN_BARCODE_LENGTH = 3


@dataclass
class OfflineStatus:
    """What the offline indicator needs to know."""
    is_online: bool
    pending_count: int
    failed_count: int
    is_syncing: bool
    last_sync_time: Optional[datetime]
    cached_items: int
    durable_storage: bool


class OfflineDataService:
    """
    Facade over the offline components.

    Build it with build_offline_service(); one instance per process.
    """

    def __init__(
        self,
        settings: Settings,
        database: LocalDatabase,
        remote: RemoteClient,
        monitor: ConnectionManager,
        cache: CatalogCache,
        queue: PendingQueue,
        engine: SyncEngine,
    ):
        self.settings = settings
        self.database = database
        self.remote = remote
        self.monitor = monitor
        self.cache = cache
        self.queue = queue
        self.engine = engine
        self._started = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, background: bool = True) -> None:
        """
        Load the cache, probe connectivity and start background work.

        Args:
            background: Whether to start the monitor and sync threads
        """
        if self._started:
            return

        self.cache.load()
        self.monitor.check_connection()

        if self.monitor.is_online:
            if self.cache.size == 0 or self.cache.is_stale():
                self.cache.refresh()
            if self.queue.count() > 0:
                self.engine.trigger_sync()

        if background:
            self.monitor.start_monitoring()
            self.engine.start()

        self._started = True
        logger.info(
            f"OfflineDataService started. Online: {self.is_online}, "
            f"cached items: {self.cache.size}, pending: {self.queue.count()}"
        )

    def stop(self) -> None:
        """Stop background work and close local storage."""
        self.engine.stop()
        self.monitor.stop_monitoring()
        self.database.close()
        self._started = False
        logger.info("OfflineDataService stopped")

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online

    # =========================================================================
    # CATALOG
    # =========================================================================

    def lookup_barcode(self, raw_code: str) -> Optional[CatalogItem]:
        """
        Find a catalog item by barcode.

        Looks in the local cache first; when online and the cache has no
        match, scans the backend catalog with the same matching rules.
        """
        scanned = normalize_barcode(raw_code)
        if len(scanned) < MIN_BARCODE_LENGTH:
            return None

        item = self.cache.lookup_by_barcode(scanned)
        if item is not None or not self.is_online:
            return item

        try:
            rows = self.remote.select(self.settings.tables.catalog, filters={"ativo": True})
        except RemoteStoreError as e:
            logger.warning(f"Remote barcode lookup failed: {e.message}")
            return None

        for row in rows:
            if barcode_matches(scanned, row.get("codigo_barras")):
                logger.info(f"Barcode {scanned} found on backend but not in cache")
                return CatalogItem.from_row(row)
        return None

    def lookup_product_info(self, raw_code: str) -> Optional[Dict[str, Any]]:
        """
        Ask the barcode-lookup function for public product data.

        Returns:
            Product dict (name, brand, image...) or None when unknown or offline
        """
        barcode = normalize_barcode(raw_code)
        if len(barcode) < MIN_BARCODE_LENGTH or not self.is_online:
            return None

        try:
            response = self.remote.invoke(
                self.settings.tables.barcode_lookup_function,
                {"barcode": barcode},
            )
        except RemoteStoreError as e:
            logger.warning(f"Product lookup failed for {barcode}: {e.message}")
            return None

        if not response.get("found"):
            return None
        product = dict(response.get("product") or {})
        product.setdefault("source", response.get("source"))
        return product

    def search_catalog(self, query: str) -> List[CatalogItem]:
        """Multi-word search over cached items."""
        return self.cache.search(query)

    # =========================================================================
    # WRITES
    # =========================================================================

    def submit_entry_batch(self, batch: EntryBatchPayload) -> SubmitResult:
        """Save a loss entry (header + items)."""
        return self.engine.submit(OperationKind.CREATE_ENTRY_BATCH, batch)

    def submit_record(
        self,
        kind: Union[OperationKind, str],
        record: Dict[str, Any],
    ) -> SubmitResult:
        """Save a single count/receipt row."""
        return self.engine.submit(kind, RecordInsertPayload(record=dict(record)))

    def force_sync(self) -> SyncResult:
        """Drain the queue and refresh the catalog now."""
        return self.engine.force_sync()

    def failed_operations(self) -> List[PendingOperation]:
        """Writes parked after repeated backend rejection."""
        return self.queue.failed()

    def retry_failed(self, op_id: str) -> bool:
        return self.engine.retry_failed(op_id)

    def discard_failed(self, op_id: str) -> bool:
        return self.engine.discard_failed(op_id)

    # =========================================================================
    # STATUS
    # =========================================================================

    def status(self) -> OfflineStatus:
        """Snapshot for the offline indicator."""
        sync_state = self.engine.state
        return OfflineStatus(
            is_online=self.is_online,
            pending_count=sync_state.pending_count,
            failed_count=sync_state.failed_count,
            is_syncing=sync_state.is_syncing,
            last_sync_time=sync_state.last_sync_time,
            cached_items=self.cache.total_cached_items,
            durable_storage=self.database.is_durable,
        )

    def get_status(self) -> Dict[str, Any]:
        """
        Get comprehensive status information.

        Returns:
            Dict with status information for diagnostics
        """
        return {
            "connection": self.monitor.get_status_display(),
            "sync": self.engine.get_status_display(),
            "cache": {
                "items": self.cache.size,
                "total_cached": self.cache.total_cached_items,
                "last_refreshed": (self.cache.last_refreshed.isoformat()
                                   if self.cache.last_refreshed else None),
                "stale": self.cache.is_stale(),
            },
            "pending_by_kind": self.queue.count_by_kind(),
            "durable_storage": self.database.is_durable,
        }


def build_offline_service(
    settings: Settings,
    remote: Optional[RemoteClient] = None,
    monitor: Optional[ConnectionManager] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> OfflineDataService:
    """
    Wire the offline components together.

    Args:
        settings: Application settings
        remote: Backend client (default: built from settings)
        monitor: Connectivity monitor (default: probes settings.supabase_url)
        clock: Time source shared by cache, queue and engine

    Returns:
        OfflineDataService, not yet started
    """
    offline = settings.offline
    database = LocalDatabase.open_with_fallback(offline.local_db_path)
    if not database.is_durable:
        logger.warning("Pending writes will not survive a restart")

    remote = remote or RemoteClient.from_settings(settings)
    monitor = monitor or ConnectionManager(
        supabase_url=settings.supabase_url,
        supabase_key=settings.supabase_key,
        check_interval_online=offline.check_interval_online,
        check_interval_offline=offline.check_interval_offline,
        timeout=offline.connection_timeout,
    )
    cache = CatalogCache(
        database,
        remote,
        tables=settings.tables,
        is_online=lambda: monitor.is_online,
        clock=clock,
        max_age=timedelta(hours=offline.cache_max_age_hours),
    )
    queue = PendingQueue(database, clock=clock)
    engine = SyncEngine(
        queue,
        cache,
        remote,
        monitor,
        tables=settings.tables,
        sync_interval=offline.sync_interval_seconds,
        reconnect_delay=offline.reconnect_sync_delay_seconds,
        max_replay_attempts=offline.max_replay_attempts,
        clock=clock,
    )
    return OfflineDataService(settings, database, remote, monitor, cache, queue, engine)
