# =============================================================================
# costa_core/offline/__init__.py
# Offline-First Architecture for the Costa back-office
# =============================================================================
"""
Offline-First Architecture Module

Store operators keep scanning and registering losses and stock counts when
the connection drops. Reads come from a local catalog mirror; writes are
queued and replayed in order once the backend is reachable again.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                    OFFLINE-FIRST ARCHITECTURE                    │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 OfflineDataService                        │  │
│   │         (Single API - pages use this only)                │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                 │                  │              │
│              ▼                 ▼                  ▼              │
│   ┌──────────────────┐ ┌──────────────┐ ┌──────────────────┐    │
│   │  ConnectionMgr   │ │ CatalogCache │ │   PendingQueue   │    │
│   │  (Online/Offline)│ │ (read-only)  │ │   (FIFO writes)  │    │
│   └──────────────────┘ └──────────────┘ └──────────────────┘    │
│              │  reconnect      ▲ refresh          │ drain        │
│              ▼                 │                  ▼              │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                      SyncEngine                           │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                                    │              │
│              ▼                                    ▼              │
│        ┌──────────┐                         ┌──────────┐        │
│        │ Supabase │                         │  SQLite  │        │
│        │ (Cloud)  │                         │ (Local)  │        │
│        └──────────┘                         └──────────┘        │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from costa_core.offline import build_offline_service

service = build_offline_service(settings)
service.start()

item = service.lookup_barcode("7894900011")        # works offline
service.submit_entry_batch(batch)                  # queued when offline
print(service.status().pending_count)
"""

from costa_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from costa_core.offline.local_database import LocalDatabase

from costa_core.offline.catalog_cache import (
    CatalogCache,
    CatalogItem,
    normalize_barcode,
)

from costa_core.offline.pending_queue import (
    EntryBatchPayload,
    OperationKind,
    OperationStatus,
    PendingOperation,
    PendingQueue,
    RecordInsertPayload,
)

from costa_core.offline.sync_engine import (
    SubmitOutcome,
    SubmitResult,
    SyncEngine,
    SyncResult,
    SyncState,
)

from costa_core.offline.offline_service import (
    OfflineDataService,
    OfflineStatus,
    build_offline_service,
)

__all__ = [
    # Connection Management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Local Database
    "LocalDatabase",
    # Catalog Cache
    "CatalogCache",
    "CatalogItem",
    "normalize_barcode",
    # Pending Queue
    "EntryBatchPayload",
    "OperationKind",
    "OperationStatus",
    "PendingOperation",
    "PendingQueue",
    "RecordInsertPayload",
    # Sync Engine
    "SubmitOutcome",
    "SubmitResult",
    "SyncEngine",
    "SyncResult",
    "SyncState",
    # Offline Service (Main API)
    "OfflineDataService",
    "OfflineStatus",
    "build_offline_service",
]
