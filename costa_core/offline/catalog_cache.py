# =============================================================================
# costa_core/offline/catalog_cache.py
# Read-only Catalog Mirror for Offline Barcode Lookup
# =============================================================================
"""
CatalogCache - local copy of the loss-item catalog and reference collections.

Features:
- Atomic refresh (all collections or nothing)
- Barcode lookup tolerant to formatting and leading zeros
- Multi-word search and DataFrame listing
- Staleness tracking (default 4 hours)

A failed refresh never clears what is already cached.
"""

from __future__ import annotations
import json
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
import logging

import pandas as pd

from costa_core.config import RemoteTables
from costa_core.data.supabase_client import RemoteClient
from costa_core.errors import LocalStorageError, RemoteStoreError
from costa_core.logging import LogContext
from costa_core.utils.search import search_across_fields
from .local_database import LocalDatabase

logger = logging.getLogger(__name__)

LAST_REFRESH_KEY = "catalog_last_refreshed"
DEFAULT_MAX_AGE = timedelta(hours=4)

_NON_DIGITS = re.compile(r"\D")


def normalize_barcode(raw: Optional[str]) -> str:
    """Keep only the digits of a scanned or typed code."""
    if not raw:
        return ""
    return _NON_DIGITS.sub("", str(raw))


def strip_leading_zeros(code: str) -> str:
    """Drop leading zeros; an all-zero code is returned unchanged."""
    return code.lstrip("0") or code


def barcode_matches(scanned: str, stored: Optional[str]) -> bool:
    """
    Compare a normalized scanned code with a stored barcode.

    Matches on equal digits, or on equal digits once leading zeros are
    removed from both sides.
    """
    stored_digits = normalize_barcode(stored)
    if not scanned or not stored_digits:
        return False
    if stored_digits == scanned:
        return True
    return strip_leading_zeros(stored_digits) == strip_leading_zeros(scanned)


@dataclass(frozen=True)
class CatalogItem:
    """A product that can be registered as a loss."""
    id: str
    name: str
    barcode: Optional[str] = None
    unit_cost: float = 0.0
    sale_price: Optional[float] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    active: bool = True

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> CatalogItem:
        """Build an item from a backend catalog row."""
        sale_price = row.get("preco_venda")
        return cls(
            id=str(row["id"]),
            name=row.get("nome_item") or "",
            barcode=row.get("codigo_barras") or None,
            unit_cost=float(row.get("preco_custo") or 0),
            sale_price=float(sale_price) if sale_price is not None else None,
            brand=row.get("marca"),
            category=row.get("categoria"),
            image_url=row.get("imagem_url"),
            active=row.get("ativo") is not False,
        )


class CatalogCache:
    """
    Durable, read-only mirror of the catalog.

    Usage:
        cache = CatalogCache(database, remote, tables, is_online=monitor_is_online)
        cache.load()
        if cache.is_stale():
            cache.refresh()
        item = cache.lookup_by_barcode("0 7894900-011")
    """

    def __init__(
        self,
        database: LocalDatabase,
        remote: RemoteClient,
        tables: Optional[RemoteTables] = None,
        is_online: Optional[Callable[[], bool]] = None,
        clock: Callable[[], datetime] = datetime.now,
        max_age: timedelta = DEFAULT_MAX_AGE,
    ):
        """
        Args:
            database: Initialized local database
            remote: Backend client
            tables: Backend collection names
            is_online: Connectivity snapshot; refresh is skipped when it returns False
            clock: Time source (injectable for tests)
            max_age: Age after which the cache counts as stale
        """
        self.database = database
        self.remote = remote
        self.tables = tables or RemoteTables()
        self._is_online = is_online or (lambda: True)
        self._clock = clock
        self.max_age = max_age
        self._items: List[CatalogItem] = []
        self._by_id: Dict[str, CatalogItem] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # LOADING AND REFRESH
    # =========================================================================

    def load(self) -> int:
        """
        Load cached items from local storage into memory.

        Returns:
            Number of catalog items loaded
        """
        rows = self.database.query("SELECT * FROM catalog_items ORDER BY position ASC")
        items = [
            CatalogItem(
                id=row["id"],
                name=row["name"],
                barcode=row["barcode"],
                unit_cost=row["unit_cost"] or 0.0,
                sale_price=row["sale_price"],
                brand=row["brand"],
                category=row["category"],
                image_url=row["image_url"],
                active=bool(row["active"]),
            )
            for row in rows
        ]
        self._replace_memory(items)
        logger.info(f"Catalog cache loaded: {len(items)} items")
        return len(items)

    def refresh(self) -> bool:
        """
        Replace the cache with the backend's current catalog.

        Returns:
            True if the cache was replaced; False if offline or the fetch failed
        """
        if not self._is_online():
            logger.debug("Catalog refresh skipped: offline")
            return False

        try:
            with LogContext(logger, "Refreshing catalog cache"):
                catalog_rows = self.remote.select(
                    self.tables.catalog,
                    filters={"ativo": True},
                    order_by="nome_item",
                )
                collections = {
                    name: self.remote.select(name, order_by=order_column)
                    for name, order_column in self.tables.reference_collections.items()
                }
        except RemoteStoreError as e:
            logger.warning(f"Catalog refresh failed, keeping cached data: {e.message}")
            return False

        try:
            items = [CatalogItem.from_row(row) for row in catalog_rows]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed catalog row, keeping cached data: {e!r}")
            return False

        try:
            self._write(items, catalog_rows, collections)
        except LocalStorageError as e:
            logger.error(f"Could not store refreshed catalog: {e.message}")
            return False

        self._replace_memory(items)
        logger.info(
            f"Catalog cache refreshed: {len(items)} items, "
            f"{sum(len(rows) for rows in collections.values())} reference rows"
        )
        return True

    def _write(
        self,
        items: List[CatalogItem],
        catalog_rows: List[Dict[str, Any]],
        collections: Dict[str, List[Dict[str, Any]]],
    ) -> None:
        """Swap local contents in one transaction."""
        now = self._clock()
        with self.database.transaction() as conn:
            conn.execute("DELETE FROM catalog_items")
            conn.executemany(
                """
                INSERT OR REPLACE INTO catalog_items
                    (position, id, barcode, name, unit_cost, sale_price,
                     brand, category, image_url, active, raw_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (position, item.id, item.barcode, item.name, item.unit_cost,
                     item.sale_price, item.brand, item.category, item.image_url,
                     int(item.active), json.dumps(row, default=str))
                    for position, (item, row) in enumerate(zip(items, catalog_rows))
                ]
            )

            conn.execute("DELETE FROM cached_rows")
            for name, rows in collections.items():
                conn.executemany(
                    "INSERT INTO cached_rows (collection, position, row_json) VALUES (?, ?, ?)",
                    [(name, position, json.dumps(row, default=str))
                     for position, row in enumerate(rows)]
                )

            conn.execute(
                "INSERT OR REPLACE INTO app_settings (key, value, updated_at) VALUES (?, ?, ?)",
                [LAST_REFRESH_KEY, json.dumps(now.isoformat()), now.isoformat()]
            )

    def _replace_memory(self, items: List[CatalogItem]) -> None:
        with self._lock:
            self._items = list(items)
            self._by_id = {item.id: item for item in items}

    # =========================================================================
    # QUERIES
    # =========================================================================

    def lookup_by_barcode(self, raw_code: Optional[str]) -> Optional[CatalogItem]:
        """
        Find an item by scanned or typed barcode.

        Args:
            raw_code: Code as read (spaces, dashes and other non-digits allowed)

        Returns:
            First matching item in cache order, or None
        """
        scanned = normalize_barcode(raw_code)
        if not scanned:
            return None

        with self._lock:
            items = self._items
        for item in items:
            if barcode_matches(scanned, item.barcode):
                return item
        return None

    def all(self) -> List[CatalogItem]:
        """All cached items in name order."""
        with self._lock:
            return list(self._items)

    def get(self, item_id: str) -> Optional[CatalogItem]:
        """Get an item by id."""
        with self._lock:
            return self._by_id.get(str(item_id))

    @property
    def size(self) -> int:
        """Number of cached catalog items."""
        with self._lock:
            return len(self._items)

    def search(self, query: str) -> List[CatalogItem]:
        """Items whose name, brand, category and barcode together contain every query word."""
        return [
            item for item in self.all()
            if search_across_fields([item.name, item.brand, item.category, item.barcode], query)
        ]

    def as_dataframe(self) -> pd.DataFrame:
        """Cached catalog as a DataFrame (without the raw row column)."""
        df = self.database.to_dataframe("catalog_items", order_by="position")
        df = df.drop(columns=["raw_json", "position"], errors="ignore")
        df["active"] = df["active"].astype(bool)
        return df

    def collection(self, name: str) -> List[Dict[str, Any]]:
        """Rows of a cached reference collection, in backend order."""
        rows = self.database.query(
            "SELECT row_json FROM cached_rows WHERE collection = ? ORDER BY position ASC",
            [name]
        )
        return [json.loads(row["row_json"]) for row in rows]

    @property
    def total_cached_items(self) -> int:
        """Catalog items plus reference collection rows."""
        return self.size + self.database.count("cached_rows")

    # =========================================================================
    # FRESHNESS
    # =========================================================================

    @property
    def last_refreshed(self) -> Optional[datetime]:
        """When the cache was last replaced from the backend."""
        value = self.database.get_setting(LAST_REFRESH_KEY)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning(f"Ignoring invalid catalog timestamp: {value!r}")
            return None

    def is_stale(self, max_age: Optional[timedelta] = None) -> bool:
        """True when never refreshed or older than max_age."""
        last = self.last_refreshed
        if last is None:
            return True
        return self._clock() - last > (max_age or self.max_age)
