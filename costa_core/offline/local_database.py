# =============================================================================
# costa_core/offline/local_database.py
# Local SQLite Database for Offline Operations
# =============================================================================
"""
LocalDatabase - SQLite-based durable storage for the offline layer.

Features:
- Automatic schema creation
- Catalog mirror, secondary collection rows and the pending-write queue
- DataFrame integration (pandas)
- Nested-safe transactions
- One shared connection serialized by a re-entrant lock, so the UI thread,
  the monitor thread and the sync loop all see the same data (including
  the in-memory fallback)
"""

from __future__ import annotations
import sqlite3
import threading
import json
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Union
from contextlib import contextmanager
import logging

import pandas as pd

from costa_core.errors import LocalStorageError

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"


class LocalDatabase:
    """
    Local SQLite database for offline data storage.

    Holds only what the app needs while disconnected: the read-only catalog
    mirror and the queue of writes waiting for the backend.
    """

    SCHEMA = {
        "catalog_items": """
            CREATE TABLE IF NOT EXISTS catalog_items (
                position INTEGER NOT NULL,
                id TEXT PRIMARY KEY,
                barcode TEXT,
                name TEXT NOT NULL,
                unit_cost REAL DEFAULT 0,
                sale_price REAL,
                brand TEXT,
                category TEXT,
                image_url TEXT,
                active INTEGER DEFAULT 1,
                raw_json TEXT
            )
        """,
        "cached_rows": """
            CREATE TABLE IF NOT EXISTS cached_rows (
                collection TEXT NOT NULL,
                position INTEGER NOT NULL,
                row_json TEXT NOT NULL,
                PRIMARY KEY (collection, position)
            )
        """,
        "pending_operations": """
            CREATE TABLE IF NOT EXISTS pending_operations (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                kind TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                attempts INTEGER DEFAULT 0,
                last_attempt TEXT,
                last_error TEXT,
                status TEXT DEFAULT 'pending'
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
    }

    INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_catalog_barcode ON catalog_items (barcode)",
        "CREATE INDEX IF NOT EXISTS idx_pending_status ON pending_operations (status, seq)",
    ]

    def __init__(self, db_path: Union[Path, str, None] = None):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = db_path if db_path is not None else Path("local_data") / "costa_offline.db"
        self._lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._depth = 0
        self._initialized = False

    @classmethod
    def open_with_fallback(cls, db_path: Union[Path, str, None] = None) -> LocalDatabase:
        """
        Open and initialize the database, falling back to memory.

        A non-durable store keeps the app usable online; queued writes are
        lost on restart.
        """
        database = cls(db_path)
        try:
            database.initialize()
            return database
        except LocalStorageError as e:
            logger.error(f"Local storage unavailable, using in-memory database: {e}")
            database.close()

        fallback = cls(IN_MEMORY)
        fallback.initialize()
        return fallback

    @property
    def is_durable(self) -> bool:
        """True when data survives a restart."""
        return str(self.db_path) != IN_MEMORY

    def _get_connection(self) -> sqlite3.Connection:
        """Get the shared database connection, opening it on first use."""
        if self._connection is None:
            try:
                if self.is_durable:
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                self._connection = sqlite3.connect(
                    str(self.db_path),
                    check_same_thread=False,
                )
            except (sqlite3.Error, OSError) as e:
                raise LocalStorageError(
                    f"Cannot open local database: {e}",
                    path=str(self.db_path),
                ) from e
            self._connection.row_factory = sqlite3.Row
        return self._connection

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.

        Nested use joins the outer transaction; only the outermost block
        commits or rolls back.
        """
        with self._lock:
            conn = self._get_connection()
            self._depth += 1
            try:
                yield conn
            except sqlite3.Error as e:
                self._depth -= 1
                if self._depth == 0:
                    conn.rollback()
                raise LocalStorageError(
                    f"Local database error: {e}",
                    path=str(self.db_path),
                ) from e
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    conn.rollback()
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    try:
                        conn.commit()
                    except sqlite3.Error as e:
                        raise LocalStorageError(
                            f"Local database commit failed: {e}",
                            path=str(self.db_path),
                        ) from e

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self.transaction() as conn:
            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
            for statement in self.INDEXES:
                conn.execute(statement)

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")

    # =========================================================================
    # RAW ACCESS
    # =========================================================================

    def query(self, sql: str, params: Optional[List] = None) -> List[sqlite3.Row]:
        """Execute a read query and fetch all rows."""
        with self.transaction() as conn:
            return conn.execute(sql, params or []).fetchall()

    def execute(self, sql: str, params: Optional[List] = None) -> int:
        """Execute a write statement; returns affected row count."""
        with self.transaction() as conn:
            return conn.execute(sql, params or []).rowcount

    def count(self, table: str, where: Optional[str] = None, params: Optional[List] = None) -> int:
        """Count rows in a table."""
        sql = f"SELECT COUNT(*) AS count FROM {table}"
        if where:
            sql += f" WHERE {where}"
        rows = self.query(sql, params)
        return rows[0]["count"] if rows else 0

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(
        self,
        table: str,
        where: Optional[str] = None,
        params: Optional[List] = None,
        order_by: Optional[str] = None,
    ) -> pd.DataFrame:
        """
        Load a table into a pandas DataFrame.

        Args:
            table: Table name
            where: Optional WHERE clause
            params: Parameters for WHERE clause
            order_by: Optional ORDER BY clause

        Returns:
            DataFrame with table data
        """
        query = f"SELECT * FROM {table}"
        if where:
            query += f" WHERE {where}"
        if order_by:
            query += f" ORDER BY {order_by}"

        with self.transaction() as conn:
            try:
                return pd.read_sql_query(query, conn, params=params)
            except (pd.errors.DatabaseError, sqlite3.Error) as e:
                raise LocalStorageError(
                    f"Cannot read {table}: {e}",
                    path=str(self.db_path),
                ) from e

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        result = self.query(
            "SELECT value FROM app_settings WHERE key = ?",
            [key]
        )
        if result:
            try:
                return json.loads(result[0]["value"])
            except json.JSONDecodeError:
                return result[0]["value"]
        return default

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        self.execute(
            """
            INSERT OR REPLACE INTO app_settings (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            [key, json.dumps(value), datetime.now().isoformat()]
        )

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                self._initialized = False
