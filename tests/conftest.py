# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import threading
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from costa_core.config import RemoteTables
from costa_core.data.supabase_client import RemoteClient
from costa_core.errors import RemoteStoreError
from costa_core.offline.catalog_cache import CatalogCache
from costa_core.offline.connection_manager import ConnectionManager
from costa_core.offline.local_database import LocalDatabase
from costa_core.offline.pending_queue import PendingQueue
from costa_core.offline.sync_engine import SyncEngine


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FakeClock:
    """Controllable time source."""

    def __init__(self, start: datetime = datetime(2026, 10, 19, 10, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeRemoteClient(RemoteClient):
    """
    In-memory stand-in for the Supabase client.

    Failures are injected per (operation, table) and consumed in order.
    """

    def __init__(self, rows: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        super().__init__(client=None)
        self.rows = {table: [dict(r) for r in table_rows] for table, table_rows in (rows or {}).items()}
        self.inserted: List[tuple] = []
        self.select_calls: List[str] = []
        self.invoke_calls: List[tuple] = []
        self.function_responses: Dict[str, Dict[str, Any]] = {}
        self._failures: Dict[tuple, List[Exception]] = {}
        self._next_id = 0
        self._lock = threading.Lock()

    @property
    def is_configured(self) -> bool:
        return True

    def fail(self, operation: str, table: str, error: Optional[Exception] = None, times: int = 1) -> None:
        """Make the next `times` calls of operation on table raise."""
        error = error or RemoteStoreError("Backend unavailable", table=table, operation=operation)
        self._failures.setdefault((operation, table), []).extend([error] * times)

    def _maybe_fail(self, operation: str, table: str) -> None:
        pending = self._failures.get((operation, table))
        if pending:
            raise pending.pop(0)

    def select(self, table, columns="*", filters=None, order_by=None, ascending=True):
        self.select_calls.append(table)
        self._maybe_fail("select", table)
        result = [dict(r) for r in self.rows.get(table, [])]
        for column, value in (filters or {}).items():
            result = [r for r in result if r.get(column) == value]
        if order_by:
            result.sort(key=lambda r: str(r.get(order_by) or ""), reverse=not ascending)
        return result

    def insert(self, table, rows):
        self._maybe_fail("insert", table)
        batch = [dict(rows)] if isinstance(rows, dict) else [dict(r) for r in rows]
        with self._lock:
            for row in batch:
                self._next_id += 1
                row.setdefault("id", f"{table}-{self._next_id}")
            self.inserted.append((table, batch))
            self.rows.setdefault(table, []).extend(batch)
        return [dict(r) for r in batch]

    def invoke(self, function_name, body=None):
        self.invoke_calls.append((function_name, body))
        self._maybe_fail("invoke", function_name)
        return dict(self.function_responses.get(function_name, {"found": False}))

    def inserted_into(self, table: str) -> List[Dict[str, Any]]:
        """All rows inserted into a table, in call order."""
        return [row for name, batch in self.inserted if name == table for row in batch]


class FakeMonitor(ConnectionManager):
    """Connection manager that never touches the network."""

    def check_connection(self):
        return self.state


def wait_for(condition, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll until condition() is truthy or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return bool(condition())


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def tables():
    """Default backend collection names"""
    return RemoteTables()


@pytest.fixture
def catalog_rows():
    """Active and inactive catalog rows as the backend returns them"""
    return [
        {"id": "i1", "codigo_barras": "7894900011517", "nome_item": "Refrigerante Cola 2L",
         "marca": "Cola", "categoria": "Bebidas", "preco_custo": 6.5, "preco_venda": 9.99, "ativo": True},
        {"id": "i2", "codigo_barras": "007894900011", "nome_item": "Agua Mineral 500ml",
         "marca": "Fonte", "categoria": "Bebidas", "preco_custo": 1.2, "preco_venda": 2.49, "ativo": True},
        {"id": "i3", "codigo_barras": "123", "nome_item": "Banana Prata kg",
         "marca": None, "categoria": "Hortifruti", "preco_custo": 3.0, "preco_venda": 5.99, "ativo": True},
        {"id": "i4", "codigo_barras": None, "nome_item": "Sacola Plastica",
         "marca": None, "categoria": "Embalagens", "preco_custo": 0.05, "preco_venda": None, "ativo": True},
        {"id": "i5", "codigo_barras": "555", "nome_item": "Item Desativado",
         "marca": None, "categoria": None, "preco_custo": 1.0, "preco_venda": 2.0, "ativo": False},
    ]


@pytest.fixture
def reference_rows():
    """Secondary collections mirrored for offline use"""
    return {
        "polpas": [{"id": "p1", "nome_polpa": "Acerola"}, {"id": "p2", "nome_polpa": "Maracuja"}],
        "legumes": [{"id": "l1", "nome_legume": "Cenoura"}],
        "produtos_coca": [{"id": "c1", "nome_produto": "Coca-Cola 350ml"}],
    }


# =============================================================================
# OFFLINE STACK FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Fixed clock at 2026-10-19 10:00"""
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "local_data" / "costa_offline.db"


@pytest.fixture
def database(db_path):
    """Initialized SQLite database in a temp directory"""
    db = LocalDatabase(db_path)
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def remote(tables, catalog_rows, reference_rows):
    """Fake backend seeded with catalog and reference rows"""
    rows = {tables.catalog: catalog_rows}
    rows.update(reference_rows)
    return FakeRemoteClient(rows)


@pytest.fixture
def monitor():
    """Monitor reporting online"""
    manager = FakeMonitor()
    manager.set_online(True)
    return manager


@pytest.fixture
def cache(database, remote, tables, monitor, clock):
    return CatalogCache(database, remote, tables, is_online=lambda: monitor.is_online, clock=clock)


@pytest.fixture
def queue(database, clock):
    return PendingQueue(database, clock=clock)


@pytest.fixture
def engine(queue, cache, remote, monitor, tables, clock):
    """Sync engine with no background threads started"""
    sync_engine = SyncEngine(
        queue, cache, remote, monitor,
        tables=tables,
        reconnect_delay=0.0,
        max_replay_attempts=3,
        clock=clock,
    )
    yield sync_engine
    sync_engine.stop()


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Mock Streamlit for testing (patched where our modules hold it)"""
    import costa_core.errors.handlers as handlers
    import costa_core.ui.offline_indicator as indicator

    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.cache_data = lambda f: f
    mock_st.cache_resource = lambda f: f

    monkeypatch.setattr(handlers, "st", mock_st)
    monkeypatch.setattr(indicator, "st", mock_st)
    yield mock_st


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client
