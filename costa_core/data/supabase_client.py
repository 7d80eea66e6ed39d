# =============================================================================
# costa_core/data/supabase_client.py
# Supabase Client for the Costa back-office
# Row operations and edge-function calls behind one small interface
# =============================================================================

from __future__ import annotations
import json
from typing import Optional, Dict, Any, List, Sequence, Union
import logging

from costa_core.config import Settings
from costa_core.errors import RemoteStoreError

logger = logging.getLogger(__name__)

# Postgres SQLSTATE classes meaning "the data itself was rejected":
# 22 data exception, 23 integrity constraint violation, 42 syntax/undefined column
PERMANENT_SQLSTATE_CLASSES = ("22", "23", "42")
# PostgREST request (1xx) and schema (2xx) errors
PERMANENT_POSTGREST_PREFIXES = ("PGRST1", "PGRST2")
# HTTP statuses that may succeed on a later attempt
RETRYABLE_HTTP_STATUSES = {401, 403, 408, 425, 429}


def create_supabase_client(settings: Settings):
    """
    Create a Supabase client from settings.

    Returns:
        Supabase client instance, or None when credentials are missing
    """
    if not settings.has_remote:
        logger.info("Supabase not configured - remote calls will be queued")
        return None

    from supabase import create_client

    return create_client(settings.supabase_url, settings.supabase_key)


def is_permanent_failure(error: Exception) -> bool:
    """
    Decide whether a backend exception means the payload itself is bad.

    Network errors, timeouts, 5xx and auth hiccups are transient.
    """
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        if code.startswith(PERMANENT_POSTGREST_PREFIXES):
            return True
        if len(code) == 5 and code[:2] in PERMANENT_SQLSTATE_CLASSES:
            return True

    status = getattr(error, "status", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    if isinstance(status, int) and 400 <= status < 500:
        return status not in RETRYABLE_HTTP_STATUSES

    return False


class RemoteClient:
    """
    Generic remote data client over the Supabase SDK.

    Usage:
        remote = RemoteClient(create_supabase_client(settings))
        rows = remote.select("itens_perdas_geral", filters={"ativo": True}, order_by="nome_item")
        remote.insert("perdas_geral", [{"item_id": "...", "quantidade_perdida": 2}])
    """

    DEFAULT_PAGE_SIZE = 1000

    def __init__(self, client=None, page_size: int = DEFAULT_PAGE_SIZE):
        """
        Args:
            client: Supabase client (None means not configured)
            page_size: Rows per page for select pagination
        """
        self.client = client
        self.page_size = page_size

    @classmethod
    def from_settings(cls, settings: Settings) -> RemoteClient:
        """Build a client from settings."""
        return cls(create_supabase_client(settings), page_size=settings.offline.page_size)

    @property
    def is_configured(self) -> bool:
        """Check if a Supabase client is available."""
        return self.client is not None

    def _require_client(self, table: str, operation: str):
        if self.client is None:
            raise RemoteStoreError(
                "Supabase client not configured",
                table=table,
                operation=operation,
            )
        return self.client

    def _wrap(self, error: Exception, table: str, operation: str) -> RemoteStoreError:
        """Convert an SDK/network exception into RemoteStoreError."""
        message = getattr(error, "message", None) or str(error) or error.__class__.__name__
        return RemoteStoreError(
            f"{operation} on {table} failed: {message}",
            table=table,
            operation=operation,
            permanent=is_permanent_failure(error),
        )

    # =========================================================================
    # ROW OPERATIONS
    # =========================================================================

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
    ) -> List[Dict[str, Any]]:
        """
        Fetch ALL matching rows (handles the 1000 row response limit).

        Args:
            table: Collection name
            columns: Column list for the select
            filters: Equality filters column -> value
            order_by: Column to order by (optional)
            ascending: Sort order

        Returns:
            List of row dicts
        """
        client = self._require_client(table, "select")

        try:
            all_rows: List[Dict[str, Any]] = []
            offset = 0

            while True:
                query = client.table(table).select(columns)
                for column, value in (filters or {}).items():
                    query = query.eq(column, value)
                if order_by:
                    query = query.order(order_by, desc=not ascending)

                response = query.range(offset, offset + self.page_size - 1).execute()

                if not response.data:
                    break
                all_rows.extend(response.data)
                # Fewer rows than a full page means we've reached the end
                if len(response.data) < self.page_size:
                    break
                offset += self.page_size

            return all_rows

        except RemoteStoreError:
            raise
        except Exception as e:
            raise self._wrap(e, table, "select") from e

    def insert(
        self,
        table: str,
        rows: Union[Dict[str, Any], Sequence[Dict[str, Any]]],
    ) -> List[Dict[str, Any]]:
        """
        Insert one or many rows.

        Returns:
            Inserted rows as returned by the backend
        """
        client = self._require_client(table, "insert")
        payload = dict(rows) if isinstance(rows, dict) else [dict(r) for r in rows]

        try:
            response = client.table(table).insert(payload).execute()
            return list(response.data or [])
        except Exception as e:
            raise self._wrap(e, table, "insert") from e

    def update(
        self,
        table: str,
        values: Dict[str, Any],
        match: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        """Update rows matching all equality conditions."""
        client = self._require_client(table, "update")
        if not match:
            raise RemoteStoreError("Refusing update without match conditions",
                                   table=table, operation="update", permanent=True)

        try:
            query = client.table(table).update(values)
            for column, value in match.items():
                query = query.eq(column, value)
            return list(query.execute().data or [])
        except Exception as e:
            raise self._wrap(e, table, "update") from e

    def delete(self, table: str, match: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Delete rows matching all equality conditions."""
        client = self._require_client(table, "delete")
        if not match:
            raise RemoteStoreError("Refusing delete without match conditions",
                                   table=table, operation="delete", permanent=True)

        try:
            query = client.table(table).delete()
            for column, value in match.items():
                query = query.eq(column, value)
            return list(query.execute().data or [])
        except Exception as e:
            raise self._wrap(e, table, "delete") from e

    # =========================================================================
    # EDGE FUNCTIONS
    # =========================================================================

    def invoke(self, function_name: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Invoke a server-side function and decode its JSON answer.

        Args:
            function_name: Edge function name (e.g. "barcode-lookup")
            body: JSON body

        Returns:
            Decoded response dict
        """
        client = self._require_client(function_name, "invoke")

        try:
            result = client.functions.invoke(
                function_name,
                invoke_options={"body": body or {}, "responseType": "json"},
            )
        except Exception as e:
            raise self._wrap(e, function_name, "invoke") from e

        if isinstance(result, (bytes, bytearray, str)):
            try:
                if isinstance(result, (bytes, bytearray)):
                    result = result.decode("utf-8")
                result = json.loads(result) if result else {}
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise RemoteStoreError(
                    f"invoke on {function_name} returned invalid JSON",
                    table=function_name,
                    operation="invoke",
                ) from e

        if result is None:
            return {}
        if not isinstance(result, dict):
            raise RemoteStoreError(
                f"invoke on {function_name} returned {type(result).__name__}, expected an object",
                table=function_name,
                operation="invoke",
            )
        return dict(result)
