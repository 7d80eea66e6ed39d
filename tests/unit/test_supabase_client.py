# =============================================================================
# tests/unit/test_supabase_client.py
# Unit Tests for RemoteClient and failure classification
# =============================================================================

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from costa_core.config import Settings
from costa_core.data.supabase_client import (
    RemoteClient,
    create_supabase_client,
    is_permanent_failure,
)
from costa_core.errors import RemoteStoreError


class ApiError(Exception):
    """Shaped like the PostgREST client error"""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code


def chain(pages):
    """Query builder mock whose execute() returns the given pages in order."""
    query = MagicMock()
    for method in ("select", "eq", "order", "range", "insert", "update", "delete", "limit"):
        getattr(query, method).return_value = query
    query.execute.side_effect = [SimpleNamespace(data=page) for page in pages]
    client = MagicMock()
    client.table.return_value = query
    return client, query


class TestFailureClassification:
    """Permanent vs transient backend failures"""

    @pytest.mark.parametrize("code", ["23505", "23514", "22P02", "42703", "PGRST102", "PGRST204"])
    def test_data_errors_are_permanent(self, code):
        assert is_permanent_failure(ApiError("rejected", code=code))

    @pytest.mark.parametrize("code", ["08006", "57014", "PGRST301", "53300"])
    def test_other_codes_are_transient(self, code):
        assert not is_permanent_failure(ApiError("try later", code=code))

    def test_network_errors_are_transient(self):
        assert not is_permanent_failure(requests.ConnectionError("unreachable"))
        assert not is_permanent_failure(TimeoutError())

    @pytest.mark.parametrize("status,expected", [
        (400, True), (404, True), (409, True), (422, True),
        (401, False), (403, False), (408, False), (429, False),
        (500, False), (503, False),
    ])
    def test_http_status(self, status, expected):
        error = Exception("http")
        error.response = SimpleNamespace(status_code=status)

        assert is_permanent_failure(error) is expected


class TestClientFactory:
    """create_supabase_client"""

    def test_no_credentials_returns_none(self):
        assert create_supabase_client(Settings()) is None

    def test_unconfigured_client_raises_transient(self):
        remote = RemoteClient(client=None)

        assert not remote.is_configured
        with pytest.raises(RemoteStoreError) as exc:
            remote.select("itens_perdas_geral")
        assert not exc.value.permanent


class TestSelect:
    """Paginated reads"""

    def test_single_page_with_filters(self):
        client, query = chain([[{"id": "a"}, {"id": "b"}]])
        remote = RemoteClient(client, page_size=10)

        rows = remote.select("itens_perdas_geral", filters={"ativo": True}, order_by="nome_item")

        assert rows == [{"id": "a"}, {"id": "b"}]
        client.table.assert_called_with("itens_perdas_geral")
        query.eq.assert_called_with("ativo", True)
        query.order.assert_called_with("nome_item", desc=False)
        query.range.assert_called_once_with(0, 9)

    def test_follows_pages_until_short_page(self):
        client, query = chain([[{"id": 1}, {"id": 2}], [{"id": 3}, {"id": 4}], [{"id": 5}]])
        remote = RemoteClient(client, page_size=2)

        rows = remote.select("polpas")

        assert [row["id"] for row in rows] == [1, 2, 3, 4, 5]
        assert [call.args for call in query.range.call_args_list] == [(0, 1), (2, 3), (4, 5)]

    def test_stops_on_empty_page(self):
        client, query = chain([[{"id": 1}, {"id": 2}], []])
        remote = RemoteClient(client, page_size=2)

        assert len(remote.select("polpas")) == 2

    def test_sdk_error_is_wrapped(self):
        client, query = chain([])
        query.execute.side_effect = ApiError("column does not exist", code="42703")
        remote = RemoteClient(client)

        with pytest.raises(RemoteStoreError) as exc:
            remote.select("polpas")

        assert exc.value.permanent
        assert exc.value.table == "polpas"
        assert "column does not exist" in exc.value.message


class TestWrites:
    """Insert, update and delete"""

    def test_insert_returns_rows(self):
        client, query = chain([[{"id": "new-1", "observacao": None}]])
        remote = RemoteClient(client)

        rows = remote.insert("lancamentos_perdas_geral", {"observacao": None})

        assert rows[0]["id"] == "new-1"
        query.insert.assert_called_once_with({"observacao": None})

    def test_insert_many(self):
        client, query = chain([[{"id": 1}, {"id": 2}]])
        remote = RemoteClient(client)

        remote.insert("perdas_geral", [{"item_id": "a"}, {"item_id": "b"}])

        query.insert.assert_called_once_with([{"item_id": "a"}, {"item_id": "b"}])

    def test_insert_timeout_is_transient(self):
        client, query = chain([])
        query.execute.side_effect = requests.Timeout("read timed out")
        remote = RemoteClient(client)

        with pytest.raises(RemoteStoreError) as exc:
            remote.insert("perdas_geral", [{"item_id": "a"}])

        assert not exc.value.permanent

    def test_update_and_delete_need_match(self):
        client, _ = chain([])
        remote = RemoteClient(client)

        with pytest.raises(RemoteStoreError):
            remote.update("polpas", {"ativo": False}, {})
        with pytest.raises(RemoteStoreError):
            remote.delete("polpas", {})
        client.table.assert_not_called()

    def test_update_filters_by_match(self):
        client, query = chain([[{"id": "p1"}]])
        remote = RemoteClient(client)

        assert remote.update("polpas", {"ativo": False}, {"id": "p1"}) == [{"id": "p1"}]
        query.update.assert_called_once_with({"ativo": False})
        query.eq.assert_called_once_with("id", "p1")


class TestInvoke:
    """Edge function calls"""

    def test_decodes_json_bytes(self):
        client = MagicMock()
        client.functions.invoke.return_value = b'{"found": true, "name": "Agua"}'
        remote = RemoteClient(client)

        result = remote.invoke("barcode-lookup", {"barcode": "789"})

        assert result == {"found": True, "name": "Agua"}
        client.functions.invoke.assert_called_once_with(
            "barcode-lookup",
            invoke_options={"body": {"barcode": "789"}, "responseType": "json"},
        )

    def test_accepts_dict(self):
        client = MagicMock()
        client.functions.invoke.return_value = {"found": False}

        assert RemoteClient(client).invoke("barcode-lookup") == {"found": False}

    def test_invalid_json(self):
        client = MagicMock()
        client.functions.invoke.return_value = "<html>"

        with pytest.raises(RemoteStoreError):
            RemoteClient(client).invoke("barcode-lookup")

    def test_undecodable_bytes(self, mock_supabase):
        mock_supabase.functions.invoke.return_value = b"\xff\xfe"

        with pytest.raises(RemoteStoreError) as exc:
            RemoteClient(mock_supabase).invoke("barcode-lookup", {"barcode": "789"})

        assert exc.value.table == "barcode-lookup"
        assert not exc.value.permanent

    @pytest.mark.parametrize("answer", [b'[{"found": true}]', "42", ["found"]])
    def test_non_object_answer(self, mock_supabase, answer):
        mock_supabase.functions.invoke.return_value = answer

        with pytest.raises(RemoteStoreError) as exc:
            RemoteClient(mock_supabase).invoke("barcode-lookup")

        assert "expected an object" in exc.value.message

    def test_empty_answer(self, mock_supabase):
        mock_supabase.functions.invoke.return_value = b""

        assert RemoteClient(mock_supabase).invoke("barcode-lookup") == {}
