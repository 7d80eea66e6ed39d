# =============================================================================
# tests/unit/test_cart.py
# Unit Tests for LossCart
# =============================================================================

from datetime import date

import pytest

from costa_core.errors import CartValidationError
from costa_core.losses.cart import LossCart, default_reason, parse_quantity
from costa_core.offline.catalog_cache import CatalogItem
from costa_core.offline.pending_queue import EntryBatchPayload


@pytest.fixture
def cola():
    return CatalogItem(id="i1", name="Refrigerante Cola 2L", barcode="7894900011517",
                       unit_cost=6.5, brand="Cola")


@pytest.fixture
def bag():
    return CatalogItem(id="i4", name="Sacola Plastica", barcode=None, unit_cost=0.05)


class TestParseQuantity:
    """Operator-typed quantities"""

    @pytest.mark.parametrize("raw,expected", [
        ("2", 2.0), ("1,5", 1.5), (" 0.25 ", 0.25), (3, 3.0), ("", 0.0), ("abc", 0.0), (None, 0.0),
    ])
    def test_parse(self, raw, expected):
        assert parse_quantity(raw) == expected

    def test_default_reason(self):
        assert default_reason("perda") == "danificado"
        assert default_reason("consumo") == "limpeza"


class TestAdd:
    """Adding lines"""

    def test_add_uses_catalog_cost(self, cola):
        cart = LossCart()

        line = cart.add(cola, "2", reason="quebrado")

        assert len(cart) == 1
        assert line.unit_price == 6.5
        assert line.total == 13.0
        assert line.reason == "quebrado"

    def test_same_barcode_accumulates(self, cola):
        cart = LossCart()
        cart.add(cola, 1)
        cart.add(cola, "1,5")

        assert len(cart) == 1
        assert cart.items[0].quantity == 2.5

    def test_item_without_barcode_gets_manual_key(self, bag):
        cart = LossCart()

        line = cart.add(bag, 10, entry_type="consumo")

        assert line.barcode == "manual-i4"
        assert line.reason == "limpeza"

    def test_expiry_date_stored_as_iso(self, cola):
        cart = LossCart()

        line = cart.add(cola, 1, reason="vencido", expiry_date=date(2026, 10, 1))

        assert line.expiry_date == "2026-10-01"

    @pytest.mark.parametrize("kwargs", [
        {"entry_type": "roubo"},
        {"unit": "litro"},
        {"reason": "limpeza"},
        {"entry_type": "consumo", "reason": "vencido"},
        {"resolution": "reembolso"},
    ])
    def test_invalid_options_rejected(self, cola, kwargs):
        with pytest.raises(CartValidationError):
            LossCart().add(cola, 1, **kwargs)

    def test_price_override(self, cola):
        line = LossCart().add(cola, 1, unit_price="4.2")

        assert line.unit_price == 4.2


class TestEditing:
    """Changing the cart"""

    def test_remove_and_update(self, cola, bag):
        cart = LossCart()
        cart.add(cola, 1)
        cart.add(bag, 100)

        cart.update_quantity("7894900011517", "3")
        cart.remove("manual-i4")

        assert [line.quantity for line in cart] == [3.0]
        assert cart.total_value() == pytest.approx(19.5)

    def test_update_unknown_barcode(self):
        with pytest.raises(CartValidationError):
            LossCart().update_quantity("000", 1)


class TestBuildBatch:
    """Turning the cart into an entry batch"""

    def test_empty_cart_rejected(self):
        with pytest.raises(CartValidationError):
            LossCart().build_batch("u1")

    def test_expired_without_date_rejected(self, cola):
        cart = LossCart()
        cart.add(cola, 1, reason="vencido")

        with pytest.raises(CartValidationError) as exc:
            cart.build_batch("u1")

        assert exc.value.details["barcodes"] == ["7894900011517"]

    def test_zero_quantity_rejected(self, cola):
        cart = LossCart()
        cart.add(cola, "abc")

        with pytest.raises(CartValidationError):
            cart.build_batch("u1")

    def test_batch_rows(self, cola, bag):
        cart = LossCart()
        cart.add(cola, 2, reason="vencido", expiry_date="2026-10-10", resolution="troca")
        cart.add(bag, 5)

        batch = cart.build_batch("u1", note="")

        assert isinstance(batch, EntryBatchPayload)
        assert batch.entry == {"observacao": None, "usuario_id": "u1"}
        assert batch.remote_entry_id is None
        assert batch.items[0] == {
            "item_id": "i1",
            "usuario_id": "u1",
            "quantidade_perdida": 2.0,
            "preco_unitario": 6.5,
            "motivo_perda": "vencido",
            "tipo_resolucao": "troca",
            "data_vencimento": "2026-10-10",
        }
        assert batch.items[1]["data_vencimento"] is None

    def test_clear(self, cola):
        cart = LossCart()
        cart.add(cola, 1)
        cart.clear()

        assert len(cart) == 0
