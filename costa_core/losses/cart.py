# =============================================================================
# costa_core/losses/cart.py
# Loss Entry Cart
# =============================================================================
"""
LossCart - items collected by an operator before saving a loss entry.

Scanning the same barcode twice adds to the existing line. Saving turns
the cart into an EntryBatchPayload (one header, many item rows) that the
offline service writes now or queues.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Union
import logging

from costa_core.errors import CartValidationError
from costa_core.offline.catalog_cache import CatalogItem
from costa_core.offline.pending_queue import EntryBatchPayload

logger = logging.getLogger(__name__)

EXPIRED_REASON = "vencido"

LOSS_REASONS = {
    "vencido": "Expired",
    "danificado": "Damaged",
    "quebrado": "Broken",
    "avaria": "Spoiled",
    "outros": "Other",
}

CONSUMPTION_REASONS = {
    "limpeza": "Cleaning",
    "manutencao": "Maintenance",
    "escritorio": "Office",
    "alimentacao": "Staff meals",
    "outros": "Other",
}

RESOLUTIONS = {
    "sem_resolucao": "No resolution",
    "troca": "Supplier exchange",
    "bonificacao": "Supplier credit",
    "desconto": "Discount",
}

ENTRY_TYPES = ("perda", "consumo")
UNITS = ("unidade", "kg")


def parse_quantity(value: Union[str, int, float, None]) -> float:
    """
    Parse an operator-typed quantity; accepts "1,5" as well as "1.5".

    Returns 0.0 for empty or unreadable input.
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip().replace(",", "."))
    except ValueError:
        return 0.0


def default_reason(entry_type: str) -> str:
    """Reason preselected for a new line."""
    return "limpeza" if entry_type == "consumo" else "danificado"


@dataclass
class CartItem:
    """One line of a loss entry."""
    item_id: str
    barcode: str
    name: str
    quantity: float
    unit_price: float
    reason: str
    resolution: str = "sem_resolucao"
    brand: Optional[str] = None
    image_url: Optional[str] = None
    expiry_date: Optional[str] = None
    unit: str = "unidade"
    entry_type: str = "perda"

    @property
    def total(self) -> float:
        return self.quantity * self.unit_price

    def to_row(self, user_id: str) -> Dict[str, object]:
        """Backend item row (without the header id)."""
        return {
            "item_id": self.item_id,
            "usuario_id": user_id,
            "quantidade_perdida": self.quantity,
            "preco_unitario": self.unit_price,
            "motivo_perda": self.reason,
            "tipo_resolucao": self.resolution,
            "data_vencimento": self.expiry_date or None,
        }


class LossCart:
    """
    In-progress loss entry.

    Usage:
        cart = LossCart()
        cart.add(service.lookup_barcode(code), "2,5", reason="vencido", expiry_date="2026-10-01")
        batch = cart.build_batch(user_id, note="Night shift")
        service.submit_entry_batch(batch)
        cart.clear()
    """

    def __init__(self):
        self._items: List[CartItem] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    def _find(self, barcode: str) -> Optional[CartItem]:
        for line in self._items:
            if line.barcode == barcode:
                return line
        return None

    def add(
        self,
        item: CatalogItem,
        quantity: Union[str, int, float],
        reason: Optional[str] = None,
        resolution: str = "sem_resolucao",
        expiry_date: Union[date, str, None] = None,
        unit: str = "unidade",
        entry_type: str = "perda",
        unit_price: Optional[float] = None,
    ) -> CartItem:
        """
        Add an item, or add to its quantity when the barcode is already in the cart.

        Args:
            item: Catalog item being registered
            quantity: Amount lost (operator text accepted)
            reason: Loss/consumption reason code
            resolution: How the loss is resolved with the supplier
            expiry_date: Required later for expired items
            unit: "unidade" or "kg"
            entry_type: "perda" (loss) or "consumo" (internal use)
            unit_price: Overrides the catalog unit cost

        Returns:
            The cart line
        """
        if entry_type not in ENTRY_TYPES:
            raise CartValidationError(f"Unknown entry type: {entry_type}")
        if unit not in UNITS:
            raise CartValidationError(f"Unknown unit: {unit}")

        reason = reason or default_reason(entry_type)
        allowed = CONSUMPTION_REASONS if entry_type == "consumo" else LOSS_REASONS
        if reason not in allowed:
            raise CartValidationError(f"Reason '{reason}' is not valid for {entry_type}")
        if resolution not in RESOLUTIONS:
            raise CartValidationError(f"Unknown resolution: {resolution}")

        amount = parse_quantity(quantity)
        barcode = item.barcode or f"manual-{item.id}"

        existing = self._find(barcode)
        if existing is not None:
            existing.quantity += amount
            logger.debug(f"Cart: {barcode} quantity now {existing.quantity}")
            return existing

        if isinstance(expiry_date, date):
            expiry_date = expiry_date.isoformat()

        line = CartItem(
            item_id=item.id,
            barcode=barcode,
            name=item.name,
            quantity=amount,
            unit_price=float(unit_price) if unit_price is not None else item.unit_cost,
            reason=reason,
            resolution=resolution,
            brand=item.brand,
            image_url=item.image_url,
            expiry_date=expiry_date or None,
            unit=unit,
            entry_type=entry_type,
        )
        self._items.append(line)
        return line

    def remove(self, barcode: str) -> None:
        """Drop a line; unknown barcodes are ignored."""
        self._items = [line for line in self._items if line.barcode != barcode]

    def update_quantity(self, barcode: str, quantity: Union[str, int, float]) -> None:
        """Replace a line's quantity."""
        line = self._find(barcode)
        if line is None:
            raise CartValidationError(f"Item {barcode} is not in the cart", barcodes=[barcode])
        line.quantity = parse_quantity(quantity)

    def total_value(self) -> float:
        """Sum of quantity x unit price."""
        return sum(line.total for line in self._items)

    def validate(self) -> None:
        """
        Check the cart can be saved.

        Raises:
            CartValidationError: empty cart, expired items without an
                expiry date, or non-positive quantities
        """
        if not self._items:
            raise CartValidationError("Add at least one item to the entry")

        missing_expiry = [line.barcode for line in self._items
                          if line.reason == EXPIRED_REASON and not line.expiry_date]
        if missing_expiry:
            raise CartValidationError(
                f"{len(missing_expiry)} expired item(s) without an expiry date",
                barcodes=missing_expiry,
            )

        bad_quantity = [line.barcode for line in self._items if line.quantity <= 0]
        if bad_quantity:
            raise CartValidationError(
                f"{len(bad_quantity)} item(s) with invalid quantity",
                barcodes=bad_quantity,
            )

    def build_batch(self, user_id: str, note: Optional[str] = None) -> EntryBatchPayload:
        """Validate and turn the cart into an entry batch."""
        self.validate()
        return EntryBatchPayload(
            entry={"observacao": note or None, "usuario_id": user_id},
            items=[line.to_row(user_id) for line in self._items],
        )

    def clear(self) -> None:
        self._items = []
