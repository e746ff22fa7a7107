"""Stock reservation engine.

Checks every requested line against the inventory ledger and either returns
the full list of reservations or raises one StockValidationError carrying a
message for each failing line. Lines are all checked; a bad line never hides
problems with the ones after it.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from errors import StockValidationError
from inventory import InventoryLedger
from logger import logger
from schemas import OrderItemRequest, Product
from unit_of_work import UnitOfWork

# Precedence for the product reference a client may send
PRODUCT_ID_FIELDS = ("product_id", "mongo_id", "id")


def resolve_product_id(item: OrderItemRequest) -> Optional[str]:
    """Return the first non-blank of productId, _id and id, in that order."""
    for field in PRODUCT_ID_FIELDS:
        value = getattr(item, field, None)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


@dataclass(frozen=True)
class Reservation:
    """A validated, not yet committed intent to take stock."""

    product: Product
    product_id: str
    quantity: int
    selected_size: Optional[str] = None


class StockReservationEngine:
    def __init__(self, ledger: Optional[InventoryLedger] = None):
        self.ledger = ledger or InventoryLedger()

    def check_item(self, uow: UnitOfWork, item: OrderItemRequest) -> Tuple[Optional[Reservation], Optional[str]]:
        """Validate one line. Returns (reservation, None) or (None, message)."""
        label = item.name or "Unknown"
        product_id = resolve_product_id(item)
        if product_id is None:
            return None, f"Product ID missing for item {label}"

        product = self.ledger.find_product_by_id(uow, product_id)
        if product is None:
            return None, f"Product {label} not found"

        label = item.name or product.name
        if not product.is_active:
            return None, f"Product {label} is no longer available"

        quantity = item.quantity
        if item.selected_size:
            size = product.find_size(item.selected_size)
            if size is None:
                return None, f"Size {item.selected_size} not found for product {label}"
            if not size.available:
                return None, f"Size {item.selected_size} is not available for product {label}"
            if size.stock < quantity:
                return None, (
                    f"Insufficient stock for {label} ({item.selected_size}). "
                    f"Available: {size.stock}, Requested: {quantity}"
                )
        elif product.stock < quantity:
            return None, f"Insufficient stock for {label}. Available: {product.stock}, Requested: {quantity}"

        return Reservation(product, product_id, quantity, item.selected_size or None), None

    def reserve(self, uow: UnitOfWork, items: List[OrderItemRequest]) -> List[Reservation]:
        """Validate all lines inside `uow`.

        Raises:
            StockValidationError: One or more lines failed; `errors` has one
                message per failing line, in line order.
        """
        reservations: List[Reservation] = []
        errors: List[str] = []
        for item in items:
            reservation, error = self.check_item(uow, item)
            if error is not None:
                errors.append(error)
            else:
                reservations.append(reservation)

        if errors:
            logger.warning(f"Order rejected with {len(errors)} stock error(s): {errors}")
            raise StockValidationError(errors)
        return reservations
