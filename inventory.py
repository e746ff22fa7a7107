"""Inventory ledger: per-product and per-size stock counters.

All reads and writes go through the caller's unit of work so that a checkout
validates and decrements against the same transaction.
"""

from typing import Any, Dict, Optional

from errors import StockConflictError
from logger import logger
from schemas import Product
from unit_of_work import UnitOfWork


def decrement_document(document: Dict[str, Any], quantity: int, selected_size: Optional[str] = None) -> bool:
    """Apply a conditional decrement to a raw product document in place.

    Returns False, leaving the document untouched, when the product is
    inactive or the targeted counter does not cover `quantity`.
    """
    if not document.get("is_active", True):
        return False

    if selected_size is not None:
        for entry in document.get("sizes") or []:
            if entry.get("size") != selected_size:
                continue
            if not entry.get("available", True) or entry.get("stock", 0) < quantity:
                return False
            entry["stock"] = entry.get("stock", 0) - quantity
            if entry["stock"] <= 0:
                entry["stock"] = 0
                entry["available"] = False
            return True
        return False

    if document.get("stock", 0) < quantity:
        return False
    document["stock"] = document.get("stock", 0) - quantity
    if document["stock"] <= 0:
        document["stock"] = 0
    return True


class InventoryLedger:
    """Typed access to product stock inside a unit of work."""

    def find_product_by_id(self, uow: UnitOfWork, product_id: str) -> Optional[Product]:
        document = uow.find_product(product_id)
        if document is None:
            return None
        return Product.model_validate(document)

    def save_product(self, uow: UnitOfWork, product: Product) -> Product:
        product_id = uow.save_product(product.model_dump())
        return product.model_copy(update={"id": product_id})

    def apply_reservation(self, uow: UnitOfWork, reservation) -> Product:
        """Take the reserved quantity from the live product.

        Only the counter the reservation targets is touched: the size's stock
        for sized items, the general stock otherwise.

        Raises:
            StockConflictError: The stock no longer covers the reservation.
        """
        document = uow.decrement_stock(reservation.product_id, reservation.quantity, reservation.selected_size)
        if document is None:
            logger.warning(
                f"Stock conflict on {reservation.product_id} "
                f"(size={reservation.selected_size}, quantity={reservation.quantity})"
            )
            raise StockConflictError(reservation.product_id, reservation.product.name, reservation.selected_size)
        return Product.model_validate(document)
