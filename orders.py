"""Order placement.

`OrderCoordinator.place_order` runs the whole checkout as one unit of work:
stock validation, order number allocation, the order insert and every stock
decrement either all commit together or none of them do.
"""

import re
from datetime import timedelta
from typing import List, Optional

from errors import DuplicateOrderNumberError, OrderNumberExhaustedError, OrderStructureError
from inventory import InventoryLedger
from logger import logger
from order_numbers import OrderNumberAllocator
from reservations import Reservation, StockReservationEngine, resolve_product_id
from schemas import (
    Order,
    OrderConfirmation,
    OrderCreateRequest,
    OrderItem,
    OrderItemRequest,
    PaymentInfo,
    ShippingOption,
    StatusChange,
    StoredPaymentInfo,
    utcnow,
)

DEFAULT_DELIVERY_DAYS = 7


def check_structure(request: OrderCreateRequest) -> None:
    """Reject a request missing a top-level section. Runs before any transaction."""
    if request.customer_info is None:
        raise OrderStructureError("Customer information is required")
    if not request.items:
        raise OrderStructureError("Order items are required")
    if request.payment_info is None:
        raise OrderStructureError("Payment information is required")
    if request.shipping_option is None:
        raise OrderStructureError("Shipping option is required")
    if request.pricing is None:
        raise OrderStructureError("Pricing information is required")


def build_payment_snapshot(payment: PaymentInfo) -> StoredPaymentInfo:
    """Keep only the method, the cardholder name and the card's last four digits."""
    last_four = None
    if payment.method == "credit-card" and payment.card_number:
        digits = re.sub(r"\D", "", payment.card_number)
        if len(digits) >= 4:
            last_four = digits[-4:]
    return StoredPaymentInfo(method=payment.method, card_name=payment.card_name, card_last_four=last_four)


def build_order_item(item: OrderItemRequest, reservation: Reservation) -> OrderItem:
    product = reservation.product
    price = item.price if item.price is not None else product.price
    image = item.image or (product.images[0] if product.images else None)
    return OrderItem(
        product_id=resolve_product_id(item),
        name=item.name or product.name,
        price=price,
        image=image,
        quantity=item.quantity,
        selected_size=reservation.selected_size,
        subtotal=round(price * item.quantity, 2),
    )


def estimate_delivery(shipping_option: ShippingOption, now=None):
    now = now or utcnow()
    match = re.search(r"\d+", shipping_option.days or "")
    days = int(match.group()) if match else DEFAULT_DELIVERY_DAYS
    return now + timedelta(days=days)


def build_order(
    order_number: str,
    request: OrderCreateRequest,
    reservations: List[Reservation],
    user_id: Optional[str] = None,
) -> Order:
    now = utcnow()
    promo_code = (request.promo_code or "").strip().upper() or None
    return Order(
        order_number=order_number,
        user_id=user_id,
        customer_info=request.customer_info,
        items=[build_order_item(item, r) for item, r in zip(request.items, reservations)],
        payment_info=build_payment_snapshot(request.payment_info),
        shipping_option=request.shipping_option,
        pricing=request.pricing,
        promo_code=promo_code,
        status="pending",
        status_history=[StatusChange(status="pending", timestamp=now, note="Order placed")],
        estimated_delivery_date=estimate_delivery(request.shipping_option, now),
        created_at=now,
        updated_at=now,
    )


def confirmation(order: Order) -> OrderConfirmation:
    return OrderConfirmation(
        order_number=order.order_number,
        status=order.status,
        total=order.pricing.total,
        created_at=order.created_at,
    )


class OrderCoordinator:
    """Owns the commit/abort decision for a checkout.

    Attributes:
        database: Storage client providing `unit_of_work(timeout_ms=...)`.
        allocator: Order number allocator; its attempt bound also caps the
            number of transactions retried after an insert-time collision.
        engine: Stock reservation engine.
        ledger: Inventory ledger applying the decrements.
        timeout_ms: Deadline for one checkout transaction.
    """

    def __init__(
        self,
        database,
        allocator: Optional[OrderNumberAllocator] = None,
        engine: Optional[StockReservationEngine] = None,
        ledger: Optional[InventoryLedger] = None,
        timeout_ms: int = 10000,
    ):
        self.database = database
        self.ledger = ledger or InventoryLedger()
        self.engine = engine or StockReservationEngine(self.ledger)
        self.allocator = allocator or OrderNumberAllocator()
        self.timeout_ms = timeout_ms

    def place_order(self, request: OrderCreateRequest, user_id: Optional[str] = None) -> Order:
        """Validate, reserve and persist an order atomically.

        Raises:
            OrderStructureError: A required section is missing (no transaction opened).
            StockValidationError: One or more lines failed; nothing was written.
            OrderNumberExhaustedError: No unique order number within the bound.
            TransactionTimeoutError: The transaction ran past its deadline.
        """
        check_structure(request)
        logger.info(
            f"Placing order for {request.customer_info.email} with {len(request.items)} item(s)"
        )

        for attempt in range(1, self.allocator.max_attempts + 1):
            try:
                order = self._place_once(request, user_id)
            except DuplicateOrderNumberError as e:
                logger.warning(f"Order number {e.order_number} taken at insert (attempt {attempt}), retrying")
                continue
            logger.info(f"Order {order.order_number} committed, total {order.pricing.total}")
            return order

        logger.error(f"Giving up after {self.allocator.max_attempts} order number collisions")
        raise OrderNumberExhaustedError(self.allocator.max_attempts)

    def _place_once(self, request: OrderCreateRequest, user_id: Optional[str]) -> Order:
        with self.database.unit_of_work(timeout_ms=self.timeout_ms) as uow:
            reservations = self.engine.reserve(uow, request.items)
            order_number = self.allocator.allocate(uow)
            order = build_order(order_number, request, reservations, user_id)
            uow.insert_order(order.to_document())
            for reservation in reservations:
                self.ledger.apply_reservation(uow, reservation)
        return order
