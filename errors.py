"""Custom exceptions for the order service."""

from typing import List, Optional


class ShopError(Exception):
    """Base exception for all order service errors."""

    status_code = 500
    retryable = False


class OrderStructureError(ShopError):
    """Raised when a required top-level section of an order request is missing."""

    status_code = 400


class StockValidationError(ShopError):
    """Raised when one or more line items fail the stock checks.

    Carries every per-item message so the caller sees all problems at once.
    """

    status_code = 400

    def __init__(self, errors: List[str], message: str = "Stock validation failed"):
        self.errors = list(errors)
        super().__init__(message)


class StockConflictError(StockValidationError):
    """Raised when stock no longer covers a reservation at write time."""

    def __init__(
        self,
        product_id: Optional[str] = None,
        name: str = "an item in this order",
        selected_size: Optional[str] = None,
    ):
        self.product_id = product_id
        self.selected_size = selected_size
        label = f"{name} ({selected_size})" if selected_size else name
        super().__init__(
            [f"Insufficient stock for {label}. Stock changed while the order was being placed"],
            message="Stock changed during checkout",
        )


class DuplicateOrderNumberError(ShopError):
    """Raised by a store when an order number violates the unique index."""

    retryable = True

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order number already exists: {order_number}")


class OrderNumberExhaustedError(ShopError):
    """Raised when no unique order number was found within the attempt bound."""

    retryable = True

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__("Failed to generate unique order number. Please try again.")


class TransactionTimeoutError(ShopError):
    """Raised when a checkout transaction runs past its deadline."""

    status_code = 503
    retryable = True

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Order transaction timed out after {timeout_ms} ms. Please try again.")


class TransactionStateError(ShopError):
    """Raised when a unit of work is used outside of its begin/commit/abort lifecycle."""


class OrderNotFoundError(ShopError):
    """Raised when an order number doesn't exist."""

    status_code = 404

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order not found: {order_number}")


class ProductNotFoundError(ShopError):
    """Raised when a product id doesn't exist."""

    status_code = 404

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class InvalidStatusError(ShopError):
    """Raised when an order status is not one of the known values."""

    status_code = 400

    def __init__(self, status: str, valid: List[str]):
        self.status = status
        super().__init__(f"Invalid status. Valid statuses are: {', '.join(valid)}")


class StorageError(ShopError):
    """Raised when the database fails in an unexpected way."""


class TransactionAbortedError(ShopError):
    """Raised when the server aborted a checkout transaction for a transient reason."""

    status_code = 503
    retryable = True

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__("Order transaction was interrupted. Please try again.")


class ConfigurationError(ShopError):
    """Raised at startup when the settings cannot run the service."""
