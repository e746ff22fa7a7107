"""Transaction scope shared by every storage backend.

A unit of work is acquired per checkout, handed to the reservation engine,
the ledger and the allocator, and finished exactly once: committed or aborted.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from errors import TransactionStateError, TransactionTimeoutError
from logger import logger

NEW, ACTIVE, COMMITTED, ABORTED = "new", "active", "committed", "aborted"


class UnitOfWork(ABC):
    """Begin/commit/abort plus the reads and writes a checkout needs.

    Used as a context manager: entering begins, a clean exit commits, an
    exception aborts. After commit or abort the handle is released and any
    further use raises TransactionStateError.
    """

    def __init__(self, timeout_ms: Optional[int] = None):
        self.timeout_ms = timeout_ms
        self.state = NEW
        self._deadline: Optional[float] = None

    # Lifecycle

    def begin(self) -> "UnitOfWork":
        if self.state != NEW:
            raise TransactionStateError(f"Cannot begin a unit of work that is {self.state}")
        if self.timeout_ms:
            self._deadline = time.monotonic() + self.timeout_ms / 1000
        self._begin()
        self.state = ACTIVE
        return self

    def commit(self) -> None:
        self._require_active()
        try:
            self.check_deadline()
            self._commit()
        except BaseException:
            self.state = ABORTED
            try:
                self._abort()
            finally:
                self._release()
            raise
        self.state = COMMITTED
        self._release()

    def abort(self) -> None:
        self._require_active()
        self.state = ABORTED
        try:
            self._abort()
        finally:
            self._release()

    @property
    def active(self) -> bool:
        return self.state == ACTIVE

    def check_deadline(self) -> None:
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise TransactionTimeoutError(self.timeout_ms)

    def _require_active(self) -> None:
        if self.state != ACTIVE:
            raise TransactionStateError(f"Unit of work is {self.state}, not active")

    def __enter__(self) -> "UnitOfWork":
        return self.begin()

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.state != ACTIVE:
            return False
        if exc_type is None:
            self.commit()
            return False
        logger.info(f"Aborting unit of work after {exc_type.__name__}: {exc}")
        try:
            self.abort()
        except Exception:
            # keep the original exception
            logger.opt(exception=True).error("Abort failed")
        return False

    # Backend hooks

    @abstractmethod
    def _begin(self) -> None: ...

    @abstractmethod
    def _commit(self) -> None: ...

    @abstractmethod
    def _abort(self) -> None: ...

    def _release(self) -> None:
        """Free backend resources. Called once, after commit or abort."""

    # Reads and writes

    @abstractmethod
    def find_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        """Return the product document (with a string "id") or None."""

    @abstractmethod
    def decrement_stock(
        self, product_id: str, quantity: int, selected_size: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Conditionally take `quantity` from one stock counter.

        The decrement only happens if the product is still active and the
        counter (the size's when `selected_size` is given, the general one
        otherwise) still covers `quantity`. A counter that reaches zero is
        clamped to 0 and a sized entry is marked unavailable.

        Returns the updated document, or None if the condition failed.
        """

    @abstractmethod
    def save_product(self, document: Dict[str, Any]) -> str:
        """Insert or replace a product document, returning its id."""

    @abstractmethod
    def order_number_exists(self, order_number: str) -> bool: ...

    @abstractmethod
    def insert_order(self, document: Dict[str, Any]) -> None:
        """Insert an order. Raises DuplicateOrderNumberError on collision."""
