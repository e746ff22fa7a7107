"""Order number allocation."""

import random
import time
from typing import Callable

from errors import OrderNumberExhaustedError
from logger import logger
from unit_of_work import UnitOfWork

ORDER_NUMBER_PREFIX = "ORD"
MAX_ATTEMPTS = 10


def generate_order_number() -> str:
    """ORD + last 6 digits of the millisecond clock + 3 random digits."""
    timestamp = str(int(time.time() * 1000))[-6:]
    suffix = f"{random.randint(0, 999):03d}"
    return f"{ORDER_NUMBER_PREFIX}{timestamp}{suffix}"


class OrderNumberAllocator:
    """Picks an order number not yet present in the order store.

    The check is advisory: the unique index on order_number decides at insert
    time, and the coordinator retries the transaction on a late collision.
    """

    def __init__(self, max_attempts: int = MAX_ATTEMPTS, generator: Callable[[], str] = generate_order_number):
        self.max_attempts = max_attempts
        self.generator = generator

    def allocate(self, uow: UnitOfWork) -> str:
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.generator()
            if not uow.order_number_exists(candidate):
                return candidate
            logger.warning(f"Order number collision on attempt {attempt}: {candidate}")
        logger.error(f"No unique order number after {self.max_attempts} attempts")
        raise OrderNumberExhaustedError(self.max_attempts)
