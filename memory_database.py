"""In-process storage backend.

Same surface as the MongoDB client, kept in dictionaries behind one lock.
Used when no DATABASE_URL is configured and by the test-suite.
"""

import threading
from collections import defaultdict
from copy import deepcopy
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

from errors import DuplicateOrderNumberError, StockConflictError
from inventory import decrement_document
from logger import logger
from order_store import OrderQuery, OrderStore
from unit_of_work import UnitOfWork


def _get_path(document: Dict[str, Any], path: str) -> Any:
    value: Any = document
    for key in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


class MemoryUnitOfWork(UnitOfWork):
    """Optimistic unit of work over a MemoryDatabase.

    Reads see committed state overlaid with this unit's staged writes. Writes
    are recorded as an operation log; commit replays the log against the
    latest committed state under the database lock, re-checking every
    conditional decrement and order number, and applies all of it or none.
    """

    def __init__(self, database: "MemoryDatabase", timeout_ms: Optional[int] = None):
        super().__init__(timeout_ms)
        self._db = database
        self._staged_products: Dict[str, Dict[str, Any]] = {}
        self._staged_orders: Dict[str, Dict[str, Any]] = {}
        self._operations: List[Tuple[str, Any]] = []

    def _begin(self) -> None:
        pass

    def _commit(self) -> None:
        with self._db.lock:
            products: Dict[str, Dict[str, Any]] = {}
            for kind, payload in self._operations:
                if kind == "save":
                    products[payload["id"]] = deepcopy(payload)
                    continue
                product_id, quantity, selected_size = payload
                document = products.get(product_id)
                if document is None:
                    committed = self._db.products.get(product_id)
                    if committed is None:
                        raise StockConflictError(product_id, product_id, selected_size)
                    document = products[product_id] = deepcopy(committed)
                if not decrement_document(document, quantity, selected_size):
                    raise StockConflictError(product_id, document.get("name", product_id), selected_size)

            for order_number in self._staged_orders:
                if order_number in self._db.orders:
                    raise DuplicateOrderNumberError(order_number)

            self._db.products.update(products)
            self._db.orders.update(deepcopy(self._staged_orders))

    def _abort(self) -> None:
        pass

    def _release(self) -> None:
        self._staged_products.clear()
        self._staged_orders.clear()
        self._operations.clear()

    def find_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        self._require_active()
        self.check_deadline()
        if product_id in self._staged_products:
            return deepcopy(self._staged_products[product_id])
        with self._db.lock:
            document = self._db.products.get(product_id)
            return deepcopy(document) if document is not None else None

    def decrement_stock(
        self, product_id: str, quantity: int, selected_size: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        document = self.find_product(product_id)
        if document is None or not decrement_document(document, quantity, selected_size):
            return None
        self._staged_products[product_id] = document
        self._operations.append(("decrement", (product_id, quantity, selected_size)))
        return deepcopy(document)

    def save_product(self, document: Dict[str, Any]) -> str:
        self._require_active()
        document = deepcopy(document)
        document["id"] = document.get("id") or str(ObjectId())
        self._staged_products[document["id"]] = document
        self._operations.append(("save", deepcopy(document)))
        return document["id"]

    def order_number_exists(self, order_number: str) -> bool:
        self._require_active()
        self.check_deadline()
        if order_number in self._staged_orders:
            return True
        with self._db.lock:
            return order_number in self._db.orders

    def insert_order(self, document: Dict[str, Any]) -> None:
        order_number = document["order_number"]
        if self.order_number_exists(order_number):
            raise DuplicateOrderNumberError(order_number)
        self._staged_orders[order_number] = deepcopy(document)


class MemoryOrderStore(OrderStore):
    def __init__(self, database: "MemoryDatabase"):
        self._db = database

    def _matches(self, document: Dict[str, Any], query: OrderQuery) -> bool:
        email = (document.get("customer_info") or {}).get("email", "")
        if query.email is not None and email != query.email:
            return False
        if query.email_contains is not None and query.email_contains.lower() not in email.lower():
            return False
        if query.status is not None and document.get("status") != query.status:
            return False
        return True

    def _find_one(self, order_number: str) -> Optional[Dict[str, Any]]:
        with self._db.lock:
            document = self._db.orders.get(order_number)
            return deepcopy(document) if document is not None else None

    def _find(self, query, sort_field, descending, skip, limit):
        with self._db.lock:
            matching = [deepcopy(d) for d in self._db.orders.values() if self._matches(d, query)]
        matching.sort(key=lambda d: (_get_path(d, sort_field) is not None, _get_path(d, sort_field)), reverse=descending)
        return matching[skip : skip + limit]

    def _count(self, query: OrderQuery) -> int:
        with self._db.lock:
            return sum(1 for d in self._db.orders.values() if self._matches(d, query))

    def _update(self, order_number, changes, history):
        with self._db.lock:
            document = self._db.orders.get(order_number)
            if document is None:
                return None
            document.update(deepcopy(changes))
            if history is not None:
                document.setdefault("status_history", []).append(deepcopy(history))
            return deepcopy(document)

    def _update_many(self, order_numbers, changes, history):
        matched = modified = 0
        with self._db.lock:
            for order_number in set(order_numbers):
                document = self._db.orders.get(order_number)
                if document is None:
                    continue
                matched += 1
                if any(document.get(k) != v for k, v in changes.items()):
                    modified += 1
                document.update(deepcopy(changes))
                if history is not None:
                    document.setdefault("status_history", []).append(deepcopy(history))
        return matched, modified

    def _delete(self, order_number):
        with self._db.lock:
            return self._db.orders.pop(order_number, None)

    def _status_totals(self):
        totals: Dict[str, List[float]] = defaultdict(lambda: [0, 0.0])
        with self._db.lock:
            for document in self._db.orders.values():
                entry = totals[document["status"]]
                entry[0] += 1
                entry[1] += document["pricing"]["total"]
        return [(status, int(count), amount) for status, (count, amount) in totals.items()]

    def _daily_status_totals(self, since):
        totals: Dict[Tuple[str, str], List[float]] = defaultdict(lambda: [0, 0.0])
        with self._db.lock:
            for document in self._db.orders.values():
                if document["created_at"] < since:
                    continue
                key = (document["created_at"].strftime("%Y-%m-%d"), document["status"])
                totals[key][0] += 1
                totals[key][1] += document["pricing"]["total"]
        return [(date, status, int(count), amount) for (date, status), (count, amount) in totals.items()]


class MemoryDatabase:
    """Dictionary-backed storage client with the MongoDatabase lifecycle."""

    name = "memory"

    def __init__(self):
        self.lock = threading.RLock()
        self.products: Dict[str, Dict[str, Any]] = {}
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.order_store = MemoryOrderStore(self)

    def connect(self) -> None:
        logger.warning("DATABASE_URL not set, using the in-memory store (data is lost on restart)")

    def close(self) -> None:
        logger.info("In-memory store closed")

    def ping(self) -> bool:
        return True

    def ensure_indexes(self) -> None:
        """Order numbers are dictionary keys, so uniqueness needs no index."""

    def list_collection_names(self) -> List[str]:
        return ["order", "product"]

    def unit_of_work(self, timeout_ms: Optional[int] = None) -> MemoryUnitOfWork:
        return MemoryUnitOfWork(self, timeout_ms)
