"""
MongoDB storage client

The client is constructed explicitly, connected at startup and closed at
shutdown; nothing here is module-level state. Checkout writes go through a
MongoUnitOfWork, a multi-document transaction on one client session.
"""

import functools
import re
from contextlib import ExitStack
from typing import Any, Dict, List, Optional

import pymongo
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import ReadPreference
from pymongo.write_concern import WriteConcern

from config import Settings
from errors import (
    ConfigurationError,
    DuplicateOrderNumberError,
    ShopError,
    StockConflictError,
    StorageError,
    TransactionAbortedError,
    TransactionTimeoutError,
)
from logger import logger
from memory_database import MemoryDatabase
from order_store import OrderQuery, OrderStore
from unit_of_work import UnitOfWork

WRITE_CONFLICT = 112
COMMIT_ATTEMPTS = 3


def product_filter(product_id: str) -> Dict[str, Any]:
    if ObjectId.is_valid(product_id):
        return {"_id": ObjectId(product_id)}
    return {"_id": product_id}


def product_out(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if document is None:
        return None
    document = dict(document)
    document["id"] = str(document.pop("_id"))
    return document


def is_write_conflict(error: PyMongoError) -> bool:
    return getattr(error, "code", None) == WRITE_CONFLICT or error.has_error_label("TransientTransactionError")


def storage_call(method):
    """Run a unit-of-work operation, translating driver errors."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        self._require_active()
        try:
            return method(self, *args, **kwargs)
        except ShopError:
            raise
        except PyMongoError as e:
            raise self.translate(e) from e

    return wrapper


class MongoUnitOfWork(UnitOfWork):
    def __init__(self, client: MongoClient, db, timeout_ms: Optional[int] = None):
        super().__init__(timeout_ms)
        self._client = client
        self._db = db
        self._stack = ExitStack()
        self.session = None

    def translate(self, error: PyMongoError) -> ShopError:
        if getattr(error, "timeout", False):
            return TransactionTimeoutError(self.timeout_ms)
        logger.error(f"MongoDB error in order transaction: {error}")
        return StorageError(str(error))

    def _begin(self) -> None:
        try:
            if self.timeout_ms:
                self._stack.enter_context(pymongo.timeout(self.timeout_ms / 1000))
            self.session = self._stack.enter_context(self._client.start_session())
            self.session.start_transaction(
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
                read_preference=ReadPreference.PRIMARY,
                max_commit_time_ms=self.timeout_ms,
            )
        except PyMongoError as e:
            self._stack.close()
            raise self.translate(e) from e

    def _commit(self) -> None:
        for attempt in range(1, COMMIT_ATTEMPTS + 1):
            try:
                self.session.commit_transaction()
                return
            except PyMongoError as e:
                if e.has_error_label("UnknownTransactionCommitResult") and attempt < COMMIT_ATTEMPTS:
                    logger.warning(f"Commit result unknown, retrying commit (attempt {attempt})")
                    continue
                if getattr(e, "code", None) == WRITE_CONFLICT:
                    raise StockConflictError() from e
                if e.has_error_label("TransientTransactionError"):
                    logger.warning(f"Transaction aborted at commit: {e}")
                    raise TransactionAbortedError(str(e)) from e
                raise self.translate(e) from e

    def _abort(self) -> None:
        if self.session is not None and self.session.in_transaction:
            try:
                self.session.abort_transaction()
            except PyMongoError as e:
                raise self.translate(e) from e

    def _release(self) -> None:
        # ends the session; the server drops anything left uncommitted
        self._stack.close()

    @storage_call
    def find_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        document = self._db["product"].find_one(product_filter(product_id), session=self.session)
        return product_out(document)

    @storage_call
    def decrement_stock(
        self, product_id: str, quantity: int, selected_size: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        products = self._db["product"]
        condition = product_filter(product_id)
        condition["is_active"] = {"$ne": False}
        if selected_size is None:
            condition["stock"] = {"$gte": quantity}
            update = {"$inc": {"stock": -quantity}}
        else:
            condition["sizes"] = {
                "$elemMatch": {"size": selected_size, "available": {"$ne": False}, "stock": {"$gte": quantity}}
            }
            update = {"$inc": {"sizes.$.stock": -quantity}}

        try:
            document = products.find_one_and_update(
                condition, update, return_document=ReturnDocument.AFTER, session=self.session
            )
        except PyMongoError as e:
            if is_write_conflict(e):
                logger.warning(f"Write conflict decrementing {product_id}")
                return None
            raise
        if document is None:
            return None

        if selected_size is None:
            if document.get("stock", 0) <= 0:
                products.update_one({"_id": document["_id"]}, {"$set": {"stock": 0}}, session=self.session)
                document["stock"] = 0
        else:
            entry = next(s for s in document["sizes"] if s.get("size") == selected_size)
            if entry.get("stock", 0) <= 0:
                products.update_one(
                    {"_id": document["_id"], "sizes.size": selected_size},
                    {"$set": {"sizes.$.stock": 0, "sizes.$.available": False}},
                    session=self.session,
                )
                entry["stock"] = 0
                entry["available"] = False
        return product_out(document)

    @storage_call
    def save_product(self, document: Dict[str, Any]) -> str:
        document = dict(document)
        product_id = document.pop("id", None)
        products = self._db["product"]
        if product_id:
            products.replace_one(product_filter(product_id), document, upsert=True, session=self.session)
            return product_id
        return str(products.insert_one(document, session=self.session).inserted_id)

    @storage_call
    def order_number_exists(self, order_number: str) -> bool:
        return self._db["order"].count_documents({"order_number": order_number}, limit=1, session=self.session) > 0

    @storage_call
    def insert_order(self, document: Dict[str, Any]) -> None:
        try:
            self._db["order"].insert_one(dict(document), session=self.session)
        except DuplicateKeyError as e:
            raise DuplicateOrderNumberError(document["order_number"]) from e
        except PyMongoError as e:
            # a concurrent insert of the same number surfaces as a write conflict
            if is_write_conflict(e):
                raise DuplicateOrderNumberError(document["order_number"]) from e
            raise


class MongoOrderStore(OrderStore):
    def __init__(self, collection):
        self.collection = collection

    @staticmethod
    def _filter(query: OrderQuery) -> Dict[str, Any]:
        flt: Dict[str, Any] = {}
        if query.email is not None:
            flt["customer_info.email"] = query.email
        if query.email_contains is not None:
            flt["customer_info.email"] = {"$regex": re.escape(query.email_contains), "$options": "i"}
        if query.status is not None:
            flt["status"] = query.status
        return flt

    @staticmethod
    def _update_doc(changes: Dict[str, Any], history: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        update: Dict[str, Any] = {"$set": changes}
        if history is not None:
            update["$push"] = {"status_history": history}
        return update

    def _find_one(self, order_number):
        return self.collection.find_one({"order_number": order_number}, {"_id": 0})

    def _find(self, query, sort_field, descending, skip, limit):
        cursor = (
            self.collection.find(self._filter(query), {"_id": 0})
            .sort(sort_field, DESCENDING if descending else ASCENDING)
            .skip(skip)
            .limit(limit)
        )
        return list(cursor)

    def _count(self, query):
        return self.collection.count_documents(self._filter(query))

    def _update(self, order_number, changes, history):
        return self.collection.find_one_and_update(
            {"order_number": order_number},
            self._update_doc(changes, history),
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )

    def _update_many(self, order_numbers, changes, history):
        result = self.collection.update_many(
            {"order_number": {"$in": list(order_numbers)}}, self._update_doc(changes, history)
        )
        return result.matched_count, result.modified_count

    def _delete(self, order_number):
        return self.collection.find_one_and_delete({"order_number": order_number}, projection={"_id": 0})

    def _status_totals(self):
        rows = self.collection.aggregate(
            [{"$group": {"_id": "$status", "count": {"$sum": 1}, "totalAmount": {"$sum": "$pricing.total"}}}]
        )
        return [(r["_id"], r["count"], r["totalAmount"]) for r in rows]

    def _daily_status_totals(self, since):
        rows = self.collection.aggregate(
            [
                {"$match": {"created_at": {"$gte": since}}},
                {
                    "$group": {
                        "_id": {
                            "status": "$status",
                            "date": {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}},
                        },
                        "count": {"$sum": 1},
                        "totalAmount": {"$sum": "$pricing.total"},
                    }
                },
                {"$sort": {"_id.date": 1}},
            ]
        )
        return [(r["_id"]["date"], r["_id"]["status"], r["count"], r["totalAmount"]) for r in rows]


class MongoDatabase:
    """MongoDB client with an explicit connect/close lifecycle."""

    def __init__(self, url: str, name: str, timeout_ms: int = 10000):
        self.url = url
        self.name = name
        self.timeout_ms = timeout_ms
        self.client: Optional[MongoClient] = None
        self.db = None
        self.order_store: Optional[MongoOrderStore] = None

    def connect(self) -> None:
        self.client = MongoClient(self.url, tz_aware=True, serverSelectionTimeoutMS=5000, maxPoolSize=10)
        self.db = self.client[self.name]
        self.order_store = MongoOrderStore(self.db["order"])
        logger.info(f"Connected to MongoDB database '{self.name}'")

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
            logger.info("MongoDB connection closed")

    def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            self.client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error(f"MongoDB ping failed: {e}")
            return False

    def ensure_indexes(self) -> None:
        orders = self.db["order"]
        orders.create_index("order_number", unique=True)
        orders.create_index("customer_info.email")
        orders.create_index([("customer_info.email", ASCENDING), ("created_at", DESCENDING)])
        orders.create_index("status")
        orders.create_index([("created_at", DESCENDING)])
        orders.create_index("user_id")

    def list_collection_names(self) -> List[str]:
        return self.db.list_collection_names() if self.db is not None else []

    def unit_of_work(self, timeout_ms: Optional[int] = None) -> MongoUnitOfWork:
        return MongoUnitOfWork(self.client, self.db, timeout_ms or self.timeout_ms)


def create_database(settings: Settings):
    """Build the storage client named by the settings (not yet connected).

    The in-memory store only backs development and test runs; anywhere else
    a missing DATABASE_URL stops the service from starting.
    """
    if settings.database_url:
        return MongoDatabase(settings.database_url, settings.database_name, settings.order_transaction_timeout_ms)
    if not settings.allows_memory_backend:
        logger.error(f"DATABASE_URL is not set (ENVIRONMENT={settings.environment})")
        raise ConfigurationError("DATABASE_URL is required outside development and test environments")
    return MemoryDatabase()
