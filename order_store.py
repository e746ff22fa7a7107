"""Order record store.

Plain reads, admin updates and aggregates over committed orders. Order
creation is not here: the only writer that creates orders is the checkout
unit of work.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from errors import InvalidStatusError, OrderNotFoundError
from schemas import (
    ORDER_STATUSES,
    DailyStatusTotals,
    Order,
    OrderListing,
    OrderPage,
    OrderStatistics,
    Pagination,
    StatusChange,
    StatusTotals,
    utcnow,
)

SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "orderNumber": "order_number",
    "order_number": "order_number",
    "status": "status",
    "total": "pricing.total",
}


@dataclass
class OrderQuery:
    email: Optional[str] = None
    email_contains: Optional[str] = None
    status: Optional[str] = None


def validate_status(status: str) -> str:
    if status not in ORDER_STATUSES:
        raise InvalidStatusError(status, ORDER_STATUSES)
    return status


def paginate(page: int, limit: int, returned: int, total: int) -> Pagination:
    skip = (page - 1) * limit
    return Pagination(
        current_page=page,
        total_pages=math.ceil(total / limit) if limit else 0,
        total_orders=total,
        has_next=skip + returned < total,
        has_prev=page > 1,
    )


def status_changes(status: str, timestamp: datetime) -> Dict[str, Any]:
    changes: Dict[str, Any] = {"status": status, "updated_at": timestamp}
    if status == "delivered":
        changes["actual_delivery_date"] = timestamp
    return changes


def fold_status_totals(rows: List[Tuple[str, int, float]]) -> Dict[str, StatusTotals]:
    return {status: StatusTotals(count=count, total_amount=amount) for status, count, amount in rows}


class OrderStore(ABC):
    """Backend-independent order reads and admin updates."""

    def get(self, order_number: str) -> Order:
        document = self._find_one(order_number)
        if document is None:
            raise OrderNotFoundError(order_number)
        return Order.model_validate(document)

    def list_by_email(self, email: str, page: int = 1, limit: int = 10, status: Optional[str] = None) -> OrderPage:
        query = OrderQuery(email=email.lower(), status=status)
        skip = (page - 1) * limit
        documents = self._find(query, "created_at", True, skip, limit)
        total = self._count(query)
        return OrderPage(
            orders=[Order.model_validate(d) for d in documents],
            pagination=paginate(page, limit, len(documents), total),
        )

    def list_orders(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        email: Optional[str] = None,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> OrderListing:
        """Admin listing with per-status counts and revenue over all orders."""
        query = OrderQuery(email_contains=email or None, status=None if status in (None, "", "all") else status)
        skip = (page - 1) * limit
        field = SORT_FIELDS.get(sort_by, "created_at")
        documents = self._find(query, field, sort_order == "desc", skip, limit)
        total = self._count(query)
        by_status = fold_status_totals(self._status_totals())
        return OrderListing(
            orders=[Order.model_validate(d) for d in documents],
            pagination=paginate(page, limit, len(documents), total),
            by_status=by_status,
            total_revenue=sum(s.total_amount for s in by_status.values()),
        )

    def update_status(self, order_number: str, status: str, note: Optional[str] = None) -> Order:
        validate_status(status)
        change = StatusChange(status=status, note=note)
        document = self._update(order_number, status_changes(status, change.timestamp), change.model_dump())
        if document is None:
            raise OrderNotFoundError(order_number)
        return Order.model_validate(document)

    def bulk_update_status(self, order_numbers: List[str], status: str) -> Tuple[int, int]:
        """Returns (matched, modified)."""
        validate_status(status)
        change = StatusChange(status=status)
        return self._update_many(order_numbers, status_changes(status, change.timestamp), change.model_dump())

    def update_tracking(self, order_number: str, tracking_number: Optional[str], carrier: Optional[str]) -> Order:
        changes = {"tracking_number": tracking_number, "carrier": carrier, "updated_at": utcnow()}
        document = self._update(order_number, changes, None)
        if document is None:
            raise OrderNotFoundError(order_number)
        return Order.model_validate(document)

    def delete(self, order_number: str) -> Order:
        document = self._delete(order_number)
        if document is None:
            raise OrderNotFoundError(order_number)
        return Order.model_validate(document)

    def statistics(self, days: int = 30) -> OrderStatistics:
        since = utcnow() - timedelta(days=days)
        timeframe = [
            DailyStatusTotals(date=date, status=status, count=count, total_amount=amount)
            for date, status, count, amount in sorted(self._daily_status_totals(since))
        ]
        overall = fold_status_totals(self._status_totals())
        recent = self._find(OrderQuery(), "created_at", True, 0, 5)
        return OrderStatistics(
            timeframe_stats=timeframe,
            overall_stats=overall,
            recent_orders=[Order.model_validate(d) for d in recent],
            total_revenue=sum(s.total_amount for s in overall.values()),
            total_orders=sum(s.count for s in overall.values()),
        )

    # Backend primitives

    @abstractmethod
    def _find_one(self, order_number: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def _find(
        self, query: OrderQuery, sort_field: str, descending: bool, skip: int, limit: int
    ) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def _count(self, query: OrderQuery) -> int: ...

    @abstractmethod
    def _update(
        self, order_number: str, changes: Dict[str, Any], history: Optional[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """Set `changes`, append `history` to status_history, return the new document."""

    @abstractmethod
    def _update_many(
        self, order_numbers: List[str], changes: Dict[str, Any], history: Optional[Dict[str, Any]]
    ) -> Tuple[int, int]: ...

    @abstractmethod
    def _delete(self, order_number: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def _status_totals(self) -> List[Tuple[str, int, float]]:
        """(status, count, revenue) per status."""

    @abstractmethod
    def _daily_status_totals(self, since: datetime) -> List[Tuple[str, str, int, float]]:
        """(YYYY-MM-DD, status, count, revenue) per day and status since `since`."""
