"""Test fixtures for the order service tests."""

import pytest

from inventory import InventoryLedger
from memory_database import MemoryDatabase
from orders import OrderCoordinator
from schemas import OrderCreateRequest, Product


def order_payload(items, **overrides):
    """Build a checkout body in the camelCase shape clients send."""
    payload = {
        "customerInfo": {
            "name": "Jane Doe",
            "email": "Jane.Doe@Example.com",
            "phone": "555-0100",
            "address": "1 Main St",
            "city": "Springfield",
            "state": "IL",
            "zipCode": "62701",
            "country": "United States",
        },
        "items": items,
        "paymentInfo": {
            "method": "credit-card",
            "cardNumber": "4111 1111 1111 1234",
            "cardName": "Jane Doe",
            "expiryDate": "12/30",
            "cvv": "123",
        },
        "shippingOption": {"id": "standard", "name": "Standard", "price": 5, "days": "3-5 business days"},
        "pricing": {"subtotal": "100.00", "shipping": 5, "tax": "8.50", "discount": 0, "total": "113.50"},
        "promoCode": " welcome10 ",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def database():
    """An empty in-memory store."""
    return MemoryDatabase()


@pytest.fixture
def ledger():
    return InventoryLedger()


@pytest.fixture
def add_product(database, ledger):
    """Factory saving a product and returning it with its assigned id."""

    def _add(**fields):
        product = Product(**{"name": "Midnight Oud", "price": 80.0, **fields})
        with database.unit_of_work() as uow:
            return ledger.save_product(uow, product)

    return _add


@pytest.fixture
def product_doc(database):
    """Read the committed product document straight from the store."""

    def _get(product_id):
        return database.products[product_id]

    return _get


@pytest.fixture
def coordinator(database, ledger):
    return OrderCoordinator(database, ledger=ledger)


@pytest.fixture
def make_order():
    """Factory for validated checkout requests."""

    def _make(items, **overrides):
        return OrderCreateRequest.model_validate(order_payload(items, **overrides))

    return _make
