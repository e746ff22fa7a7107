"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from conftest import order_payload
from config import Settings
from main import create_app


@pytest.fixture
def client(database):
    app = create_app(Settings(), database=database)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def product(client):
    response = client.post(
        "/products",
        json={"name": "Midnight Oud", "price": 80, "stock": 5, "images": ["oud.jpg"], "isActive": True},
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def placed(client, product):
    """An order for one unit of `product`, as returned by POST /orders."""
    response = client.post("/orders", json=order_payload([{"productId": product["id"], "quantity": 1}]))
    assert response.status_code == 201
    return response.json()["order"]


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Scent Shop Orders API running"}

    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["database"] == "memory"
    assert health["connection_status"] == "Connected"


def test_product_round_trip(client, product):
    assert product["isActive"] is True
    assert product["id"]

    response = client.get(f"/products/{product['id']}")

    assert response.status_code == 200
    assert response.json()["stock"] == 5


def test_unknown_product(client):
    response = client.get("/products/missing")

    assert response.status_code == 404
    assert response.json()["error_type"] == "ProductNotFoundError"


def test_create_order(client, product):
    response = client.post(
        "/orders",
        json=order_payload([{"productId": product["id"], "quantity": 3}]),
        headers={"X-User-Id": "user-42"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Order created successfully"
    assert body["order"]["status"] == "pending"
    assert body["order"]["total"] == 113.5
    assert body["order"]["orderNumber"].startswith("ORD")
    assert client.get(f"/products/{product['id']}").json()["stock"] == 2

    order = client.get(f"/orders/{body['order']['orderNumber']}").json()
    assert order["userId"] == "user-42"


def test_stock_errors_are_listed(client, product):
    response = client.post(
        "/orders",
        json=order_payload(
            [
                {"productId": product["id"], "name": "Midnight Oud", "quantity": 9},
                {"name": "Mystery"},
            ]
        ),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Stock validation failed"
    assert body["errors"] == [
        "Insufficient stock for Midnight Oud. Available: 5, Requested: 9",
        "Product ID missing for item Mystery",
    ]
    assert client.get(f"/products/{product['id']}").json()["stock"] == 5


def test_missing_section_is_rejected(client, product):
    payload = order_payload([{"productId": product["id"]}])
    del payload["paymentInfo"]

    response = client.post("/orders", json=payload)

    assert response.status_code == 400
    assert response.json()["message"] == "Payment information is required"


def test_invalid_quantity_is_a_validation_error(client, product):
    response = client.post("/orders", json=order_payload([{"productId": product["id"], "quantity": 0}]))

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "Validation error"
    assert any(error.startswith("items.0.quantity") for error in body["errors"])
    assert client.get(f"/products/{product['id']}").json()["stock"] == 5


def test_missing_customer_field_is_a_validation_error(client, product):
    """Test that a malformed section gets the same envelope as other checkout failures."""
    payload = order_payload([{"productId": product["id"]}])
    del payload["customerInfo"]["phone"]

    response = client.post("/orders", json=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["error_type"] == "ValidationError"
    assert any("customerInfo.phone" in error for error in body["errors"])


def test_stored_order_hides_card_details(client, placed):
    order = client.get(f"/orders/{placed['orderNumber'].lower()}").json()

    assert order["paymentInfo"] == {
        "method": "credit-card",
        "cardLastFour": "1234",
        "cardName": "Jane Doe",
        "paymentStatus": "pending",
    }
    assert order["promoCode"] == "WELCOME10"
    assert order["items"][0]["image"] == "oud.jpg"


def test_unknown_order(client):
    response = client.get("/orders/ORD000000000")

    assert response.status_code == 404
    assert response.json()["message"] == "Order not found: ORD000000000"


def test_status_update(client, placed):
    number = placed["orderNumber"]

    response = client.put(f"/orders/{number}/status", json={"status": "confirmed", "note": "Paid"})

    assert response.status_code == 200
    assert response.json()["order"]["status"] == "confirmed"
    history = client.get(f"/orders/{number}").json()["statusHistory"]
    assert [h["status"] for h in history] == ["pending", "confirmed"]


def test_invalid_status(client, placed):
    response = client.put(f"/orders/{placed['orderNumber']}/status", json={"status": "lost"})

    assert response.status_code == 400
    assert response.json()["message"].startswith("Invalid status. Valid statuses are: pending")


def test_bulk_status_update(client, placed):
    response = client.patch(
        "/orders/admin/bulk-update-status",
        json={"orderNumbers": [placed["orderNumber"], "ORD000000000"], "status": "shipped"},
    )

    assert response.status_code == 200
    assert response.json()["matchedCount"] == 1
    assert client.get(f"/orders/{placed['orderNumber']}").json()["status"] == "shipped"


def test_tracking_update(client, placed):
    number = placed["orderNumber"]

    assert client.patch(f"/orders/{number}/tracking", json={}).status_code == 400
    response = client.patch(f"/orders/{number}/tracking", json={"trackingNumber": "1Z999", "carrier": "UPS"})

    assert response.json()["order"] == {"orderNumber": number, "trackingNumber": "1Z999", "carrier": "UPS"}


def test_listings_and_statistics(client, placed):
    by_email = client.get("/orders/email/JANE.DOE@example.com").json()
    assert [o["orderNumber"] for o in by_email["orders"]] == [placed["orderNumber"]]
    assert by_email["pagination"]["totalOrders"] == 1

    listing = client.get("/orders", params={"status": "all", "sortBy": "total", "sortOrder": "asc"}).json()
    assert listing["byStatus"]["pending"]["count"] == 1
    assert listing["totalRevenue"] == 113.5

    stats = client.get("/orders/admin/statistics", params={"timeframe": 7}).json()
    assert stats["totalOrders"] == 1
    assert stats["recentOrders"][0]["orderNumber"] == placed["orderNumber"]


def test_delete_order(client, placed):
    number = placed["orderNumber"]

    response = client.delete(f"/orders/{number}")

    assert response.json()["deletedOrder"] == {
        "orderNumber": number,
        "customerEmail": "jane.doe@example.com",
        "total": 113.5,
    }
    assert client.get(f"/orders/{number}").status_code == 404
