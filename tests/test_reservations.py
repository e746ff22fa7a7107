"""Tests for product id resolution and the stock reservation engine."""

import pytest

from errors import StockValidationError
from reservations import StockReservationEngine, resolve_product_id
from schemas import OrderItemRequest


def item(**fields):
    return OrderItemRequest.model_validate({"name": "Line", "price": 10, **fields})


class TestResolveProductId:
    def test_product_id_wins_over_aliases(self):
        assert resolve_product_id(item(productId="a", _id="b", id="c")) == "a"

    def test_falls_back_to_mongo_id_then_id(self):
        assert resolve_product_id(item(_id="b", id="c")) == "b"
        assert resolve_product_id(item(id="c")) == "c"

    def test_blank_values_count_as_missing(self):
        assert resolve_product_id(item(productId="  ", id="c")) == "c"
        assert resolve_product_id(item()) is None


class TestReservationEngine:
    @pytest.fixture
    def engine(self, ledger):
        return StockReservationEngine(ledger)

    def test_valid_items_become_reservations(self, database, engine, add_product):
        general = add_product(stock=5)
        sized = add_product(name="Rose", sizes=[{"size": "50ml", "stock": 2, "price": 40}])

        with database.unit_of_work() as uow:
            reservations = engine.reserve(
                uow,
                [item(productId=general.id, quantity=3), item(id=sized.id, selectedSize="50ml", quantity=2)],
            )

        assert [(r.product_id, r.quantity, r.selected_size) for r in reservations] == [
            (general.id, 3, None),
            (sized.id, 2, "50ml"),
        ]
        assert reservations[1].product.name == "Rose"

    def test_collects_one_error_per_failing_item(self, database, engine, add_product):
        inactive = add_product(name="Old Musk", stock=10, is_active=False)
        ok = add_product(name="Amber", stock=10)
        low = add_product(name="Vetiver", stock=1)

        with database.unit_of_work() as uow:
            with pytest.raises(StockValidationError) as exc_info:
                engine.reserve(
                    uow,
                    [
                        item(productId=inactive.id, name="Old Musk"),
                        item(productId=ok.id, name="Amber", quantity=2),
                        item(productId=low.id, name="Vetiver", quantity=4),
                    ],
                )

        assert exc_info.value.errors == [
            "Product Old Musk is no longer available",
            "Insufficient stock for Vetiver. Available: 1, Requested: 4",
        ]

    def test_missing_and_unknown_products(self, database, engine):
        with database.unit_of_work() as uow:
            with pytest.raises(StockValidationError) as exc_info:
                engine.reserve(uow, [item(name="Ghost"), item(productId="nope", name="Phantom")])

        assert exc_info.value.errors == [
            "Product ID missing for item Ghost",
            "Product Phantom not found",
        ]

    def test_size_checks(self, database, engine, add_product):
        product = add_product(
            name="Neroli",
            sizes=[
                {"size": "50ml", "stock": 1, "price": 40},
                {"size": "100ml", "stock": 5, "price": 70, "available": False},
            ],
        )

        with database.unit_of_work() as uow:
            with pytest.raises(StockValidationError) as exc_info:
                engine.reserve(
                    uow,
                    [
                        item(productId=product.id, name="Neroli", selectedSize="10ml"),
                        item(productId=product.id, name="Neroli", selectedSize="100ml"),
                        item(productId=product.id, name="Neroli", selectedSize="50ml", quantity=2),
                    ],
                )

        assert exc_info.value.errors == [
            "Size 10ml not found for product Neroli",
            "Size 100ml is not available for product Neroli",
            "Insufficient stock for Neroli (50ml). Available: 1, Requested: 2",
        ]

    def test_sized_item_ignores_general_stock(self, database, engine, add_product):
        product = add_product(stock=0, sizes=[{"size": "M", "stock": 3, "price": 20}])

        with database.unit_of_work() as uow:
            reservations = engine.reserve(uow, [item(productId=product.id, selectedSize="M", quantity=3)])

        assert reservations[0].selected_size == "M"

    def test_validation_does_not_write(self, database, engine, add_product, product_doc):
        product = add_product(stock=2)

        with database.unit_of_work() as uow:
            engine.reserve(uow, [item(productId=product.id, quantity=2)])

        assert product_doc(product.id)["stock"] == 2
