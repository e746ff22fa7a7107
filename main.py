from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import Settings
from database import create_database
from errors import ProductNotFoundError, ShopError, StockValidationError
from inventory import InventoryLedger
from logger import logger, setup_logger
from order_numbers import OrderNumberAllocator
from order_store import OrderStore
from orders import OrderCoordinator, confirmation
from schemas import (
    BulkStatusUpdateRequest,
    Order,
    OrderCreateRequest,
    OrderListing,
    OrderPage,
    OrderStatistics,
    Product,
    StatusUpdateRequest,
    TrackingUpdateRequest,
)


def validation_message(error) -> str:
    """Render one request error as 'items.0.quantity: Input should be ...'."""
    location = ".".join(str(part) for part in error["loc"] if part not in ("body", "query", "path"))
    return f"{location}: {error['msg']}" if location else error["msg"]


def create_app(settings: Optional[Settings] = None, database=None) -> FastAPI:
    """Build the API. `database` may be injected (tests); otherwise one is
    created from the settings when the app starts."""
    settings = settings or Settings.from_env()
    setup_logger(settings.service_name, settings.log_level, settings.log_file)

    def wire(app: FastAPI, db) -> None:
        app.state.database = db
        app.state.ledger = InventoryLedger()
        app.state.coordinator = OrderCoordinator(
            db,
            allocator=OrderNumberAllocator(max_attempts=settings.order_number_max_attempts),
            ledger=app.state.ledger,
            timeout_ms=settings.order_transaction_timeout_ms,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = app.state.database if database is not None else create_database(settings)
        db.connect()
        db.ensure_indexes()
        wire(app, db)
        logger.info(f"{settings.service_name} started on database '{db.name}'")
        yield
        db.close()

    app = FastAPI(title="Scent Shop Orders API", lifespan=lifespan)
    app.state.settings = settings
    if database is not None:
        wire(app, database)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
        content = {"success": False, "message": str(exc), "error_type": type(exc).__name__}
        if isinstance(exc, StockValidationError):
            content["errors"] = exc.errors
        if exc.retryable:
            content["retryable"] = True
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [validation_message(error) for error in exc.errors()]
        logger.warning(f"Rejected {request.method} {request.url.path}: {errors}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Validation error", "error_type": "ValidationError", "errors": errors},
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Internal server error",
                "error": str(exc) if settings.debug else "Internal server error",
            },
        )

    _register_routes(app)
    return app


# Dependencies


def get_database(request: Request):
    return request.app.state.database


def get_order_store(request: Request) -> OrderStore:
    return request.app.state.database.order_store


def get_coordinator(request: Request) -> OrderCoordinator:
    return request.app.state.coordinator


def get_ledger(request: Request) -> InventoryLedger:
    return request.app.state.ledger


def _register_routes(app: FastAPI) -> None:
    @app.get("/")
    def read_root():
        return {"message": "Scent Shop Orders API running"}

    @app.get("/health")
    def health(db=Depends(get_database)):
        connected = db.ping()
        return {
            "status": "ok" if connected else "degraded",
            "database": db.name,
            "connection_status": "Connected" if connected else "Not Connected",
            "collections": db.list_collection_names()[:10] if connected else [],
        }

    # Products

    @app.post("/products", response_model=Product, status_code=201)
    def save_product(payload: Product, db=Depends(get_database), ledger: InventoryLedger = Depends(get_ledger)):
        with db.unit_of_work() as uow:
            product = ledger.save_product(uow, payload)
        logger.info(f"Product {product.id} saved ({product.name})")
        return product

    @app.get("/products/{product_id}", response_model=Product)
    def get_product(product_id: str, db=Depends(get_database), ledger: InventoryLedger = Depends(get_ledger)):
        with db.unit_of_work() as uow:
            product = ledger.find_product_by_id(uow, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    # Orders

    @app.post("/orders", status_code=201)
    def create_order(
        payload: OrderCreateRequest,
        coordinator: OrderCoordinator = Depends(get_coordinator),
        x_user_id: Optional[str] = Header(None),
    ):
        order = coordinator.place_order(payload, user_id=x_user_id)
        return {
            "success": True,
            "message": "Order created successfully",
            "order": confirmation(order).model_dump(by_alias=True, mode="json"),
        }

    @app.get("/orders", response_model=OrderListing)
    def list_orders(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        status: Optional[str] = None,
        email: Optional[str] = None,
        sort_by: str = Query("createdAt", alias="sortBy"),
        sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
        store: OrderStore = Depends(get_order_store),
    ):
        return store.list_orders(page, limit, status, email, sort_by, sort_order)

    @app.get("/orders/admin/statistics", response_model=OrderStatistics)
    def order_statistics(timeframe: int = Query(30, ge=1), store: OrderStore = Depends(get_order_store)):
        return store.statistics(timeframe)

    @app.patch("/orders/admin/bulk-update-status")
    def bulk_update_status(payload: BulkStatusUpdateRequest, store: OrderStore = Depends(get_order_store)):
        matched, modified = store.bulk_update_status(payload.order_numbers, payload.status)
        return {
            "success": True,
            "message": f"Successfully updated {modified} orders",
            "modifiedCount": modified,
            "matchedCount": matched,
        }

    @app.get("/orders/email/{email}", response_model=OrderPage)
    def orders_by_email(
        email: str,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        status: Optional[str] = None,
        store: OrderStore = Depends(get_order_store),
    ):
        return store.list_by_email(email, page, limit, status)

    @app.get("/orders/{order_number}", response_model=Order)
    def get_order(order_number: str, store: OrderStore = Depends(get_order_store)):
        return store.get(order_number.upper())

    @app.put("/orders/{order_number}/status")
    def update_order_status(
        order_number: str, payload: StatusUpdateRequest, store: OrderStore = Depends(get_order_store)
    ):
        order = store.update_status(order_number.upper(), payload.status, payload.note)
        return {
            "success": True,
            "message": "Order status updated successfully",
            "order": {"orderNumber": order.order_number, "status": order.status, "updatedAt": order.updated_at},
        }

    @app.patch("/orders/{order_number}/tracking")
    def update_tracking(
        order_number: str, payload: TrackingUpdateRequest, store: OrderStore = Depends(get_order_store)
    ):
        if not payload.tracking_number and not payload.carrier:
            raise HTTPException(status_code=400, detail="Tracking number or carrier is required")
        order = store.update_tracking(order_number.upper(), payload.tracking_number, payload.carrier)
        return {
            "success": True,
            "message": "Tracking information updated successfully",
            "order": {
                "orderNumber": order.order_number,
                "trackingNumber": order.tracking_number,
                "carrier": order.carrier,
            },
        }

    @app.delete("/orders/{order_number}")
    def delete_order(order_number: str, store: OrderStore = Depends(get_order_store)):
        order = store.delete(order_number.upper())
        return {
            "success": True,
            "message": "Order deleted successfully",
            "deletedOrder": {
                "orderNumber": order.order_number,
                "customerEmail": order.customer_info.email,
                "total": order.pricing.total,
            },
        }


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
