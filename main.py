import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from auth import get_current_user, is_admin, require_admin
from catalog import Catalog, is_low_stock
from database import ensure_indexes, get_db, serialize_doc
from errors import ForbiddenError, PersistenceError, ShopError
from order_status import StatusLifecycle
from order_store import OrderStore, pagination
from orders import OrderBuilder
from reviews import ReviewService
from schemas import AdminOrderUpdate, OrderCreate, OrderStatus, PaymentStatus, ReviewApproval, ReviewCreate, ReviewUpdate

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(get_db())
    except PyMongoError as e:
        logger.error("Could not create indexes: %s", e)
    yield


app = FastAPI(title="Storefront Orders API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if isinstance(exc, PersistenceError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
        return _error(exc.status_code, "Server error")
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return _error(400, "Invalid request")
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{loc}: {first.get('msg')}" if loc else first.get("msg", "Invalid request")
    return _error(400, message)


# Services

def get_catalog(db: Database = Depends(get_db)) -> Catalog:
    return Catalog(db)


def get_order_store(db: Database = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def get_order_builder(catalog: Catalog = Depends(get_catalog), store: OrderStore = Depends(get_order_store)) -> OrderBuilder:
    return OrderBuilder(catalog, store)


def get_lifecycle(catalog: Catalog = Depends(get_catalog), store: OrderStore = Depends(get_order_store)) -> StatusLifecycle:
    return StatusLifecycle(catalog, store)


def get_review_service(db: Database = Depends(get_db), catalog: Catalog = Depends(get_catalog), store: OrderStore = Depends(get_order_store)) -> ReviewService:
    return ReviewService(db, catalog, store)


def ok(data: Any, **extra: Any) -> Dict[str, Any]:
    return {"success": True, "data": data, **extra}


def public_product(product: dict) -> dict:
    doc = serialize_doc(product)
    doc["is_low_stock"] = is_low_stock(product)
    return doc


# Routes
@app.get("/")
def read_root():
    return {"message": "Storefront Orders API"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_url"] = "✅ Set"
            response["database_name"] = db.name
            response["collections"] = db.list_collection_names()
        else:
            response["database"] = "❌ Not Available"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Products
@app.get("/products/{product_id}")
def get_product(product_id: str, catalog: Catalog = Depends(get_catalog)):
    return ok(public_product(catalog.get_product(product_id)))


@app.get("/products/{product_id}/reviews")
def list_product_reviews(product_id: str, page: int = 1, limit: int = 10, reviews: ReviewService = Depends(get_review_service)):
    items, total = reviews.list_product_reviews(product_id, page, limit)
    return ok([serialize_doc(r) for r in items], pagination=pagination(page, limit, total))


# Orders
@app.post("/orders", status_code=201)
def create_order(payload: OrderCreate, current_user: dict = Depends(get_current_user), builder: OrderBuilder = Depends(get_order_builder)):
    order = builder.place_order(
        current_user["id"],
        payload.items,
        payload.shipping_address,
        payload.payment_method,
        payload.coupon_code,
    )
    return ok(serialize_doc(order))


@app.get("/orders/my-orders")
def my_orders(page: int = 1, limit: int = config.DEFAULT_PAGE_SIZE, current_user: dict = Depends(get_current_user), store: OrderStore = Depends(get_order_store)):
    items, total = store.list_orders_for_user(current_user["id"], page, limit)
    return ok([serialize_doc(o) for o in items], pagination=pagination(page, limit, total))


@app.get("/orders/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(get_current_user), store: OrderStore = Depends(get_order_store)):
    order = store.get_order(order_id)
    if order["user_id"] != current_user["id"] and not is_admin(current_user):
        raise ForbiddenError("Not authorized to view this order")
    return ok(serialize_doc(order))


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, current_user: dict = Depends(get_current_user), lifecycle: StatusLifecycle = Depends(get_lifecycle)):
    return ok(serialize_doc(lifecycle.cancel_order(order_id, current_user["id"])))


# Admin
@app.get("/admin/orders")
def admin_list_orders(
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = Query(None, alias="paymentStatus"),
    page: int = 1,
    limit: int = 20,
    admin: dict = Depends(require_admin),
    store: OrderStore = Depends(get_order_store),
):
    items, total = store.list_orders(status, payment_status, page, limit)
    return ok([serialize_doc(o) for o in items], pagination=pagination(page, limit, total))


@app.put("/admin/orders/{order_id}")
def admin_update_order(order_id: str, payload: AdminOrderUpdate, admin: dict = Depends(require_admin), lifecycle: StatusLifecycle = Depends(get_lifecycle)):
    order = lifecycle.update_status(
        order_id,
        payload.status,
        admin=admin,
        note=payload.note,
        tracking_number=payload.tracking_number,
        tracking_url=payload.tracking_url,
        estimated_delivery=payload.estimated_delivery,
        notes=payload.notes,
    )
    return ok(serialize_doc(order))


@app.get("/admin/products/low-stock")
def admin_low_stock(limit: int = 10, admin: dict = Depends(require_admin), catalog: Catalog = Depends(get_catalog)):
    return ok([public_product(p) for p in catalog.list_low_stock(limit)])


@app.put("/admin/reviews/{review_id}/approval")
def admin_review_approval(review_id: str, payload: ReviewApproval, admin: dict = Depends(require_admin), reviews: ReviewService = Depends(get_review_service)):
    return ok(serialize_doc(reviews.set_approval(review_id, payload.is_approved)))


# Reviews
@app.post("/reviews", status_code=201)
def create_review(payload: ReviewCreate, current_user: dict = Depends(get_current_user), reviews: ReviewService = Depends(get_review_service)):
    review = reviews.create_review(
        current_user["id"],
        payload.product,
        payload.rating,
        payload.comment,
        title=payload.title,
        images=payload.images,
    )
    return ok(serialize_doc(review))


@app.put("/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, current_user: dict = Depends(get_current_user), reviews: ReviewService = Depends(get_review_service)):
    review = reviews.update_review(review_id, current_user["id"], payload.model_dump(exclude_unset=True))
    return ok(serialize_doc(review))


@app.delete("/reviews/{review_id}")
def delete_review(review_id: str, current_user: dict = Depends(get_current_user), reviews: ReviewService = Depends(get_review_service)):
    reviews.delete_review(review_id, current_user)
    return {"success": True, "message": "Review deleted"}


@app.post("/reviews/{review_id}/helpful")
def mark_review_helpful(review_id: str, current_user: dict = Depends(get_current_user), reviews: ReviewService = Depends(get_review_service)):
    return ok(serialize_doc(reviews.mark_helpful(review_id)))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
