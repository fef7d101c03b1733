import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import cart
import catalog
import checkout
import orders
import payments
import settings
import wallet
from database import db as default_db, ensure_indexes, get_db
from errors import StoreError
from gateway import PaystackClient, get_gateway
from schemas import (
    AuthResponse,
    CartAddRequest,
    CartMergeRequest,
    CartOut,
    CartQuantityRequest,
    ForgotPasswordRequest,
    LoginRequest,
    OrderCreate,
    OrderEnvelope,
    OrderList,
    OrderStatusUpdate,
    PaymentSession,
    PaystackInitializeRequest,
    ProductCreate,
    ProductEnvelope,
    ProductPage,
    ProductUpdate,
    ReferenceRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TopUpRequest,
    UpdateDetailsRequest,
    UpdatePasswordRequest,
    UserEnvelope,
    WalletBalance,
)
from security import get_current_user, require_admin

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(default_db)
    except PyMongoError as e:
        logger.warning("Could not ensure MongoDB indexes: %s", e)
    yield


# FastAPI app
app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.FRONTEND_ORIGIN.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Errors: every failure is {"success": false, "error": "..."}
def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})

@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.message)

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"][1:])
        messages.append(f"{field}: {err['msg']}" if field else err["msg"])
    return error_response(status.HTTP_400_BAD_REQUEST, ", ".join(messages))

@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return error_response(status.HTTP_409_CONFLICT, "Duplicate field value entered.")

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server Error")


# Auth
@app.post("/api/auth/register", response_model=AuthResponse, status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    return accounts.register(db, payload)

@app.post("/api/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    return accounts.login(db, payload.email, payload.password)

@app.get("/api/auth/me", response_model=UserEnvelope)
def get_me(current_user: dict = Depends(get_current_user)):
    return {"data": accounts.public_user(current_user)}

@app.get("/api/auth/logout")
def logout():
    # tokens are stateless; the client discards its copy
    return {"success": True, "data": {}}

@app.put("/api/auth/updatedetails", response_model=UserEnvelope)
def update_details(payload: UpdateDetailsRequest, current_user: dict = Depends(get_current_user),
                   db: Database = Depends(get_db)):
    return {"data": accounts.update_details(db, current_user, payload)}

@app.put("/api/auth/updatepassword", response_model=AuthResponse)
def update_password(payload: UpdatePasswordRequest, current_user: dict = Depends(get_current_user),
                    db: Database = Depends(get_db)):
    return accounts.update_password(db, current_user, payload)

@app.post("/api/auth/forgotpassword")
def forgot_password(payload: ForgotPasswordRequest, request: Request, db: Database = Depends(get_db)):
    accounts.forgot_password(db, payload.email, str(request.base_url))
    return {"success": True, "data": "Password reset link issued"}

@app.put("/api/auth/resetpassword/{reset_token}", response_model=AuthResponse)
def reset_password(reset_token: str, payload: ResetPasswordRequest, db: Database = Depends(get_db)):
    return accounts.reset_password(db, reset_token, payload.password)


# Products
@app.get("/api/products", response_model=ProductPage)
def list_products(search: Optional[str] = None, category: Optional[str] = None,
                  min_price: Optional[float] = Query(None, alias="minPrice"),
                  max_price: Optional[float] = Query(None, alias="maxPrice"),
                  page: int = 1, limit: int = 12, db: Database = Depends(get_db)):
    return catalog.list_products(db, search, category, min_price, max_price, page, limit)

@app.get("/api/products/{product_id}", response_model=ProductEnvelope)
def get_product(product_id: str, db: Database = Depends(get_db)):
    return {"data": catalog.get_product(db, product_id)}

@app.post("/api/products", response_model=ProductEnvelope, status_code=201)
def create_product(body: ProductCreate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return {"data": catalog.create_product(db, body)}

@app.put("/api/products/{product_id}", response_model=ProductEnvelope)
def update_product(product_id: str, body: ProductUpdate, admin: dict = Depends(require_admin),
                   db: Database = Depends(get_db)):
    return {"data": catalog.update_product(db, product_id, body)}

@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"success": True, "data": {}}


# Cart
@app.get("/api/cart", response_model=CartOut)
def get_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart.get_cart(db, current_user)

@app.post("/api/cart", response_model=CartOut)
def add_to_cart(payload: CartAddRequest, current_user: dict = Depends(get_current_user),
                db: Database = Depends(get_db)):
    return cart.add_item(db, current_user, payload.product_id, payload.quantity)

@app.post("/api/cart/merge", response_model=CartOut)
def merge_guest_cart(payload: CartMergeRequest, current_user: dict = Depends(get_current_user),
                     db: Database = Depends(get_db)):
    return cart.merge_guest_items(db, current_user, payload.items)

@app.put("/api/cart/{product_id}", response_model=CartOut)
def update_cart_item(product_id: str, payload: CartQuantityRequest, current_user: dict = Depends(get_current_user),
                     db: Database = Depends(get_db)):
    return cart.set_item_quantity(db, current_user, product_id, payload.quantity)

@app.delete("/api/cart/{product_id}", response_model=CartOut)
def remove_cart_item(product_id: str, current_user: dict = Depends(get_current_user),
                     db: Database = Depends(get_db)):
    return cart.remove_item(db, current_user, product_id)

@app.delete("/api/cart", response_model=CartOut)
def clear_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return cart.clear_cart(db, current_user)


# Orders
@app.post("/api/orders", response_model=OrderEnvelope, status_code=201)
def create_order(payload: OrderCreate, current_user: dict = Depends(get_current_user),
                 db: Database = Depends(get_db)):
    return {"order": checkout.place_order(db, current_user, payload)}

@app.get("/api/orders/my-orders", response_model=OrderList)
def my_orders(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    result = orders.list_my_orders(db, current_user)
    return {"count": len(result), "orders": result}

@app.get("/api/orders", response_model=OrderList)
def all_orders(order_status: Optional[str] = Query(None, alias="status"), admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    result = orders.list_orders(db, order_status)
    return {"count": len(result), "orders": result}

@app.get("/api/orders/{order_id}", response_model=OrderEnvelope)
def order_detail(order_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"order": orders.get_order(db, current_user, order_id)}

@app.put("/api/orders/{order_id}/status", response_model=OrderEnvelope)
def update_order_status(order_id: str, payload: OrderStatusUpdate, admin: dict = Depends(require_admin),
                        db: Database = Depends(get_db)):
    order = orders.update_status(db, order_id, payload.status)
    return {"message": "Order status updated successfully", "order": order}


# Wallet
@app.post("/api/wallet/initialize-add-funds", response_model=PaymentSession)
def initialize_add_funds(payload: TopUpRequest, current_user: dict = Depends(get_current_user),
                         gateway: PaystackClient = Depends(get_gateway)):
    return wallet.initialize_top_up(gateway, current_user, payload.amount)

@app.post("/api/wallet/verify-add-funds", response_model=WalletBalance)
def verify_add_funds(payload: ReferenceRequest, current_user: dict = Depends(get_current_user),
                     db: Database = Depends(get_db), gateway: PaystackClient = Depends(get_gateway)):
    result = wallet.verify_top_up(db, gateway, current_user, payload.reference)
    return {
        "message": f"Wallet successfully topped up with {result['amount']:.2f} NGN!",
        "wallet_balance": result["wallet_balance"],
    }

@app.get("/api/wallet/balance", response_model=WalletBalance)
def wallet_balance(current_user: dict = Depends(get_current_user)):
    return {"wallet_balance": wallet.get_balance(current_user)}


# Paystack (order payments)
@app.post("/api/paystack/initialize", response_model=PaymentSession)
def paystack_initialize(payload: PaystackInitializeRequest, current_user: dict = Depends(get_current_user),
                        db: Database = Depends(get_db), gateway: PaystackClient = Depends(get_gateway)):
    return payments.initialize_order_payment(db, gateway, current_user, payload.order_id, payload.amount, payload.email)

@app.post("/api/paystack/verify", response_model=OrderEnvelope)
def paystack_verify(payload: ReferenceRequest, current_user: dict = Depends(get_current_user),
                    db: Database = Depends(get_db), gateway: PaystackClient = Depends(get_gateway)):
    return payments.verify_order_payment(db, gateway, current_user, payload.reference)


# Health + test
@app.get("/")
def root():
    return {"message": "Storefront API running"}

@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response: Dict[str, Any] = {
        "backend": "✅ Running",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if settings.DATABASE_NAME else "❌ Not Set",
        "paystack": "✅ Configured" if settings.PAYSTACK_SECRET_KEY else "⚠️ Missing PAYSTACK_SECRET_KEY",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
    except PyMongoError as e:
        response["error"] = str(e)[:120]
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
