"""
Checkout: turn a client-asserted cart into an order.

Every check runs before any write. The writes (stock reservations, wallet
debit, order insert) are each single-document conditional updates; when a
later write fails, the compensators recorded by the earlier ones run in
reverse order so stock and balance end up where they started.
"""
import logging
from typing import Any, Callable, Dict, List

from pymongo.database import Database
from pymongo.errors import PyMongoError

import wallet
from cart import clear_cart
from catalog import find_product
from database import create_document, serialize, utcnow
from errors import (
    InsufficientFundsError,
    NotFoundError,
    OutOfStockError,
    PriceMismatchError,
    ValidationError,
)
from schemas import WALLET_REFERENCE, Order, OrderCreate, OrderItem

logger = logging.getLogger(__name__)

PAYMENT_METHOD_ALIASES = {"paystack": "paystack", "gateway": "paystack", "wallet": "wallet"}


def normalize_payment_method(value: str) -> str:
    method = PAYMENT_METHOD_ALIASES.get((value or "paystack").lower())
    if method is None:
        raise ValidationError(f"Unsupported payment method: {value}")
    return method


def reserve_stock(db: Database, product_id, quantity: int) -> bool:
    """Decrement stock only while enough remains. Returns False when the floor check fails."""
    res = db["product"].update_one(
        {"_id": product_id, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
    )
    return res.modified_count == 1


def release_stock(db: Database, product_id, quantity: int) -> None:
    db["product"].update_one({"_id": product_id}, {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}})


def _validate(db: Database, user: Dict[str, Any], body: OrderCreate, method: str) -> List[Dict[str, Any]]:
    if not body.items:
        raise ValidationError("No order items provided.")
    if not body.total_amount or body.total_amount <= 0:
        raise ValidationError("Total amount must be positive.")
    if not body.shipping_address.is_complete():
        raise ValidationError("Please provide complete shipping address details.")

    products = []
    for item in body.items:
        product = find_product(db, item.product_id)
        label = item.name or item.product_id
        if not product:
            raise NotFoundError(f"Product not found: {label}")
        if product.get("stock", 0) < item.quantity:
            raise OutOfStockError(f"Insufficient stock for {product['name']}. Only {product.get('stock', 0)} available.")
        if round(product["price"], 2) != round(item.price, 2):
            raise PriceMismatchError(f"Price mismatch for product: {label}. Please refresh your cart.")
        products.append(product)

    items_total = round(sum(i.price * i.quantity for i in body.items), 2)
    if items_total != round(body.total_amount, 2):
        raise PriceMismatchError("Order total does not match the item prices. Please refresh your cart.")

    if method == "wallet" and user.get("wallet_balance", 0) < body.total_amount:
        raise InsufficientFundsError("Insufficient wallet balance. Please add funds or choose another payment method.")
    return products


def _compensate(compensators: List[Callable[[], None]]) -> None:
    failed = 0
    for undo in reversed(compensators):
        try:
            undo()
        except PyMongoError:
            failed += 1
            logger.exception("Checkout compensation step failed")
    logger.warning("Checkout rolled back %d step(s), %d failed", len(compensators), failed)


def place_order(db: Database, user: Dict[str, Any], body: OrderCreate) -> Dict[str, Any]:
    method = normalize_payment_method(body.payment_method)
    products = _validate(db, user, body, method)
    total = round(body.total_amount, 2)

    compensators: List[Callable[[], None]] = []
    try:
        for item, product in zip(body.items, products):
            if not reserve_stock(db, product["_id"], item.quantity):
                raise OutOfStockError(f"Insufficient stock for {product['name']}. Please refresh your cart.")
            compensators.append(lambda pid=product["_id"], qty=item.quantity: release_stock(db, pid, qty))

        order = Order(
            user_id=str(user["_id"]),
            items=[OrderItem(
                product_id=str(product["_id"]),
                name=item.name or product["name"],
                image_url=item.image_url or product.get("image_url"),
                price=item.price,
                quantity=item.quantity,
            ) for item, product in zip(body.items, products)],
            shipping_address=body.shipping_address,
            total_amount=total,
            payment_method=method,
        ).model_dump()

        if method == "wallet":
            if not wallet.debit(db, user["_id"], total):
                raise InsufficientFundsError("Insufficient wallet balance. Please add funds or choose another payment method.")
            compensators.append(lambda: wallet.refund(db, user["_id"], total))
            order.update({
                "payment_status": "paid",
                "status": "completed",
                "payment_reference": WALLET_REFERENCE,
                "paid_at": utcnow(),
            })

        doc = create_document(db, "order", order)
    except Exception:
        if compensators:
            _compensate(compensators)
        raise

    logger.info("Order %s placed by user %s via %s (%.2f)", doc["_id"], user["_id"], method, total)
    try:
        clear_cart(db, user)
    except PyMongoError:
        logger.warning("Could not clear cart of user %s after order %s", user["_id"], doc["_id"], exc_info=True)
    return serialize(doc)
