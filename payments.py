"""Gateway session bridge for orders paid through Paystack.

The client drives the hosted checkout between ``initialize_order_payment``
and ``verify_order_payment``; the server cannot rely on that ordering, so
verification can run at any time, more than once, or never.
"""
import logging
from typing import Any, Dict

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import settings
from database import serialize, to_object_id, utcnow
from errors import (
    ConflictError,
    ForbiddenError,
    GatewayError,
    NotFoundError,
    PriceMismatchError,
    ValidationError,
)
from gateway import PaystackClient, minor_units

logger = logging.getLogger(__name__)


def _owned_order(db: Database, user: Dict[str, Any], order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id, "Order")})
    if not order:
        raise NotFoundError("Order not found.")
    if order["user_id"] != str(user["_id"]):
        raise ForbiddenError("Access denied: Order does not belong to this user.")
    return order


def _mark_failed(db: Database, user_id: str, order_id) -> None:
    """Record a declined charge on a still-pending order; paid orders are never touched."""
    try:
        oid = to_object_id(str(order_id), "Order")
    except NotFoundError:
        return
    db["order"].update_one(
        {"_id": oid, "user_id": user_id, "payment_status": "pending"},
        {"$set": {"payment_status": "failed", "updated_at": utcnow()}},
    )


def initialize_order_payment(db: Database, gateway: PaystackClient, user: Dict[str, Any],
                             order_id: str, amount: float, email: str) -> Dict[str, Any]:
    """Open a hosted checkout for ``order_id``; ``amount`` is in minor units and is rounded to whole kobo."""
    if not amount or not email or not order_id:
        raise ValidationError("Amount, email, and orderId are required.")
    kobo = int(round(amount))
    if kobo <= 0:
        raise ValidationError("Amount must be a positive number.")

    order = _owned_order(db, user, order_id)
    if order["payment_status"] == "paid":
        raise ConflictError("Payment already processed for this order.")
    if kobo != minor_units(order["total_amount"]):
        raise PriceMismatchError("Payment amount does not match the order total.")

    data = gateway.initialize_transaction(
        email,
        kobo,
        metadata={"order_id": str(order["_id"]), "user_id": str(user["_id"])},
        callback_url=settings.PAYSTACK_CALLBACK_URL,
    )
    return {
        "authorization_url": data["authorization_url"],
        "access_code": data.get("access_code"),
        "reference": data["reference"],
    }


def verify_order_payment(db: Database, gateway: PaystackClient, user: Dict[str, Any], reference: str) -> Dict[str, Any]:
    """Confirm a gateway payment and mark its order paid; returns ``{"message", "order"}``."""
    if not reference:
        raise ValidationError("Payment reference is required.")

    data = gateway.verify_transaction(reference)
    metadata = data.get("metadata") or {}
    user_id = str(user["_id"])
    if data.get("status") != "success":
        if data.get("status") == "failed" and metadata.get("user_id") == user_id:
            _mark_failed(db, user_id, metadata.get("order_id"))
        raise GatewayError(data.get("gateway_response") or "Paystack verification failed.")

    if metadata.get("user_id") != user_id:
        logger.warning("Payment %s verified by user %s but belongs to user %s", reference, user_id, metadata.get("user_id"))
        raise ForbiddenError("Access denied: Order does not belong to this user.")

    order = _owned_order(db, user, str(metadata.get("order_id", "")))

    if order["payment_status"] == "paid":
        return {"message": "Payment already processed for this order.", "order": serialize(order)}

    if data.get("amount", 0) < minor_units(order["total_amount"]):
        logger.warning("Payment %s amount %s is below order %s total", reference, data.get("amount"), order["_id"])
        raise GatewayError("Paid amount does not cover the order total.")

    now = utcnow()
    try:
        res = db["order"].update_one(
            {"_id": order["_id"], "payment_status": {"$ne": "paid"}},
            {"$set": {
                "payment_status": "paid",
                "status": "completed",
                "payment_reference": reference,
                "paid_at": now,
                "updated_at": now,
            }},
        )
    except DuplicateKeyError:
        raise ConflictError("This payment reference is already attached to another order.")

    order = db["order"].find_one({"_id": order["_id"]})
    if res.modified_count == 0:
        return {"message": "Payment already processed for this order.", "order": serialize(order)}
    logger.info("Order %s paid with reference %s", order["_id"], reference)
    return {"message": "Payment verified and order updated successfully.", "order": serialize(order)}
