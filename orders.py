"""Order listings and the administrative fulfillment state machine.

    pending   -> completed | cancelled
    completed -> shipped | cancelled
    shipped   -> delivered

``delivered`` and ``cancelled`` are terminal. Shipping requires a paid order.
The payment axis (``payment_status``) is never changed here.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from database import get_documents, serialize, to_object_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import ORDER_STATUSES

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": {"completed", "cancelled"},
    "completed": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}
REQUIRES_PAYMENT = {"shipped", "delivered"}


def list_my_orders(db: Database, user: Dict[str, Any]) -> List[Dict[str, Any]]:
    docs = get_documents(db, "order", {"user_id": str(user["_id"])}, sort=[("created_at", -1)])
    return [serialize(o) for o in docs]


def list_orders(db: Database, status: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if status and status != "all":
        query["status"] = status
    return [serialize(o) for o in get_documents(db, "order", query, sort=[("created_at", -1)])]


def get_order(db: Database, user: Dict[str, Any], order_id: str) -> Dict[str, Any]:
    order = db["order"].find_one({"_id": to_object_id(order_id, "Order")})
    # other users' orders are reported as missing
    if not order or (order["user_id"] != str(user["_id"]) and user.get("role") != "admin"):
        raise NotFoundError(f"Order not found with id of {order_id}")
    return serialize(order)


def update_status(db: Database, order_id: str, status: Optional[str]) -> Dict[str, Any]:
    if not status:
        raise ValidationError("Order status is required.")
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Allowed statuses are: {', '.join(ORDER_STATUSES)}")

    oid = to_object_id(order_id, "Order")
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise NotFoundError(f"Order not found with id of {order_id}")

    current = order["status"]
    if status == current:
        return serialize(order)
    if status not in TRANSITIONS[current]:
        raise ValidationError(f"Cannot change order status from {current} to {status}.")
    if status in REQUIRES_PAYMENT and order["payment_status"] != "paid":
        raise ValidationError(f"Order cannot be {status} before payment is confirmed.")

    res = db["order"].update_one({"_id": oid, "status": current}, {"$set": {"status": status, "updated_at": utcnow()}})
    if res.modified_count == 0:
        raise ConflictError("Order status changed concurrently; reload and try again.")
    if status == "cancelled":
        # stock and wallet are left as they are; refunds are handled outside the app
        logger.warning("Order %s cancelled (payment %s); stock and wallet were not restored", order_id, order["payment_status"])
    return serialize(db["order"].find_one({"_id": oid}))
