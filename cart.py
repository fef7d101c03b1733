"""Per-user server-side cart.

Lines carry a snapshot of the product's name, image and price taken when the
line is first added. Adding more of an existing line only bumps its quantity;
checkout is where prices are revalidated. The total is computed on every read
and never stored.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from catalog import find_product
from database import utcnow
from errors import NotFoundError, OutOfStockError, StoreError, ValidationError
from schemas import Cart, CartItem, GuestCartItem

logger = logging.getLogger(__name__)


def cart_total(items: List[Dict[str, Any]]) -> float:
    return round(sum(i["price"] * i["quantity"] for i in items), 2)


def _view(cart: Optional[Dict[str, Any]], user_id: str, **extra) -> Dict[str, Any]:
    items = cart.get("items", []) if cart else []
    return {
        "id": str(cart["_id"]) if cart else None,
        "user_id": user_id,
        "items": items,
        "total_amount": cart_total(items),
        **extra,
    }


def _save_items(db: Database, user_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
    now = utcnow()
    doc = Cart(user_id=user_id, items=items).model_dump()
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": doc["items"], "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )
    return db["cart"].find_one({"user_id": user_id})


def _find_line(items: List[Dict[str, Any]], product_id: str) -> int:
    for index, item in enumerate(items):
        if item["product_id"] == product_id:
            return index
    return -1


def get_cart(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    user_id = str(user["_id"])
    return _view(db["cart"].find_one({"user_id": user_id}), user_id)


def add_item(db: Database, user: Dict[str, Any], product_id: str, quantity: int) -> Dict[str, Any]:
    if not product_id or quantity is None or quantity <= 0:
        raise ValidationError("Product ID and a valid quantity (greater than 0) are required.")

    product = find_product(db, product_id)
    if not product:
        raise NotFoundError("Product not found.")
    stock = product.get("stock", 0)
    user_id = str(user["_id"])
    product_id = str(product["_id"])
    cart = db["cart"].find_one({"user_id": user_id})
    items = list(cart.get("items", [])) if cart else []

    index = _find_line(items, product_id)
    if index == -1 and stock < quantity:
        raise OutOfStockError(f"Not enough stock for {product['name']}. Available: {stock}")
    if index > -1:
        in_cart = items[index]["quantity"]
        if stock < in_cart + quantity:
            raise OutOfStockError(
                f"Cannot add more {product['name']}. Max available to add: {max(stock - in_cart, 0)}."
            )
        items[index] = {**items[index], "quantity": in_cart + quantity}
    else:
        items.append(CartItem(
            product_id=product_id,
            name=product["name"],
            image_url=product.get("image_url"),
            price=product["price"],
            quantity=quantity,
        ).model_dump())

    return _view(_save_items(db, user_id, items), user_id)


def set_item_quantity(db: Database, user: Dict[str, Any], product_id: str, quantity: Optional[int]) -> Dict[str, Any]:
    if quantity is None or quantity < 0:
        raise ValidationError("A valid quantity (0 or greater) is required.")

    user_id = str(user["_id"])
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        raise NotFoundError("Cart not found for this user.")
    items = list(cart.get("items", []))
    index = _find_line(items, product_id)
    if index == -1:
        raise NotFoundError("Product not found in cart to update.")

    if quantity == 0:
        items.pop(index)
    else:
        product = find_product(db, product_id)
        if not product:
            raise NotFoundError("Original product not found in database.")
        if product.get("stock", 0) < quantity:
            raise OutOfStockError(f"Not enough stock for {product['name']}. Available: {product.get('stock', 0)}.")
        items[index] = {**items[index], "quantity": quantity}

    return _view(_save_items(db, user_id, items), user_id)


def remove_item(db: Database, user: Dict[str, Any], product_id: str) -> Dict[str, Any]:
    user_id = str(user["_id"])
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        raise NotFoundError("Cart not found for this user.")
    items = [i for i in cart.get("items", []) if i["product_id"] != product_id]
    if len(items) == len(cart.get("items", [])):
        raise NotFoundError("Product not found in cart to remove.")
    return _view(_save_items(db, user_id, items), user_id, message="Product removed from cart successfully.")


def clear_cart(db: Database, user: Dict[str, Any]) -> Dict[str, Any]:
    user_id = str(user["_id"])
    res = db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": utcnow()}})
    if res.matched_count == 0:
        return _view(None, user_id, message="Cart is already empty or not found.")
    return _view(db["cart"].find_one({"user_id": user_id}), user_id, message="Cart cleared successfully.")


def merge_guest_items(db: Database, user: Dict[str, Any], items: List[GuestCartItem]) -> Dict[str, Any]:
    """Replay guest-cart lines through add_item; lines that fail are skipped and reported."""
    skipped = []
    for item in items:
        try:
            add_item(db, user, item.product_id, item.quantity)
        except StoreError as e:
            logger.info("Skipping guest cart line %s for user %s: %s", item.product_id, user["_id"], e.message)
            skipped.append({"product_id": item.product_id, "name": item.name, "error": e.message})
    view = get_cart(db, user)
    view["skipped"] = skipped
    return view
