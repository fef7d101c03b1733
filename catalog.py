import math
import re
from typing import Any, Dict, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, serialize, to_object_id, utcnow
from errors import ConflictError, NotFoundError
from schemas import Product, ProductCreate, ProductUpdate


def list_products(db: Database, search: Optional[str] = None, category: Optional[str] = None,
                  min_price: Optional[float] = None, max_price: Optional[float] = None,
                  page: int = 1, limit: int = 12) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        query["category"] = category
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price

    page = max(page, 1)
    limit = max(limit, 1)
    skip = (page - 1) * limit
    total = db["product"].count_documents(query)
    products = [serialize(p) for p in db["product"].find(query).sort([("created_at", -1)]).skip(skip).limit(limit)]
    return {
        "count": len(products),
        "total_products": total,
        "total_pages": math.ceil(total / limit),
        "page": page,
        "limit": limit,
        "products": products,
    }


def find_product(db: Database, product_id: str) -> Optional[Dict[str, Any]]:
    """Stored product document, or None for unknown or malformed ids."""
    try:
        oid = to_object_id(product_id, "Product")
    except NotFoundError:
        return None
    return db["product"].find_one({"_id": oid})


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = find_product(db, product_id)
    if not product:
        raise NotFoundError(f"Product not found with id of {product_id}")
    return serialize(product)


def create_product(db: Database, body: ProductCreate) -> Dict[str, Any]:
    try:
        doc = create_document(db, "product", Product(**body.model_dump()))
    except DuplicateKeyError:
        raise ConflictError(f"A product named {body.name} already exists.")
    return serialize(doc)


def update_product(db: Database, product_id: str, body: ProductUpdate) -> Dict[str, Any]:
    oid = to_object_id(product_id, "Product")
    update = body.model_dump(exclude_none=True)
    update["updated_at"] = utcnow()
    try:
        res = db["product"].update_one({"_id": oid}, {"$set": update})
    except DuplicateKeyError:
        raise ConflictError(f"A product named {body.name} already exists.")
    if res.matched_count == 0:
        raise NotFoundError(f"Product not found with id of {product_id}")
    return serialize(db["product"].find_one({"_id": oid}))


def delete_product(db: Database, product_id: str) -> None:
    res = db["product"].delete_one({"_id": to_object_id(product_id, "Product")})
    if res.deleted_count == 0:
        raise NotFoundError(f"Product not found with id of {product_id}")
