"""In-app wallet: a single balance per user, funded through Paystack top-ups.

A top-up reference is credited at most once. The ``wallet_transaction``
collection holds one row per credited reference behind a unique index, and
the user's ``processed_references`` list records the same reference in the
balance write itself.
"""
import logging
from typing import Any, Dict

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, utcnow
from errors import ConflictError, ForbiddenError, GatewayError, NotFoundError, ValidationError
from gateway import PaystackClient, minor_units
from schemas import WalletTransaction

logger = logging.getLogger(__name__)

TOPUP_PURPOSE = "wallet_topup"


def get_balance(user: Dict[str, Any]) -> float:
    return round(user.get("wallet_balance", 0), 2)


def debit(db: Database, user_id, amount: float) -> bool:
    """Take ``amount`` from the balance only if it covers it. Returns False when it does not."""
    res = db["user"].update_one(
        {"_id": user_id, "wallet_balance": {"$gte": amount}},
        {"$inc": {"wallet_balance": -amount}, "$set": {"updated_at": utcnow()}},
    )
    return res.modified_count == 1


def refund(db: Database, user_id, amount: float) -> None:
    db["user"].update_one({"_id": user_id}, {"$inc": {"wallet_balance": amount}, "$set": {"updated_at": utcnow()}})


def initialize_top_up(gateway: PaystackClient, user: Dict[str, Any], amount: float) -> Dict[str, Any]:
    if amount is None or amount <= 0:
        raise ValidationError("Please provide a valid amount to add to your wallet.")
    data = gateway.initialize_transaction(
        user["email"],
        minor_units(amount),
        metadata={"purpose": TOPUP_PURPOSE, "userId": str(user["_id"])},
    )
    return {
        "authorization_url": data["authorization_url"],
        "access_code": data.get("access_code"),
        "reference": data["reference"],
    }


def verify_top_up(db: Database, gateway: PaystackClient, user: Dict[str, Any], reference: str) -> Dict[str, Any]:
    if not reference:
        raise ValidationError("Transaction reference is required.")

    data = gateway.verify_transaction(reference)
    if data.get("status") != "success":
        raise GatewayError(data.get("gateway_response") or "Paystack transaction not successful or not found.")

    user_id = str(user["_id"])
    metadata = data.get("metadata") or {}
    if metadata.get("purpose") != TOPUP_PURPOSE or metadata.get("userId") != user_id:
        logger.warning("Top-up %s metadata %r does not belong to user %s", reference, metadata, user_id)
        raise ForbiddenError("Invalid transaction metadata or unauthorized access.")

    if reference in user.get("processed_references", []):
        raise ConflictError("This transaction has already been credited to your wallet.")

    amount = round(data["amount"] / 100, 2)
    try:
        create_document(db, "wallet_transaction", WalletTransaction(reference=reference, user_id=user_id, amount=amount))
    except DuplicateKeyError:
        raise ConflictError("This transaction has already been credited to your wallet.")

    try:
        res = db["user"].update_one(
            {"_id": user["_id"], "processed_references": {"$ne": reference}},
            {
                "$inc": {"wallet_balance": amount},
                "$push": {"processed_references": reference},
                "$set": {"updated_at": utcnow()},
            },
        )
    except PyMongoError:
        # a failed credit releases its ledger row so the reference can be verified again
        logger.exception("Crediting top-up %s to user %s failed; releasing the reference", reference, user_id)
        db["wallet_transaction"].delete_one({"reference": reference})
        raise
    if res.modified_count == 0:
        db["wallet_transaction"].delete_one({"reference": reference})
        if db["user"].find_one({"_id": user["_id"]}) is None:
            raise NotFoundError("User not found.")
        raise ConflictError("This transaction has already been credited to your wallet.")

    balance = db["user"].find_one({"_id": user["_id"]})["wallet_balance"]
    logger.info("Credited %.2f to wallet of user %s (reference %s)", amount, user_id, reference)
    return {"amount": amount, "wallet_balance": round(balance, 2)}
