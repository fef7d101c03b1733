import logging
from datetime import timedelta
from typing import Any, Dict

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import settings
from database import create_document, utcnow
from errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from schemas import (
    RegisterRequest,
    UpdateDetailsRequest,
    UpdatePasswordRequest,
    User,
)
from security import create_access_token, hash_password, hash_reset_token, make_reset_token, verify_password

logger = logging.getLogger(__name__)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "username": user["username"],
        "email": user["email"],
        "role": user.get("role", "user"),
        "wallet_balance": round(user.get("wallet_balance", 0), 2),
    }


def token_response(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"token": create_access_token({"sub": str(user["_id"]), "role": user.get("role", "user")}), "user": public_user(user)}


def register(db: Database, payload: RegisterRequest) -> Dict[str, Any]:
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ConflictError("User already exists with this email")
    if db["user"].find_one({"username": payload.username}):
        raise ConflictError("Username is already taken")
    user = User(username=payload.username, email=email, password_hash=hash_password(payload.password))
    try:
        doc = create_document(db, "user", user)
    except DuplicateKeyError:
        raise ConflictError("User already exists with this email")
    logger.info("Registered user %s", doc["_id"])
    return token_response(doc)


def login(db: Database, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise UnauthorizedError("Invalid credentials")
    return token_response(user)


def update_details(db: Database, user: Dict[str, Any], payload: UpdateDetailsRequest) -> Dict[str, Any]:
    update: Dict[str, Any] = {}
    if payload.username is not None:
        update["username"] = payload.username
    if payload.email is not None:
        update["email"] = payload.email.lower()
    if not update:
        return public_user(user)
    update["updated_at"] = utcnow()
    try:
        db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise ConflictError("Username or email is already in use")
    return public_user(db["user"].find_one({"_id": user["_id"]}))


def update_password(db: Database, user: Dict[str, Any], payload: UpdatePasswordRequest) -> Dict[str, Any]:
    if not verify_password(payload.current_password, user.get("password_hash", "")):
        raise UnauthorizedError("Password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": utcnow()}},
    )
    return token_response(db["user"].find_one({"_id": user["_id"]}))


def forgot_password(db: Database, email: str, base_url: str) -> str:
    """Issue a reset token. Mail delivery is out of scope, so the reset URL is logged."""
    user = db["user"].find_one({"email": email.lower()})
    if not user:
        raise NotFoundError("There is no user with that email")
    token, digest = make_reset_token()
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_password_token": digest,
            "reset_password_expire": utcnow() + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES),
        }},
    )
    logger.info("Password reset URL for user %s: %s/resetpassword/%s", user["_id"], base_url.rstrip("/"), token)
    return token


def reset_password(db: Database, token: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({
        "reset_password_token": hash_reset_token(token),
        "reset_password_expire": {"$gt": utcnow()},
    })
    if not user:
        raise ValidationError("Invalid token or token has expired")
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": hash_password(password), "updated_at": utcnow()},
            "$unset": {"reset_password_token": "", "reset_password_expire": ""},
        },
    )
    return token_response(db["user"].find_one({"_id": user["_id"]}))
