import base64
import hashlib
import hmac
import json
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from pymongo.database import Database

import settings
from database import get_db, to_object_id
from errors import ForbiddenError, UnauthorizedError

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

# HS256 tokens signed with JWT_SECRET; header is fixed, so only the payload varies
_JWT_HEADER = base64.urlsafe_b64encode(b'{"alg":"HS256","typ":"JWT"}').rstrip(b"=").decode()


def _sign(signing_input: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), signing_input.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def jwt_encode(payload: dict, secret: str) -> str:
    body = json.dumps(payload, default=str, separators=(",", ":")).encode()
    signing_input = f"{_JWT_HEADER}.{base64.urlsafe_b64encode(body).rstrip(b'=').decode()}"
    return f"{signing_input}.{_sign(signing_input, secret)}"


def jwt_decode(token: str, secret: str) -> dict:
    """Return the payload of a valid, unexpired token; raise ValueError otherwise."""
    signing_input, _, signature = token.rpartition(".")
    if not signing_input or not hmac.compare_digest(_sign(signing_input, secret).encode(), signature.encode()):
        raise ValueError("Invalid signature")
    encoded = signing_input.split(".")[-1]
    # binascii.Error, JSONDecodeError and UnicodeDecodeError are all ValueErrors
    payload = json.loads(base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)))
    if not isinstance(payload, dict):
        raise ValueError("Malformed payload")
    if "exp" in payload and datetime.now(timezone.utc).timestamp() > payload["exp"]:
        raise ValueError("Token expired")
    return payload


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = int(expire.timestamp())
    return jwt_encode(to_encode, settings.JWT_SECRET)


# Salted PBKDF2, stored as "<salt>$<hex digest>"
PBKDF2_ROUNDS = 100_000

def hash_password(password: str, salt: Optional[str] = None) -> str:
    salt = salt or os.urandom(16).hex()
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS).hex()
    return f"{salt}${digest}"

def verify_password(password: str, hashed: str) -> bool:
    if "$" not in hashed:
        return False
    salt, _ = hashed.split("$", 1)
    return hmac.compare_digest(hash_password(password, salt), hashed)


def make_reset_token() -> Tuple[str, str]:
    """Return (plain token for the user, sha256 digest to store)."""
    token = secrets.token_hex(20)
    return token, hash_reset_token(token)

def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# Dependencies
def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Dict[str, Any]:
    try:
        payload = jwt_decode(token, settings.JWT_SECRET)
        user_id = payload.get("sub")
        if not user_id:
            raise ValueError("No sub")
    except ValueError:
        raise UnauthorizedError("Not authorized to access this route")
    user = db["user"].find_one({"_id": to_object_id(user_id, "User")})
    if not user:
        raise UnauthorizedError("Not authorized to access this route")
    return user


def require_admin(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if current_user.get("role") != "admin":
        raise ForbiddenError(f"User role {current_user.get('role')} is not authorized to access this route")
    return current_user
