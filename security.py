"""
Credentials and access checks

Passwords are stored as salted PBKDF2 hashes. Bearer tokens are HS256 JWTs
carrying the user id.
"""
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings
from database import object_id, serialize_doc
from errors import Forbidden, NotFound, Unauthorized

PBKDF2_ROUNDS = 120_000
TOKEN_COOKIE = "token"

security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash or "$" not in password_hash:
        return False
    salt, expected = password_hash.split("$", 1)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS)
    return hmac.compare_digest(digest.hex(), expected)


def unusable_password() -> str:
    """Random secret for accounts that only sign in through a federated provider."""
    return secrets.token_urlsafe(24)


def create_token(user_id: str, settings: Settings) -> str:
    exp = datetime.now(timezone.utc) + timedelta(hours=settings.token_ttl_hours)
    return jwt.encode({"id": user_id, "exp": exp}, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Not authorized, token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Not authorized, token failed")


def is_owner_or_admin(actor_id, owner_id, actor_is_admin: bool) -> bool:
    """Allow when the actor owns the resource or holds the admin flag."""
    if actor_is_admin:
        return True
    return owner_id is not None and str(actor_id) == str(owner_id)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """Resolve the bearer token (or session cookie) to the stored user."""
    token = credentials.credentials if credentials else request.cookies.get(TOKEN_COOKIE)
    if not token:
        raise Unauthorized("Not authorized, no token")
    payload = decode_token(token, request.app.state.settings)
    user_id = payload.get("id")
    if not user_id:
        raise Unauthorized("Invalid token payload")
    try:
        _id = object_id(user_id, "User")
    except NotFound:
        raise Unauthorized("Invalid token payload")
    user = request.app.state.db["user"].find_one({"_id": _id}, {"password_hash": 0})
    if not user:
        raise Unauthorized("Not authorized, user not found")
    return serialize_doc(user)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_admin"):
        raise Forbidden("Not authorized as an admin")
    return user
