"""Identity store: registration, login and federated sign-in."""
import logging

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import create_document, object_id, serialize_doc
from errors import Conflict, Unauthorized
from schemas import LoginBody, RegisterBody, User
from security import create_token, hash_password, unusable_password, verify_password

logger = logging.getLogger(__name__)

PUBLIC_FIELDS = {"password_hash": 0}


def _auth_payload(user_id: str, username: str, email: str, settings: Settings) -> dict:
    return {
        "id": user_id,
        "username": username,
        "email": email,
        "token": create_token(user_id, settings),
    }


def register(db: Database, body: RegisterBody, settings: Settings) -> dict:
    email = body.email.lower()
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise Conflict("User already exists")
    user = User(
        username=body.username,
        email=email,
        password_hash=hash_password(body.password),
        is_admin=False,
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise Conflict("User already exists")
    logger.info("Registered user %s", user_id)
    return _auth_payload(user_id, user.username, email, settings)


def login(db: Database, body: LoginBody, settings: Settings) -> dict:
    user = db["user"].find_one({"email": body.email.lower()})
    if not user or not verify_password(body.password, user.get("password_hash")):
        raise Unauthorized("Invalid credentials")
    return _auth_payload(str(user["_id"]), user["username"], user["email"], settings)


def get_user(db: Database, user_id) -> dict:
    return db["user"].find_one({"_id": user_id}, PUBLIC_FIELDS)


def upsert_federated_user(db: Database, google_id: str, email: str, display_name: str) -> dict:
    """Link a provider identity to the account with the same email, creating one on first sight."""
    email = email.lower()
    user = db["user"].find_one({"email": email}, PUBLIC_FIELDS)
    if user:
        if not user.get("google_id"):
            db["user"].update_one({"_id": user["_id"]}, {"$set": {"google_id": google_id}})
            user["google_id"] = google_id
        return serialize_doc(user)

    doc = User(
        username=display_name or email.split("@")[0],
        email=email,
        password_hash=hash_password(unusable_password()),
        is_admin=False,
    ).model_dump()
    doc["google_id"] = google_id
    user_id = create_document(db, "user", doc)
    logger.info("Created user %s from federated login", user_id)
    return serialize_doc(get_user(db, object_id(user_id)))
