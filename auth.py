"""
User directory: password hashing, bearer tokens and user lookup.
"""
import hashlib
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, get_document, serialize_doc, to_object_id, utcnow
from errors import InvalidState, NotFound, Unauthorized
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRY_DAYS = int(os.getenv("JWT_EXPIRY_DAYS", "7"))
USER_ROLES = ("Admin", "Customer")
security = HTTPBearer()


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=JWT_EXPIRY_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def public_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "name": user["name"],
        "email": user["email"],
        "is_admin": user.get("is_admin", False),
    }


def issue_token(user: dict) -> str:
    return create_token({"id": user["id"], "email": user["email"], "is_admin": user.get("is_admin", False)})


# ----------------------- Directory -----------------------
def get_user(db: Database, user_id: str) -> dict:
    """Resolve a user id, raising NotFound for unknown or malformed ids."""
    user = get_document(db, "user", user_id)
    if not user:
        raise NotFound("User not found")
    return serialize_doc(user)


def find_user_by_email(db: Database, email: str) -> Optional[dict]:
    user = db["user"].find_one({"email": email.lower()})
    return serialize_doc(user) if user else None


def register_user(db: Database, name: str, email: str, password: str, is_admin: bool = False) -> dict:
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise InvalidState("Email already registered")
    user = UserSchema(name=name, email=email, password_hash=hash_password(password), is_admin=is_admin)
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise InvalidState("Email already registered")
    logger.info("Registered user %s (admin=%s)", email, is_admin)
    return {"id": user_id, "name": name, "email": email, "is_admin": is_admin}


def list_users(db):
    users = db["user"].find({}, {"password_hash": 0}).sort([("created_at", 1), ("_id", 1)])
    return [serialize_doc(u) for u in users]


def set_user_role(db: Database, user_id: str, role: str) -> dict:
    """Grant or revoke admin rights. role is "Admin" or "Customer"."""
    if role not in USER_ROLES:
        raise InvalidState("Invalid role. Must be 'Admin' or 'Customer'")
    oid = to_object_id(user_id)
    updated = None
    if oid is not None:
        updated = db["user"].find_one_and_update(
            {"_id": oid},
            {"$set": {"is_admin": role == "Admin", "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
    if not updated:
        raise NotFound("User not found")
    logger.info("User %s role set to %s", updated["email"], role)
    return public_user(serialize_doc(updated))


def authenticate(db: Database, email: str, password: str) -> dict:
    user = find_user_by_email(db, email)
    if not user or user.get("password_hash") != hash_password(password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


# ----------------------- Dependencies -----------------------
def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Database = Depends(get_db),
) -> dict:
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    user = get_document(db, "user", user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return serialize_doc(user)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_admin"):
        raise Unauthorized("Admin only")
    return user
