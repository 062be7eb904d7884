"""Bearer-token identity for the storefront API.

Tokens are issued by the accounts service; this module only verifies them
and resolves the caller.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import Depends, Header
from jose import JWTError, jwt
from pymongo.database import Database

import config
from database import get_db, serialize_doc
from errors import AuthenticationError, ForbiddenError


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")


def get_current_user(authorization: Optional[str] = Header(default=None), db: Database = Depends(get_db)):
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Not authenticated")
    token = authorization.split(" ", 1)[1]
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token")
    if not ObjectId.is_valid(user_id):
        raise AuthenticationError("Invalid token")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise AuthenticationError("User not found")
    user = serialize_doc(user)
    # Never expose the password hash
    user.pop("password_hash", None)
    return user


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


def require_admin(current_user: dict = Depends(get_current_user)):
    if not is_admin(current_user):
        raise ForbiddenError("Admins only")
    return current_user
