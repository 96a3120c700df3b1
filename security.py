import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from pymongo.database import Database

import config
from database import get_db
from errors import Unauthorized

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def token_for(user: dict) -> str:
    return create_access_token({"sub": str(user["_id"]), "email": user["email"]})


class TokenData(BaseModel):
    user_id: Optional[str] = None


def decode_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token")
    user_id = payload.get("sub")
    if user_id is None or not ObjectId.is_valid(user_id):
        raise Unauthorized("Invalid or expired token")
    return TokenData(user_id=user_id)


def resolve_user(db: Database, token: str) -> dict:
    """A presented token must belong to an active account."""
    token_data = decode_token(token)
    user = db["user"].find_one({"_id": ObjectId(token_data.user_id)})
    if user is None or not user.get("is_active", True):
        logger.warning("Rejected token for missing or inactive user %s", token_data.user_id)
        raise Unauthorized("User not found or account deactivated")
    return user


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> dict:
    if not token:
        raise Unauthorized("Access token required")
    return resolve_user(db, token)


async def get_optional_user(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Optional[dict]:
    if not token:
        return None
    return resolve_user(db, token)
