import logging
import re

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, utcnow
from errors import DomainConflict, Unauthorized, envelope
from schemas import User as UserSchema
from security import get_current_user, hash_password, token_for, verify_password
from serializers import user_to_public

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterBody(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    batch: str = Field(..., pattern=r"^\d{4}$", description="Graduation year")
    role: str = Field(..., min_length=1, max_length=100)

    @field_validator("name", "role", "batch", mode="before")
    @classmethod
    def strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        if not (re.search(r"[a-z]", v) and re.search(r"[A-Z]", v) and re.search(r"\d", v)):
            raise ValueError("Password must contain at least one lowercase letter, one uppercase letter, and one number")
        return v


class LoginBody(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(body: RegisterBody, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": body.email}):
        raise DomainConflict("User already exists with this email")

    user_doc = UserSchema(
        name=body.name,
        email=body.email,
        password=hash_password(body.password),
        batch=body.batch,
        role=body.role,
        last_login=utcnow(),
    )
    try:
        user = create_document(db, "user", user_doc)
    except DuplicateKeyError:
        raise DomainConflict("User already exists with this email")

    logger.info("Registered user %s", user["_id"])
    return envelope(
        True,
        "User registered successfully",
        data={"token": token_for(user), "user": user_to_public(user)},
    )


@router.post("/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": body.email})
    if not user or not verify_password(body.password, user.get("password", "")):
        logger.warning("Failed login for %s", body.email)
        raise Unauthorized("Invalid email or password")
    if not user.get("is_active", True):
        raise Unauthorized("Account is deactivated")

    now = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now
    return envelope(True, "Login successful", data={"token": token_for(user), "user": user_to_public(user)})


@router.get("/me")
def me(current: dict = Depends(get_current_user)):
    return envelope(True, data={"user": user_to_public(current)})
