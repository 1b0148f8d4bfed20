from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import get_db
from errors import NotFound, Unauthenticated, ValidationFailed
from helpers import envelope, serialize, stamp_new, to_obj_id
from schemas import User as UserSchema
from security import Principal, create_access_token, get_current_user, hash_password, verify_password

router = APIRouter()


# Request/Response Models
class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


def sanitize(user: Dict[str, Any]) -> Dict[str, Any]:
    d = {k: v for k, v in user.items() if k != "password_hash"}
    return serialize(d)


def issue_token(user: Dict[str, Any]) -> str:
    return create_access_token({"sub": str(user["_id"]), "email": user["email"]})


@router.post("/signup", response_model=TokenResponse)
def signup(payload: SignupRequest, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ValidationFailed("Email already registered")
    user_doc = stamp_new(UserSchema(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        role="user",
    ).model_dump())
    try:
        user_doc["_id"] = db["user"].insert_one(user_doc).inserted_id
    except DuplicateKeyError:
        raise ValidationFailed("Email already registered")
    body = TokenResponse(access_token=issue_token(user_doc), user=sanitize(user_doc))
    return JSONResponse(status_code=201, content=body.model_dump())


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise Unauthenticated("Invalid email or password")
    return TokenResponse(access_token=issue_token(user), user=sanitize(user))


@router.get("/me")
def me(current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    user = db["user"].find_one({"_id": to_obj_id(current_user.id, "user ID")})
    if not user:
        raise NotFound("User not found")
    return envelope(sanitize(user))
