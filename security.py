from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from config import get_settings
from errors import Unauthenticated, ValidationFailed

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


class Principal(BaseModel):
    id: str
    email: str


def verify_password_policy(password: str) -> None:
    if not (8 <= len(password) <= 64):
        raise ValidationFailed("Password must be 8-64 characters long")


def hash_password(password: str) -> str:
    verify_password_policy(password)
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def principal_from_token(token: Optional[str]) -> Principal:
    """Resolve the session principal from a bearer token, or raise Unauthenticated."""
    if not token:
        raise Unauthenticated()
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise Unauthenticated()
    user_id = payload.get("sub")
    email = payload.get("email")
    if not user_id or not email:
        raise Unauthenticated()
    return Principal(id=str(user_id), email=str(email))


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> Principal:
    return principal_from_token(token)


async def get_optional_user(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Principal]:
    if not token:
        return None
    try:
        return principal_from_token(token)
    except Unauthenticated:
        return None
