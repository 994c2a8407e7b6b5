from datetime import timedelta
from typing import Optional

from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import settings
from ..utils.timezone import utc_now

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _encode(data: dict, expires_delta: timedelta, token_type: str) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": utc_now() + expires_delta, "type": token_type})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(
        data,
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
        "access"
    )


def create_refresh_token(data: dict) -> str:
    return _encode(data, timedelta(minutes=settings.refresh_token_expire_minutes), "refresh")


def verify_token(token: str, token_type: Optional[str] = None) -> Optional[str]:
    """Return the subject (user email) of a valid token, None otherwise."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if token_type and payload.get("type") != token_type:
        return None
    return payload.get("sub")
