import hashlib
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Tuple

from jose import ExpiredSignatureError, JWTError, jwt

from mas_hedging.core.config import get_settings
from mas_hedging.core.errors import AuthError


def hash_password(password: str, salt: str | None = None) -> Tuple[str, str]:
    """Return (hash, salt) using SHA256 with salt."""
    salt = salt or os.urandom(16).hex()
    digest = hashlib.sha256((salt + password).encode("utf-8")).hexdigest()
    return digest, salt


def verify_password(password: str, hashed: str, salt: str) -> bool:
    computed, _ = hash_password(password, salt)
    return computed == hashed


def new_token() -> str:
    """Opaque one-time token for email verification and password resets."""
    return uuid.uuid4().hex


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        raise AuthError("Token expired")
    except JWTError:
        raise AuthError("Invalid token")
