import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import select

from mas_hedging.core.config import get_settings
from mas_hedging.core.database import session_scope
from mas_hedging.core.errors import AuthError, ConflictError, ValidationError
from mas_hedging.core.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    new_token,
    verify_password,
)
from mas_hedging.models import User
from mas_hedging.services import audit as audit_service

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def check_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def issue_token(user: User) -> str:
    return create_access_token(
        {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
            "plan": user.subscription_plan,
        },
        expires_delta=timedelta(minutes=get_settings().access_token_expire_minutes),
    )


def register_user(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    company: Optional[str] = None,
    phone: Optional[str] = None,
    ip: Optional[str] = None,
) -> User:
    check_password_strength(password)
    email = email.lower()
    password_hash, salt = hash_password(password)
    with session_scope() as session:
        existing = session.execute(select(User.id).where(User.email == email)).first()
        if existing:
            raise ConflictError("User with this email already exists")
        user = User(
            email=email,
            password_hash=password_hash,
            password_salt=salt,
            first_name=first_name,
            last_name=last_name,
            company=company,
            phone=phone,
            verification_token=new_token(),
        )
        session.add(user)
        session.flush()
        session.refresh(user)
    audit_service.log_action("USER_REGISTERED", f"User registered: {email}", user_id=user.id, ip=ip)
    return user


def authenticate_user(email: str, password: str, ip: Optional[str] = None) -> Tuple[str, User]:
    with session_scope() as session:
        user = session.execute(select(User).where(User.email == email.lower())).scalar_one_or_none()
        if not user or not verify_password(password, user.password_hash, user.password_salt):
            raise AuthError("Invalid credentials")
        user.last_login = datetime.utcnow()
        session.flush()
        token = issue_token(user)
    audit_service.log_action("USER_LOGIN", f"User logged in: {user.email}", user_id=user.id, ip=ip)
    return token, user


def verify_email(token: str, ip: Optional[str] = None) -> None:
    with session_scope() as session:
        user = session.execute(select(User).where(User.verification_token == token)).scalar_one_or_none()
        if not user:
            raise ValidationError("Invalid verification token")
        user.is_verified = True
        user.verification_token = None
        user_id, email = user.id, user.email
    audit_service.log_action("EMAIL_VERIFIED", f"Email verified: {email}", user_id=user_id, ip=ip)


def request_password_reset(email: str, ip: Optional[str] = None) -> Optional[str]:
    """Store a reset token for ``email``; returns it, or None for unknown emails.

    Delivery is out of scope, the token is only logged at debug level.
    """
    settings = get_settings()
    with session_scope() as session:
        user = session.execute(select(User).where(User.email == email.lower())).scalar_one_or_none()
        if not user:
            return None
        token = new_token()
        user.reset_token = token
        user.reset_token_expires = datetime.utcnow() + timedelta(minutes=settings.reset_token_expire_minutes)
        user_id = user.id
    audit_service.log_action("PASSWORD_RESET_REQUESTED", f"Password reset requested: {email}", user_id=user_id, ip=ip)
    logger.debug("Password reset token issued for user %s", user_id)
    return token


def reset_password(token: str, new_password: str, ip: Optional[str] = None) -> None:
    check_password_strength(new_password)
    with session_scope() as session:
        user = session.execute(
            select(User).where(User.reset_token == token, User.reset_token_expires > datetime.utcnow())
        ).scalar_one_or_none()
        if not user:
            raise ValidationError("Invalid or expired reset token")
        user.password_hash, user.password_salt = hash_password(new_password)
        user.reset_token = None
        user.reset_token_expires = None
        user_id, email = user.id, user.email
    audit_service.log_action("PASSWORD_RESET_COMPLETED", f"Password reset completed: {email}", user_id=user_id, ip=ip)


def refresh_token(token: str) -> str:
    payload = decode_access_token(token)
    with session_scope() as session:
        user = session.get(User, int(payload.get("sub", 0)))
        if not user:
            raise AuthError("User not found")
        return issue_token(user)
