from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select

from mas_hedging.core.database import session_scope
from mas_hedging.core.errors import NotFoundError, ValidationError
from mas_hedging.core.security import hash_password, verify_password
from mas_hedging.models import User
from mas_hedging.models.auth import SUBSCRIPTION_PLANS, USER_ROLES
from mas_hedging.services import audit as audit_service
from mas_hedging.services.auth_service import check_password_strength


def update_profile(user_id: int, first_name: str, last_name: str, company: Optional[str], phone: Optional[str], ip: Optional[str] = None) -> User:
    with session_scope() as session:
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        user.first_name = first_name
        user.last_name = last_name
        user.company = company
        user.phone = phone
        session.flush()
        session.refresh(user)
    audit_service.log_action("PROFILE_UPDATED", "User profile updated", user_id=user_id, ip=ip)
    return user


def change_password(user_id: int, current_password: str, new_password: str, ip: Optional[str] = None) -> None:
    check_password_strength(new_password)
    with session_scope() as session:
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        if not verify_password(current_password, user.password_hash, user.password_salt):
            raise ValidationError("Current password is incorrect")
        user.password_hash, user.password_salt = hash_password(new_password)
    audit_service.log_action("PASSWORD_CHANGED", "User changed password", user_id=user_id, ip=ip)


def list_users(search: Optional[str] = None, limit: int = 50, offset: int = 0) -> Tuple[List[User], int]:
    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                User.email.like(pattern),
                User.first_name.like(pattern),
                User.last_name.like(pattern),
                User.company.like(pattern),
            )
        )
    with session_scope() as session:
        total = session.execute(select(func.count()).select_from(User).where(*conditions)).scalar_one()
        stmt = select(User).where(*conditions).order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit)
        return session.execute(stmt).scalars().all(), total


def admin_update_user(admin_id: int, user_id: int, role: Optional[str], subscription_plan: Optional[str], ip: Optional[str] = None) -> User:
    if role is None and subscription_plan is None:
        raise ValidationError("No valid fields to update")
    if role is not None and role not in USER_ROLES:
        raise ValidationError("Invalid role")
    if subscription_plan is not None and subscription_plan not in SUBSCRIPTION_PLANS:
        raise ValidationError("Invalid subscription plan")
    with session_scope() as session:
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        if role is not None:
            user.role = role
        if subscription_plan is not None:
            user.subscription_plan = subscription_plan
        session.flush()
        session.refresh(user)
    audit_service.log_action(
        "ADMIN_USER_UPDATE",
        f"Updated user {user_id}: role={role}, plan={subscription_plan}",
        user_id=admin_id,
        ip=ip,
    )
    return user


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "company": user.company,
        "phone": user.phone,
        "role": user.role,
        "subscription_plan": user.subscription_plan,
        "is_verified": bool(user.is_verified),
        "created_at": user.created_at.isoformat(),
        "last_login": user.last_login.isoformat() if user.last_login else None,
    }
