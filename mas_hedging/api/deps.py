from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mas_hedging.core.database import session_scope
from mas_hedging.core.errors import AuthError, ForbiddenError
from mas_hedging.core.security import decode_access_token
from mas_hedging.models import User

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> User:
    if not credentials:
        raise AuthError("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthError("Invalid token")

    with session_scope() as session:
        user = session.get(User, user_id)
        if not user:
            raise AuthError("User not found")
        return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise ForbiddenError("Admin access required")
    return user


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None
