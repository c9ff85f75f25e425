from typing import List, Optional

from sqlalchemy import select

from mas_hedging.core.database import session_scope
from mas_hedging.models import AuditLog


def log_action(action: str, detail: str | None = None, user_id: Optional[int] = None, ip: Optional[str] = None):
    with session_scope() as session:
        session.add(AuditLog(user_id=user_id, action=action, detail=detail, ip_address=ip))


def recent_activity(user_id: int, limit: int = 10) -> List[AuditLog]:
    with session_scope() as session:
        stmt = (
            select(AuditLog)
            .where(AuditLog.user_id == user_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit)
        )
        return session.execute(stmt).scalars().all()
