from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from mas_hedging.core.database import session_scope
from mas_hedging.core.errors import NotFoundError, ValidationError
from mas_hedging.models import Notification
from mas_hedging.models.alerts import NOTIFICATION_TYPES


def notify(
    user_id: int,
    title: str,
    message: str,
    type_: str = "info",
    session: Optional[Session] = None,
) -> None:
    """Store an in-app notification, inside ``session`` when one is given."""
    if type_ not in NOTIFICATION_TYPES:
        raise ValidationError(f"Unknown notification type: {type_}")
    item = Notification(user_id=user_id, title=title, message=message, type=type_)
    if session is not None:
        session.add(item)
        return
    with session_scope() as own:
        own.add(item)


def list_notifications(user_id: int, limit: int = 20, offset: int = 0) -> List[Notification]:
    with session_scope() as session:
        stmt = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return session.execute(stmt).scalars().all()


def unread_count(user_id: int) -> int:
    with session_scope() as session:
        return session.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        ).scalar_one()


def mark_read(user_id: int, notification_id: int) -> None:
    with session_scope() as session:
        result = session.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .values(is_read=True)
        )
        if result.rowcount == 0:
            raise NotFoundError("Notification not found")


def serialize_notification(item: Notification) -> dict:
    return {
        "id": item.id,
        "title": item.title,
        "message": item.message,
        "type": item.type,
        "is_read": bool(item.is_read),
        "created_at": item.created_at.isoformat(),
    }
