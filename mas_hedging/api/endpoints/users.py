from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from mas_hedging.api.deps import client_ip, get_current_user, require_admin
from mas_hedging.models import User
from mas_hedging.schemas.auth import MessageResponse, UserResponse
from mas_hedging.schemas.users import (
    AdminUserUpdateRequest,
    AlertCreateRequest,
    AlertResponse,
    AlertUpdateRequest,
    ChangePasswordRequest,
    NotificationListResponse,
    NotificationResponse,
    ProfileUpdateRequest,
    UserListResponse,
)
from mas_hedging.services import alerts as alert_service
from mas_hedging.services import notifications as notification_service
from mas_hedging.services import users as user_service
from mas_hedging.services.market_feed import MarketFeed, get_market_feed

router = APIRouter()


@router.get("/users/profile", response_model=UserResponse)
def get_profile(user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse(**user_service.serialize_user(user))


@router.put("/users/profile", response_model=UserResponse)
def update_profile(
    payload: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    ip: str = Depends(client_ip),
) -> UserResponse:
    updated = user_service.update_profile(
        user.id, payload.first_name, payload.last_name, payload.company, payload.phone, ip=ip
    )
    return UserResponse(**user_service.serialize_user(updated))


@router.put("/users/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    ip: str = Depends(client_ip),
) -> MessageResponse:
    user_service.change_password(user.id, payload.current_password, payload.new_password, ip=ip)
    return MessageResponse(message="Password changed successfully")


@router.get("/users/notifications", response_model=NotificationListResponse)
def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
) -> NotificationListResponse:
    items = notification_service.list_notifications(user.id, limit, offset)
    return NotificationListResponse(
        notifications=[NotificationResponse(**notification_service.serialize_notification(item)) for item in items],
        unread_count=notification_service.unread_count(user.id),
    )


@router.put("/users/notifications/{notification_id}/read", response_model=MessageResponse)
def mark_notification_read(notification_id: int, user: User = Depends(get_current_user)) -> MessageResponse:
    notification_service.mark_read(user.id, notification_id)
    return MessageResponse(message="Notification marked as read")


@router.get("/users/alerts", response_model=List[AlertResponse])
def list_alerts(
    user: User = Depends(get_current_user),
    feed: MarketFeed = Depends(get_market_feed),
) -> List[AlertResponse]:
    prices = feed.current_prices()
    return [
        AlertResponse(**alert_service.serialize_alert(alert, prices.get(alert.metal_type)))
        for alert in alert_service.list_alerts(user.id)
    ]


@router.post("/users/alerts", response_model=AlertResponse, status_code=201)
def create_alert(payload: AlertCreateRequest, user: User = Depends(get_current_user)) -> AlertResponse:
    alert = alert_service.create_alert(user.id, payload.metal_type, payload.alert_type, payload.target_value)
    return AlertResponse(**alert_service.serialize_alert(alert))


@router.put("/users/alerts/{alert_id}", response_model=AlertResponse)
def update_alert(alert_id: int, payload: AlertUpdateRequest, user: User = Depends(get_current_user)) -> AlertResponse:
    alert = alert_service.update_alert(user.id, alert_id, payload.target_value, payload.is_active)
    return AlertResponse(**alert_service.serialize_alert(alert))


@router.delete("/users/alerts/{alert_id}", response_model=MessageResponse)
def delete_alert(alert_id: int, user: User = Depends(get_current_user)) -> MessageResponse:
    alert_service.delete_alert(user.id, alert_id)
    return MessageResponse(message="Alert deleted successfully")


@router.get("/users/admin/users", response_model=UserListResponse)
def admin_list_users(
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _: User = Depends(require_admin),
) -> UserListResponse:
    users, total = user_service.list_users(search, limit, offset)
    return UserListResponse(
        users=[UserResponse(**user_service.serialize_user(item)) for item in users],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.put("/users/admin/users/{user_id}", response_model=UserResponse)
def admin_update_user(
    user_id: int,
    payload: AdminUserUpdateRequest,
    admin: User = Depends(require_admin),
    ip: str = Depends(client_ip),
) -> UserResponse:
    updated = user_service.admin_update_user(admin.id, user_id, payload.role, payload.subscription_plan, ip=ip)
    return UserResponse(**user_service.serialize_user(updated))
