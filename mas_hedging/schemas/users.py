from typing import List, Optional

from pydantic import BaseModel, Field

from mas_hedging.schemas.auth import UserResponse


class ProfileUpdateRequest(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    company: Optional[str] = None
    phone: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class AlertCreateRequest(BaseModel):
    metal_type: str
    alert_type: str = Field(..., description="price_above|price_below|volume_spike")
    target_value: float = Field(..., allow_inf_nan=False)


class AlertUpdateRequest(BaseModel):
    target_value: Optional[float] = Field(None, allow_inf_nan=False)
    is_active: Optional[bool] = None


class AlertResponse(BaseModel):
    id: int
    metal_type: str
    alert_type: str
    target_value: float = Field(..., allow_inf_nan=False)
    is_active: bool
    is_triggered: bool
    triggered_at: Optional[str] = None
    created_at: str
    current_price: Optional[float] = None


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: str
    is_read: bool
    created_at: str


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int


class AdminUserUpdateRequest(BaseModel):
    role: Optional[str] = None
    subscription_plan: Optional[str] = None


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
    limit: int
    offset: int
