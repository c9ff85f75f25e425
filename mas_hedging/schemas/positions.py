from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class PositionCreateRequest(BaseModel):
    metal_type: str
    direction: str = Field(..., description="long|short")
    quantity: float = Field(..., allow_inf_nan=False)
    entry_price: float = Field(..., allow_inf_nan=False)
    contract_date: date
    expiry_date: date
    target_price: Optional[float] = Field(None, allow_inf_nan=False)
    stop_loss: Optional[float] = Field(None, allow_inf_nan=False)


class PositionUpdateRequest(BaseModel):
    target_price: Optional[float] = Field(None, allow_inf_nan=False)
    stop_loss: Optional[float] = Field(None, allow_inf_nan=False)
    status: Optional[str] = Field(None, description="active|closed")


class PositionCloseRequest(BaseModel):
    close_price: Optional[float] = Field(None, allow_inf_nan=False)


class PositionResponse(BaseModel):
    id: int
    metal_type: str
    direction: str
    quantity: float = Field(..., allow_inf_nan=False)
    entry_price: float = Field(..., allow_inf_nan=False)
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    status: str
    contract_date: str
    expiry_date: str
    current_market_price: float
    profit_loss: float
    profit_loss_percent: float
    days_to_expiry: int
    close_price: Optional[float] = None
    closed_at: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None
