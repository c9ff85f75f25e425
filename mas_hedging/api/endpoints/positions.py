from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, status

from mas_hedging.api.deps import client_ip, get_current_user
from mas_hedging.models import User
from mas_hedging.schemas.positions import (
    PositionCloseRequest,
    PositionCreateRequest,
    PositionResponse,
    PositionUpdateRequest,
)
from mas_hedging.services import positions as position_service
from mas_hedging.services.market_feed import MarketFeed, get_market_feed

router = APIRouter()


def to_response(position, feed: MarketFeed) -> PositionResponse:
    price = feed.current_price(position.metal_type) if position.status == "active" else None
    return PositionResponse(**position_service.serialize_position(position, price))


@router.get("/positions")
def list_positions(
    status_filter: str = Query("all", alias="status"),
    metal: str = Query("all"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    feed: MarketFeed = Depends(get_market_feed),
) -> Dict[str, Any]:
    return position_service.list_positions(user.id, feed, status_filter, metal, limit, offset)


@router.post("/positions", response_model=PositionResponse, status_code=status.HTTP_201_CREATED)
def create_position(
    payload: PositionCreateRequest,
    user: User = Depends(get_current_user),
    feed: MarketFeed = Depends(get_market_feed),
    ip: str = Depends(client_ip),
) -> PositionResponse:
    position = position_service.create_position(
        user.id,
        feed,
        metal_type=payload.metal_type,
        direction=payload.direction,
        quantity=payload.quantity,
        entry_price=payload.entry_price,
        contract_date=payload.contract_date,
        expiry_date=payload.expiry_date,
        target_price=payload.target_price,
        stop_loss=payload.stop_loss,
        ip=ip,
    )
    return to_response(position, feed)


# static paths first, so they are not captured by /positions/{position_id}
@router.get("/positions/analytics")
def position_analytics(
    period: str = Query("30d", description="7d|30d|90d|1y"),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return position_service.analytics(user.id, period)


@router.get("/positions/recommendations")
def position_recommendations(
    user: User = Depends(get_current_user),
    feed: MarketFeed = Depends(get_market_feed),
) -> Dict[str, Any]:
    return position_service.recommendations(user.id, feed)


@router.get("/positions/{position_id}", response_model=PositionResponse)
def get_position(
    position_id: int,
    user: User = Depends(get_current_user),
    feed: MarketFeed = Depends(get_market_feed),
) -> PositionResponse:
    return to_response(position_service.get_position(user.id, position_id), feed)


@router.put("/positions/{position_id}", response_model=PositionResponse)
def update_position(
    position_id: int,
    payload: PositionUpdateRequest,
    user: User = Depends(get_current_user),
    feed: MarketFeed = Depends(get_market_feed),
    ip: str = Depends(client_ip),
) -> PositionResponse:
    fields = payload.model_dump(exclude_unset=True)
    position = position_service.update_position(user.id, position_id, feed, fields, ip=ip)
    return to_response(position, feed)


@router.post("/positions/{position_id}/close", response_model=PositionResponse)
def close_position(
    position_id: int,
    payload: PositionCloseRequest | None = None,
    user: User = Depends(get_current_user),
    feed: MarketFeed = Depends(get_market_feed),
    ip: str = Depends(client_ip),
) -> PositionResponse:
    close_price = payload.close_price if payload else None
    position = position_service.close_position(user.id, position_id, feed, close_price=close_price, ip=ip)
    return to_response(position, feed)
