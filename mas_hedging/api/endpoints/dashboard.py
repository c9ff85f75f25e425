from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from mas_hedging.api.deps import get_current_user
from mas_hedging.models import User
from mas_hedging.services import dashboard as dashboard_service
from mas_hedging.services.market_feed import MarketFeed, get_market_feed

router = APIRouter()


@router.get("/dashboard/overview")
def overview(user: User = Depends(get_current_user), feed: MarketFeed = Depends(get_market_feed)) -> Dict[str, Any]:
    return dashboard_service.overview(user.id, feed)


@router.get("/dashboard/performance")
def performance(
    period: str = Query("30d", description="7d|30d|90d|1y"),
    user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    return dashboard_service.performance(user.id, period)


@router.get("/dashboard/risk-metrics")
def risk_metrics(user: User = Depends(get_current_user), feed: MarketFeed = Depends(get_market_feed)) -> Dict[str, Any]:
    return dashboard_service.risk_metrics(user.id, feed)


@router.get("/dashboard/alerts")
def alerts(user: User = Depends(get_current_user), feed: MarketFeed = Depends(get_market_feed)) -> Dict[str, Any]:
    return dashboard_service.alerts(user.id, feed)


@router.get("/dashboard/market-overview", dependencies=[Depends(get_current_user)])
def market_overview(feed: MarketFeed = Depends(get_market_feed)) -> Dict[str, Any]:
    return dashboard_service.market_overview(feed)
