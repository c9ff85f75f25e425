from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from mas_hedging.services.market_feed import MarketFeed, get_market_feed

router = APIRouter()


@router.get("/market/data", summary="Latest quote per metal")
def market_data(feed: MarketFeed = Depends(get_market_feed)) -> Dict[str, Any]:
    snapshot = feed.snapshot()
    return {
        "data": {metal: quote.to_dict() for metal, quote in sorted(snapshot.quotes.items())},
        "generated_at": snapshot.generated_at.isoformat(),
        "cached": snapshot.cached,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/market/history/{metal}")
def market_history(
    metal: str,
    period: str = Query("24h", description="1h|24h|7d|30d"),
    feed: MarketFeed = Depends(get_market_feed),
) -> Dict[str, Any]:
    return feed.history(metal, period)


@router.get("/market/summary")
def market_summary(feed: MarketFeed = Depends(get_market_feed)) -> Dict[str, Any]:
    return feed.summary()


@router.get("/market/price/{metal}")
def metal_price(metal: str, feed: MarketFeed = Depends(get_market_feed)) -> Dict[str, Any]:
    return feed.latest_tick(metal).to_dict()
