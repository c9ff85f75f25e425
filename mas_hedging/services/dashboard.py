"""Read-side aggregation for the dashboard pages.

Every view reads positions through the same ``MarketFeed`` snapshot as the
positions listing, so figures on different pages agree within one cache
window.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, List

from sqlalchemy import select

from mas_hedging.core.config import get_settings
from mas_hedging.core.database import session_scope
from mas_hedging.models import HedgingPosition
from mas_hedging.services import alerts as alert_service
from mas_hedging.services import audit as audit_service
from mas_hedging.services import notifications as notification_service
from mas_hedging.services.market_feed import MarketFeed
from mas_hedging.services.pnl import position_pnl
from mas_hedging.services.positions import period_start
from mas_hedging.services.risk import build_risk_snapshot

PERFORMANCE_BUCKETS = {
    "7d": "%Y-%m-%d",
    "30d": "%Y-%m-%d",
    "90d": "%Y-%W",
    "1y": "%Y-%m",
}
EXPIRY_HORIZON_DAYS = 7
RECENT_NOTIFICATIONS = 5
BULLISH_AVG_CHANGE = 1.0
BEARISH_AVG_CHANGE = -1.0


def _user_positions(user_id: int, *conditions) -> List[HedgingPosition]:
    with session_scope() as session:
        stmt = select(HedgingPosition).where(HedgingPosition.user_id == user_id, *conditions)
        return session.execute(stmt).scalars().all()


def overview(user_id: int, feed: MarketFeed) -> Dict[str, Any]:
    positions = _user_positions(user_id)
    active = [p for p in positions if p.status == "active"]
    closed = [p for p in positions if p.status == "closed"]
    prices = feed.current_prices()

    unrealized = sum(position_pnl(p, prices.get(p.metal_type, p.entry_price)).amount for p in active)
    realized = sum(p.profit_loss or 0.0 for p in closed)
    winners = sum(1 for p in closed if (p.profit_loss or 0.0) > 0)

    distribution: Dict[str, Dict[str, Any]] = OrderedDict()
    for p in sorted(active, key=lambda item: item.metal_type):
        row = distribution.setdefault(
            p.metal_type,
            {"metal_type": p.metal_type, "position_count": 0, "total_value": 0.0, "long_quantity": 0.0, "short_quantity": 0.0},
        )
        row["position_count"] += 1
        row["total_value"] += p.entry_value
        row[f"{p.direction}_quantity"] += p.quantity
    for row in distribution.values():
        row["total_value"] = round(row["total_value"], 2)

    return {
        "summary": {
            "total_positions": len(positions),
            "active_positions": len(active),
            "closed_positions": len(closed),
            "total_unrealized_pnl": round(unrealized, 2),
            "total_realized_pnl": round(realized, 2),
            "win_rate": round(winners / len(closed) * 100, 2) if closed else 0.0,
            "unread_notifications": notification_service.unread_count(user_id),
        },
        "portfolio_distribution": list(distribution.values()),
        "recent_activity": [
            {"action": item.action, "detail": item.detail, "created_at": item.created_at.isoformat()}
            for item in audit_service.recent_activity(user_id)
        ],
    }


def performance(user_id: int, period: str = "30d") -> Dict[str, Any]:
    """Realized P&L bucketed by creation date, with a running total."""
    since = period_start(period)
    fmt = PERFORMANCE_BUCKETS[period]
    positions = _user_positions(user_id, HedgingPosition.created_at > since)

    buckets: Dict[str, Dict[str, Any]] = {}
    for p in positions:
        key = p.created_at.strftime(fmt)
        bucket = buckets.setdefault(key, {"period": key, "realized_pnl": 0.0, "trades_closed": 0, "total_trades": 0})
        bucket["total_trades"] += 1
        if p.status == "closed":
            bucket["trades_closed"] += 1
            bucket["realized_pnl"] += p.profit_loss or 0.0

    cumulative = 0.0
    data = []
    for key in sorted(buckets):
        bucket = buckets[key]
        cumulative += bucket["realized_pnl"]
        data.append(
            {
                **bucket,
                "realized_pnl": round(bucket["realized_pnl"], 2),
                "cumulative_pnl": round(cumulative, 2),
            }
        )
    return {
        "period": period,
        "data": data,
        "summary": {
            "total_periods": len(data),
            "final_cumulative_pnl": round(cumulative, 2),
            "total_trades": sum(row["total_trades"] for row in data),
            "total_closed_trades": sum(row["trades_closed"] for row in data),
        },
    }


def risk_metrics(user_id: int, feed: MarketFeed) -> Dict[str, Any]:
    settings = get_settings()
    active = _user_positions(user_id, HedgingPosition.status == "active")
    snapshot = build_risk_snapshot(
        active,
        feed.current_prices(),
        feed.average_volatility(settings.volatility_window_days),
        var_pct=settings.var_pct,
    )
    return snapshot.to_payload()


def alerts(user_id: int, feed: MarketFeed) -> Dict[str, Any]:
    quotes = feed.current_quotes()
    fired = alert_service.evaluate_alerts(user_id, quotes)
    active_alerts = alert_service.list_alerts(user_id, active_only=True)
    recent = notification_service.list_notifications(user_id, limit=RECENT_NOTIFICATIONS)

    today = datetime.utcnow().date()
    horizon = today + timedelta(days=EXPIRY_HORIZON_DAYS)
    expiring = sorted(
        _user_positions(user_id, HedgingPosition.status == "active", HedgingPosition.expiry_date <= horizon),
        key=lambda p: (p.expiry_date, p.id),
    )

    return {
        "trading_alerts": [
            alert_service.serialize_alert(
                alert, quotes[alert.metal_type].price if alert.metal_type in quotes else None
            )
            for alert in active_alerts
        ],
        "triggered_alerts": len(fired),
        "recent_notifications": [notification_service.serialize_notification(item) for item in recent],
        "expiring_positions": [
            {
                "id": p.id,
                "metal_type": p.metal_type,
                "direction": p.direction,
                "quantity": p.quantity,
                "expiry_date": p.expiry_date.isoformat(),
                "days_until_expiry": (p.expiry_date - today).days,
            }
            for p in expiring
        ],
        "summary": {
            "active_alerts": sum(1 for alert in active_alerts if alert.triggered_at is None),
            "triggered_now": len(fired),
            "unread_notifications": notification_service.unread_count(user_id),
            "positions_expiring_this_week": len(expiring),
        },
    }


def market_trend(avg_change: float) -> str:
    if avg_change > BULLISH_AVG_CHANGE:
        return "bullish"
    if avg_change < BEARISH_AVG_CHANGE:
        return "bearish"
    return "neutral"


def market_overview(feed: MarketFeed) -> Dict[str, Any]:
    quotes = [quote for _, quote in sorted(feed.current_quotes().items())]
    changes = [q.change_percent or 0.0 for q in quotes]
    gainers = [q for q in quotes if (q.change_percent or 0.0) > 0]
    losers = [q for q in quotes if (q.change_percent or 0.0) < 0]
    avg_change = sum(changes) / len(changes) if changes else 0.0
    top_gainer = max(gainers, key=lambda q: q.change_percent) if gainers else None
    top_loser = min(losers, key=lambda q: q.change_percent) if losers else None

    def mover(quote):
        if quote is None:
            return None
        return {"metal": quote.metal, "change": round(quote.change_percent, 2), "price": round(quote.price, 2)}

    return {
        "market_data": [
            {
                "metal_type": q.metal,
                "current_price": round(q.price, 2),
                "change_percent": round(q.change_percent or 0.0, 2),
                "volume": q.volume,
            }
            for q in quotes
        ],
        "market_summary": {
            "total_metals": len(quotes),
            "total_volume": round(sum(q.volume or 0 for q in quotes)),
            "gainers": len(gainers),
            "losers": len(losers),
            "unchanged": len(quotes) - len(gainers) - len(losers),
            "avg_change": round(avg_change, 2),
            "market_trend": market_trend(avg_change),
        },
        "top_movers": {"top_gainer": mover(top_gainer), "top_loser": mover(top_loser)},
        "last_updated": datetime.utcnow().isoformat(),
    }
