import logging
import math
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update

from mas_hedging.core.config import get_settings
from mas_hedging.core.database import session_scope
from mas_hedging.core.errors import NotFoundError, PositionLimitError, ValidationError
from mas_hedging.models import HedgingPosition, User
from mas_hedging.models.market import METAL_TYPES
from mas_hedging.models.positions import DIRECTIONS, POSITION_STATUSES
from mas_hedging.services import audit as audit_service
from mas_hedging.services import notifications as notification_service
from mas_hedging.services.market_feed import MarketFeed
from mas_hedging.services.pnl import position_pnl, realized_amount

logger = logging.getLogger(__name__)

ANALYTICS_PERIODS = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}
LIST_FILTERS_ALL = "all"
UPDATABLE_STATUSES = ("active", "closed")

RECOMMENDATION_MOVE_PCT = 3.0
EXPOSURE_WARNING_QTY = 1000
MIN_DIVERSIFIED_METALS = 3


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    if period not in ANALYTICS_PERIODS:
        raise ValidationError(f"period must be one of {', '.join(ANALYTICS_PERIODS)}")
    return (now or datetime.utcnow()) - ANALYTICS_PERIODS[period]


def serialize_position(position: HedgingPosition, current_price: Optional[float] = None, today: Optional[date] = None) -> Dict[str, Any]:
    """Position row plus its mark-to-market figures.

    Active positions are revalued at ``current_price`` (entry price when no
    fresh quote exists); closed ones report the P&L fixed at close time.
    """
    today = today or datetime.utcnow().date()
    if position.status == "closed":
        mark = position.close_price if position.close_price is not None else position.entry_price
        amount = position.profit_loss or 0.0
        percent = amount / position.entry_value * 100
    else:
        mark = current_price if current_price is not None else position.entry_price
        amount, percent = position_pnl(position, mark)
    return {
        "id": position.id,
        "metal_type": position.metal_type,
        "direction": position.direction,
        "quantity": position.quantity,
        "entry_price": position.entry_price,
        "target_price": position.target_price,
        "stop_loss": position.stop_loss,
        "status": position.status,
        "contract_date": position.contract_date.isoformat(),
        "expiry_date": position.expiry_date.isoformat(),
        "current_market_price": mark,
        "profit_loss": round(amount, 2),
        "profit_loss_percent": round(percent, 2),
        "days_to_expiry": (position.expiry_date - today).days,
        "close_price": position.close_price,
        "closed_at": position.closed_at.isoformat() if position.closed_at else None,
        "created_at": position.created_at.isoformat(),
        "updated_at": position.updated_at.isoformat() if position.updated_at else None,
    }


def list_positions(
    user_id: int,
    feed: MarketFeed,
    status: str = LIST_FILTERS_ALL,
    metal: str = LIST_FILTERS_ALL,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    if status != LIST_FILTERS_ALL and status not in POSITION_STATUSES:
        raise ValidationError(f"status must be one of all, {', '.join(POSITION_STATUSES)}")
    with session_scope() as session:
        stmt = select(HedgingPosition).where(HedgingPosition.user_id == user_id)
        if status != LIST_FILTERS_ALL:
            stmt = stmt.where(HedgingPosition.status == status)
        if metal != LIST_FILTERS_ALL:
            stmt = stmt.where(HedgingPosition.metal_type == metal)
        stmt = stmt.order_by(HedgingPosition.created_at.desc(), HedgingPosition.id.desc()).offset(offset).limit(limit)
        rows = session.execute(stmt).scalars().all()

    prices = feed.current_prices()
    today = datetime.utcnow().date()
    items = [serialize_position(row, prices.get(row.metal_type), today) for row in rows]
    return {
        "positions": items,
        "summary": {
            "total_positions": len(items),
            "active_positions": sum(1 for item in items if item["status"] == "active"),
            "total_pnl": round(sum(item["profit_loss"] for item in items), 2),
        },
    }


def get_position(user_id: int, position_id: int) -> HedgingPosition:
    with session_scope() as session:
        position = session.execute(
            select(HedgingPosition).where(HedgingPosition.id == position_id, HedgingPosition.user_id == user_id)
        ).scalar_one_or_none()
        if not position:
            raise NotFoundError("Position not found")
        return position


def create_position(
    user_id: int,
    feed: MarketFeed,
    metal_type: str,
    direction: str,
    quantity: float,
    entry_price: float,
    contract_date: date,
    expiry_date: date,
    target_price: Optional[float] = None,
    stop_loss: Optional[float] = None,
    ip: Optional[str] = None,
) -> HedgingPosition:
    settings = get_settings()
    if metal_type not in METAL_TYPES:
        raise ValidationError(f"Unknown metal type: {metal_type}")
    if direction not in DIRECTIONS:
        raise ValidationError('Position type must be either "long" or "short"')
    if not (math.isfinite(quantity) and math.isfinite(entry_price)) or quantity <= 0 or entry_price <= 0:
        raise ValidationError("Quantity and entry price must be positive numbers")
    if expiry_date < contract_date:
        raise ValidationError("Expiry date must be after contract date")

    market_price = feed.snapshot().prices().get(metal_type)
    if market_price and abs(entry_price - market_price) / market_price > settings.price_band_pct:
        raise ValidationError(
            f"Entry price is more than {settings.price_band_pct:.0%} away from current market price"
        )

    with session_scope(use_lock=True) as session:
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        active = session.execute(
            select(func.count())
            .select_from(HedgingPosition)
            .where(HedgingPosition.user_id == user_id, HedgingPosition.status == "active")
        ).scalar_one()
        limit = settings.position_limits.get(user.subscription_plan, 0)
        if active >= limit:
            raise PositionLimitError(
                f"Position limit reached for {user.subscription_plan} plan. Upgrade to create more positions."
            )
        position = HedgingPosition(
            user_id=user_id,
            metal_type=metal_type,
            direction=direction,
            quantity=quantity,
            entry_price=entry_price,
            target_price=target_price,
            stop_loss=stop_loss,
            contract_date=contract_date,
            expiry_date=expiry_date,
        )
        session.add(position)
        session.flush()
        session.refresh(position)
        notification_service.notify(
            user_id,
            "New Position Created",
            f"Your {direction} position for {quantity:g} {metal_type} has been created successfully.",
            "success",
            session=session,
        )

    audit_service.log_action(
        "POSITION_CREATED",
        f"Created {direction} position for {quantity:g} {metal_type} at {entry_price}",
        user_id=user_id,
        ip=ip,
    )
    logger.info("Position %s created for user %s (%s %s)", position.id, user_id, direction, metal_type)
    return position


def update_position(
    user_id: int,
    position_id: int,
    feed: MarketFeed,
    fields: Dict[str, Any],
    ip: Optional[str] = None,
) -> HedgingPosition:
    """Apply ``target_price`` / ``stop_loss`` / ``status`` from ``fields``.

    Only keys present in ``fields`` are touched, so a key mapped to None clears
    the value. ``status="closed"`` closes at the current market price.
    """
    status = fields.get("status")
    if status is not None and status not in UPDATABLE_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(UPDATABLE_STATUSES)}")
    changes = {key: fields[key] for key in ("target_price", "stop_loss") if key in fields}
    if not changes and status is None:
        raise ValidationError("No valid fields to update")

    with session_scope(use_lock=True) as session:
        position = session.execute(
            select(HedgingPosition).where(HedgingPosition.id == position_id, HedgingPosition.user_id == user_id)
        ).scalar_one_or_none()
        if not position:
            raise NotFoundError("Position not found")
        if position.status == "closed":
            raise ValidationError("Cannot modify closed position")
        for key, value in changes.items():
            setattr(position, key, value)
        session.flush()
        session.refresh(position)

    audit_service.log_action("POSITION_UPDATED", f"Updated position {position_id}", user_id=user_id, ip=ip)
    if status == "closed":
        return close_position(user_id, position_id, feed, ip=ip)
    return position


def close_position(
    user_id: int,
    position_id: int,
    feed: MarketFeed,
    close_price: Optional[float] = None,
    ip: Optional[str] = None,
) -> HedgingPosition:
    """Close an active position, fixing its realized P&L.

    The write is a single UPDATE guarded by ``status = 'active'``; when two
    closes race, exactly one matches a row and the other gets NotFoundError.
    """
    if close_price is not None and (not math.isfinite(close_price) or close_price <= 0):
        raise ValidationError("Close price must be positive")
    # read before taking the write lock; a feed refresh needs it too
    prices = feed.current_prices() if close_price is None else {}

    with session_scope(use_lock=True) as session:
        position = session.execute(
            select(HedgingPosition).where(
                HedgingPosition.id == position_id,
                HedgingPosition.user_id == user_id,
                HedgingPosition.status == "active",
            )
        ).scalar_one_or_none()
        if not position:
            raise NotFoundError("Active position not found")

        price = close_price if close_price is not None else prices.get(position.metal_type, position.entry_price)
        amount = realized_amount(position, price)
        now = datetime.utcnow()
        result = session.execute(
            update(HedgingPosition)
            .where(HedgingPosition.id == position_id, HedgingPosition.status == "active")
            .values(status="closed", profit_loss=amount, close_price=price, closed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError("Active position not found")
        session.refresh(position)

        outcome = "profit" if amount >= 0 else "loss"
        notification_service.notify(
            user_id,
            "Position Closed",
            f"Your {position.direction} position for {position.metal_type} has been closed "
            f"with a {outcome} of ${abs(amount):.2f}.",
            "success" if amount >= 0 else "warning",
            session=session,
        )

    audit_service.log_action(
        "POSITION_CLOSED", f"Closed position {position_id} with P&L: {amount:.2f}", user_id=user_id, ip=ip
    )
    logger.info("Position %s closed for user %s, P&L %.2f", position_id, user_id, amount)
    return position


def _trade_stats(rows: List[HedgingPosition]) -> Dict[str, Any]:
    closed = [row.profit_loss or 0.0 for row in rows if row.status == "closed"]
    winners = sum(1 for pnl in closed if pnl > 0)
    return {
        "total_positions": len(rows),
        "closed_positions": len(closed),
        "active_positions": sum(1 for row in rows if row.status == "active"),
        "winning_positions": winners,
        "win_rate": round(winners / len(closed) * 100, 2) if closed else 0.0,
        "total_pnl": round(sum(closed), 2),
        "avg_pnl": round(sum(closed) / len(closed), 2) if closed else 0.0,
        "best_trade": round(max(closed), 2) if closed else 0.0,
        "worst_trade": round(min(closed), 2) if closed else 0.0,
    }


def analytics(user_id: int, period: str = "30d") -> Dict[str, Any]:
    since = period_start(period)
    with session_scope() as session:
        rows = (
            session.execute(
                select(HedgingPosition).where(
                    HedgingPosition.user_id == user_id, HedgingPosition.created_at > since
                )
            )
            .scalars()
            .all()
        )

    groups: Dict[tuple, List[HedgingPosition]] = defaultdict(list)
    for row in rows:
        groups[(row.metal_type, row.direction)].append(row)

    by_metal = []
    for (metal, direction), members in sorted(groups.items()):
        stats = _trade_stats(members)
        stats.pop("active_positions")
        by_metal.append({"metal_type": metal, "direction": direction, **stats})
    return {"period": period, "overall": _trade_stats(rows), "by_metal": by_metal}


def recommendations(user_id: int, feed: MarketFeed) -> Dict[str, Any]:
    with session_scope() as session:
        rows = session.execute(
            select(HedgingPosition.metal_type, HedgingPosition.direction, func.sum(HedgingPosition.quantity))
            .where(HedgingPosition.user_id == user_id, HedgingPosition.status == "active")
            .group_by(HedgingPosition.metal_type, HedgingPosition.direction)
        ).all()

    directions: Dict[str, set] = defaultdict(set)
    quantities: Dict[str, float] = defaultdict(float)
    for metal, direction, quantity in rows:
        directions[metal].add(direction)
        quantities[metal] += quantity or 0.0

    items: List[Dict[str, Any]] = []
    for metal, quote in sorted(feed.current_quotes().items()):
        change = quote.change_percent or 0.0
        if change > RECOMMENDATION_MOVE_PCT and "short" not in directions[metal]:
            items.append(
                {
                    "type": "hedge_risk",
                    "metal": metal,
                    "action": "Consider short position",
                    "reason": f"{metal} is up {change:.2f}% - consider hedging against potential reversal",
                    "urgency": "medium",
                    "current_price": quote.price,
                }
            )
        elif change < -RECOMMENDATION_MOVE_PCT and "long" not in directions[metal]:
            items.append(
                {
                    "type": "opportunity",
                    "metal": metal,
                    "action": "Consider long position",
                    "reason": f"{metal} is down {abs(change):.2f}% - potential buying opportunity",
                    "urgency": "medium",
                    "current_price": quote.price,
                }
            )
        if quantities.get(metal, 0.0) > EXPOSURE_WARNING_QTY:
            items.append(
                {
                    "type": "risk_management",
                    "metal": metal,
                    "action": "Consider reducing exposure",
                    "reason": f"High exposure to {metal} - consider diversifying or reducing position size",
                    "urgency": "low",
                    "current_price": quote.price,
                }
            )

    if rows and len(quantities) < MIN_DIVERSIFIED_METALS:
        items.append(
            {
                "type": "diversification",
                "metal": "portfolio",
                "action": "Diversify across more metals",
                "reason": "Consider spreading risk across different metal types for better portfolio balance",
                "urgency": "low",
                "current_price": None,
            }
        )

    return {
        "recommendations": items,
        "portfolio_summary": {
            "active_positions": len(rows),
            "metals_covered": len(quantities),
            "total_quantity": sum(quantities.values()),
        },
    }
