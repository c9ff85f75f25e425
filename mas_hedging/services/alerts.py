import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, update

from mas_hedging.core.database import session_scope
from mas_hedging.core.errors import NotFoundError, ValidationError
from mas_hedging.models import TradingAlert
from mas_hedging.models.alerts import ALERT_TYPES
from mas_hedging.models.market import METAL_TYPES
from mas_hedging.services import notifications as notification_service
from mas_hedging.services.market_feed import Quote

logger = logging.getLogger(__name__)


def list_alerts(user_id: int, active_only: bool = False) -> List[TradingAlert]:
    with session_scope() as session:
        stmt = select(TradingAlert).where(TradingAlert.user_id == user_id)
        if active_only:
            stmt = stmt.where(TradingAlert.is_active.is_(True))
        stmt = stmt.order_by(TradingAlert.created_at.desc(), TradingAlert.id.desc())
        return session.execute(stmt).scalars().all()


def create_alert(user_id: int, metal_type: str, alert_type: str, target_value: float) -> TradingAlert:
    if metal_type not in METAL_TYPES:
        raise ValidationError(f"Unknown metal type: {metal_type}")
    if alert_type not in ALERT_TYPES:
        raise ValidationError("Invalid alert type")
    if target_value <= 0:
        raise ValidationError("Target value must be positive")
    with session_scope() as session:
        alert = TradingAlert(user_id=user_id, metal_type=metal_type, alert_type=alert_type, target_value=target_value)
        session.add(alert)
        session.flush()
        session.refresh(alert)
        return alert


def update_alert(user_id: int, alert_id: int, target_value: Optional[float], is_active: Optional[bool]) -> TradingAlert:
    with session_scope() as session:
        alert = session.execute(
            select(TradingAlert).where(TradingAlert.id == alert_id, TradingAlert.user_id == user_id)
        ).scalar_one_or_none()
        if not alert:
            raise NotFoundError("Alert not found")
        if target_value is not None:
            if target_value <= 0:
                raise ValidationError("Target value must be positive")
            alert.target_value = target_value
        if is_active is not None:
            alert.is_active = is_active
        session.flush()
        session.refresh(alert)
        return alert


def delete_alert(user_id: int, alert_id: int) -> None:
    with session_scope() as session:
        alert = session.execute(
            select(TradingAlert).where(TradingAlert.id == alert_id, TradingAlert.user_id == user_id)
        ).scalar_one_or_none()
        if not alert:
            raise NotFoundError("Alert not found")
        session.delete(alert)


def is_crossed(alert: TradingAlert, quote: Quote) -> bool:
    if alert.alert_type == "price_above":
        return quote.price >= alert.target_value
    if alert.alert_type == "price_below":
        return quote.price <= alert.target_value
    if alert.alert_type == "volume_spike":
        return quote.volume is not None and quote.volume >= alert.target_value
    return False


def evaluate_alerts(user_id: int, quotes: Dict[str, Quote]) -> List[TradingAlert]:
    """Fire every active, untriggered alert whose condition holds.

    The ``triggered_at IS NULL`` guard on the update makes firing idempotent:
    an alert is stamped and notified at most once, even if two requests
    evaluate it concurrently.
    """
    fired: List[TradingAlert] = []
    with session_scope(use_lock=True) as session:
        pending = (
            session.execute(
                select(TradingAlert).where(
                    TradingAlert.user_id == user_id,
                    TradingAlert.is_active.is_(True),
                    TradingAlert.triggered_at.is_(None),
                )
            )
            .scalars()
            .all()
        )
        for alert in pending:
            quote = quotes.get(alert.metal_type)
            if quote is None or not is_crossed(alert, quote):
                continue
            now = datetime.utcnow()
            result = session.execute(
                update(TradingAlert)
                .where(TradingAlert.id == alert.id, TradingAlert.triggered_at.is_(None))
                .values(triggered_at=now)
            )
            if result.rowcount != 1:
                continue
            alert.triggered_at = now
            if alert.alert_type == "volume_spike":
                message = (
                    f"{alert.metal_type} volume reached {quote.volume:,.0f}, "
                    f"above your threshold of {alert.target_value:,.0f}."
                )
            else:
                message = (
                    f"{alert.metal_type} has reached your target price of ${alert.target_value}. "
                    f"Current price: ${quote.price}"
                )
            notification_service.notify(user_id, "Price Alert Triggered", message, "warning", session=session)
            logger.info("Alert %s triggered for user %s", alert.id, user_id)
            fired.append(alert)
    return fired


def serialize_alert(alert: TradingAlert, current_price: Optional[float] = None) -> dict:
    data = {
        "id": alert.id,
        "metal_type": alert.metal_type,
        "alert_type": alert.alert_type,
        "target_value": alert.target_value,
        "is_active": bool(alert.is_active),
        "is_triggered": alert.triggered_at is not None,
        "triggered_at": alert.triggered_at.isoformat() if alert.triggered_at else None,
        "created_at": alert.created_at.isoformat(),
    }
    if current_price is not None:
        data["current_price"] = current_price
    return data
