from mas_hedging.models.auth import User, AuditLog
from mas_hedging.models.positions import HedgingPosition
from mas_hedging.models.market import MarketTick
from mas_hedging.models.alerts import TradingAlert, Notification

__all__ = [
    "User",
    "AuditLog",
    "HedgingPosition",
    "MarketTick",
    "TradingAlert",
    "Notification",
]
