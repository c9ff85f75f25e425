"""Portfolio risk aggregation over a user's active positions.

``value_at_risk`` and ``portfolio_beta`` are simplified placeholders: VaR is a
fixed share of exposure and beta is the exposure-weighted mean of trailing
absolute percent moves. Both are kept as approximations, not statistical
models.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping

from mas_hedging.services.pnl import position_pnl

HIGH_CONCENTRATION = 50.0
MEDIUM_CONCENTRATION = 30.0


@dataclass
class RiskSnapshot:
    total_exposure: float = 0.0
    total_unrealized_pnl: float = 0.0
    metal_exposure: Dict[str, float] = field(default_factory=dict)
    long_exposure: float = 0.0
    short_exposure: float = 0.0
    concentration_risk: float = 0.0
    positions_at_risk: int = 0
    value_at_risk: float = 0.0
    portfolio_beta: float = 0.0
    risk_level: str = "low"

    def to_payload(self) -> Dict[str, Any]:
        total = self.total_exposure
        return {
            "total_exposure": round(total, 2),
            "total_unrealized_pnl": round(self.total_unrealized_pnl, 2),
            "concentration_risk": round(self.concentration_risk, 2),
            "portfolio_beta": round(self.portfolio_beta, 4),
            "value_at_risk": round(self.value_at_risk, 2),
            "positions_at_risk": self.positions_at_risk,
            "metal_exposure": [
                {
                    "metal": metal,
                    "exposure": round(exposure, 2),
                    "percentage": round(exposure / total * 100, 2) if total else 0.0,
                }
                for metal, exposure in self.metal_exposure.items()
            ],
            "position_type_balance": {
                "long": round(self.long_exposure, 2),
                "short": round(self.short_exposure, 2),
                "long_percentage": round(self.long_exposure / total * 100, 2) if total else 0.0,
                "short_percentage": round(self.short_exposure / total * 100, 2) if total else 0.0,
            },
            "risk_level": self.risk_level,
        }


def risk_level(concentration_risk: float) -> str:
    if concentration_risk > HIGH_CONCENTRATION:
        return "high"
    if concentration_risk > MEDIUM_CONCENTRATION:
        return "medium"
    return "low"


def breaches_stop_loss(position, current_price: float) -> bool:
    if position.stop_loss is None:
        return False
    if position.direction == "long":
        return current_price <= position.stop_loss
    return current_price >= position.stop_loss


def build_risk_snapshot(
    positions: Iterable,
    prices: Mapping[str, float],
    volatility: Mapping[str, float],
    var_pct: float = 0.05,
) -> RiskSnapshot:
    """Reduce active positions to a ``RiskSnapshot``.

    ``prices`` holds the fresh quote per metal; a position whose metal has no
    quote is marked at its entry price and never counted as at risk.
    ``volatility`` maps metal to the trailing average absolute percent change.
    """
    snapshot = RiskSnapshot()
    for position in positions:
        exposure = position.quantity * position.entry_price
        quote = prices.get(position.metal_type)
        mark = quote if quote is not None else position.entry_price

        snapshot.total_exposure += exposure
        snapshot.total_unrealized_pnl += position_pnl(position, mark).amount
        snapshot.metal_exposure[position.metal_type] = snapshot.metal_exposure.get(position.metal_type, 0.0) + exposure
        if position.direction == "long":
            snapshot.long_exposure += exposure
        else:
            snapshot.short_exposure += exposure
        if quote is not None and breaches_stop_loss(position, quote):
            snapshot.positions_at_risk += 1

    total = snapshot.total_exposure
    if total > 0:
        snapshot.concentration_risk = max(snapshot.metal_exposure.values()) / total * 100
        snapshot.portfolio_beta = sum(
            (exposure / total) * (volatility.get(metal, 0.0) / 100)
            for metal, exposure in snapshot.metal_exposure.items()
        )
    snapshot.value_at_risk = total * var_pct
    snapshot.risk_level = risk_level(snapshot.concentration_risk)
    return snapshot
