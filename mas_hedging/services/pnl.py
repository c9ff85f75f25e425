from typing import NamedTuple

from mas_hedging.core.errors import ValidationError


class PnL(NamedTuple):
    amount: float
    percent: float


def compute_pnl(direction: str, quantity: float, entry_price: float, current_price: float) -> PnL:
    """Profit/loss of a position marked at ``current_price``.

    Long positions gain when the price rises, short positions when it falls.
    ``percent`` is the amount relative to the entry value, in percent.
    """
    entry_value = quantity * entry_price
    if entry_value <= 0:
        raise ValidationError("Quantity and entry price must be positive numbers")
    current_value = quantity * current_price
    if direction == "long":
        amount = current_value - entry_value
    elif direction == "short":
        amount = entry_value - current_value
    else:
        raise ValidationError('Position type must be either "long" or "short"')
    return PnL(amount=amount, percent=amount / entry_value * 100)


def position_pnl(position, current_price: float) -> PnL:
    return compute_pnl(position.direction, position.quantity, position.entry_price, current_price)


def realized_amount(position, close_price: float) -> float:
    """P&L written to the row when the position is closed (rounded to cents)."""
    return round(position_pnl(position, close_price).amount, 2)
