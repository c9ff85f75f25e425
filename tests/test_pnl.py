"""Tests for the position P&L engine."""

from types import SimpleNamespace

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from mas_hedging.core.errors import ValidationError
from mas_hedging.services.pnl import compute_pnl, position_pnl, realized_amount

quantities = st.floats(min_value=0.01, max_value=1_000_000, allow_nan=False, allow_infinity=False)
prices = st.floats(min_value=0.01, max_value=100_000, allow_nan=False, allow_infinity=False)


class TestComputePnL:
    def test_long_gains_when_price_rises(self):
        result = compute_pnl("long", 10, 100, 110)
        assert result.amount == 100
        assert result.percent == 10

    def test_short_gains_when_price_falls(self):
        result = compute_pnl("short", 10, 100, 90)
        assert result.amount == 100
        assert result.percent == 10

    def test_unchanged_price_is_flat(self):
        assert compute_pnl("long", 5, 2450.75, 2450.75).amount == 0

    def test_rejects_unknown_direction(self):
        with pytest.raises(ValidationError):
            compute_pnl("sideways", 10, 100, 110)

    @pytest.mark.parametrize("quantity,entry", [(0, 100), (10, 0), (-1, 100)])
    def test_rejects_non_positive_entry_value(self, quantity, entry):
        with pytest.raises(ValidationError):
            compute_pnl("long", quantity, entry, 110)

    @given(direction=st.sampled_from(["long", "short"]), quantity=quantities, entry=prices, current=prices)
    @settings(max_examples=200)
    def test_percent_is_amount_over_entry_value(self, direction, quantity, entry, current):
        """*For any* position, percent is exactly amount / entry value * 100."""
        result = compute_pnl(direction, quantity, entry, current)
        assert result.percent == result.amount / (quantity * entry) * 100

    @given(quantity=quantities, entry=prices, current=prices)
    @settings(max_examples=200)
    def test_long_and_short_mirror_each_other(self, quantity, entry, current):
        """*For any* price move, the short amount is the negated long amount."""
        long_ = compute_pnl("long", quantity, entry, current)
        short = compute_pnl("short", quantity, entry, current)
        assert short.amount == -long_.amount


class TestPositionHelpers:
    def test_position_pnl_reads_row_fields(self):
        position = SimpleNamespace(direction="short", quantity=2, entry_price=8742.5)
        assert position_pnl(position, 8700.0).amount == pytest.approx(85.0)

    def test_realized_amount_is_rounded_to_cents(self):
        position = SimpleNamespace(direction="long", quantity=3, entry_price=1.111)
        assert realized_amount(position, 2.0) == 2.67
