"""Tests for the portfolio risk aggregator."""

from types import SimpleNamespace

import pytest

from mas_hedging.services.risk import breaches_stop_loss, build_risk_snapshot, risk_level


def make_position(metal="copper", direction="long", quantity=10.0, entry_price=100.0, stop_loss=None):
    return SimpleNamespace(
        metal_type=metal,
        direction=direction,
        quantity=quantity,
        entry_price=entry_price,
        stop_loss=stop_loss,
    )


class TestRiskLevel:
    @pytest.mark.parametrize(
        "concentration,expected",
        [(51, "high"), (50, "medium"), (31, "medium"), (30, "low"), (10, "low"), (0, "low")],
    )
    def test_thresholds_are_exclusive(self, concentration, expected):
        assert risk_level(concentration) == expected


class TestStopLoss:
    def test_long_breaches_at_or_below_stop(self):
        position = make_position(stop_loss=95)
        assert breaches_stop_loss(position, 95)
        assert not breaches_stop_loss(position, 96)

    def test_short_breaches_at_or_above_stop(self):
        position = make_position(direction="short", stop_loss=105)
        assert breaches_stop_loss(position, 105)
        assert not breaches_stop_loss(position, 104)

    def test_without_stop_never_breaches(self):
        assert not breaches_stop_loss(make_position(), 1)


class TestBuildRiskSnapshot:
    def test_empty_portfolio(self):
        snapshot = build_risk_snapshot([], {}, {})
        assert snapshot.total_exposure == 0
        assert snapshot.concentration_risk == 0
        assert snapshot.portfolio_beta == 0
        assert snapshot.value_at_risk == 0
        assert snapshot.risk_level == "low"

    def test_single_metal_is_fully_concentrated(self):
        positions = [make_position(quantity=3.3, entry_price=8742.51), make_position(quantity=1.7, entry_price=8801.1)]
        snapshot = build_risk_snapshot(positions, {"copper": 8800.0}, {})
        assert snapshot.concentration_risk == 100
        assert snapshot.risk_level == "high"

    def test_exposure_split_and_unrealized_pnl(self):
        positions = [
            make_position("copper", "long", 10, 100),
            make_position("zinc", "short", 20, 50),
            make_position("tin", "long", 5, 200),
        ]
        prices = {"copper": 110.0, "zinc": 45.0, "tin": 190.0}
        snapshot = build_risk_snapshot(positions, prices, {})

        assert snapshot.total_exposure == 3000
        assert snapshot.metal_exposure == {"copper": 1000, "zinc": 1000, "tin": 1000}
        assert snapshot.long_exposure == 2000
        assert snapshot.short_exposure == 1000
        assert snapshot.total_unrealized_pnl == pytest.approx(100 + 100 - 50)
        assert snapshot.concentration_risk == pytest.approx(100 / 3)
        assert snapshot.risk_level == "medium"

    def test_missing_quote_marks_at_entry_and_is_not_at_risk(self):
        positions = [make_position(stop_loss=150)]
        snapshot = build_risk_snapshot(positions, {}, {})
        assert snapshot.total_unrealized_pnl == 0
        assert snapshot.positions_at_risk == 0

    def test_positions_at_risk_counts_breaches(self):
        positions = [
            make_position("copper", "long", stop_loss=95),
            make_position("zinc", "short", stop_loss=105),
            make_position("tin", "long", stop_loss=50),
        ]
        prices = {"copper": 94.0, "zinc": 106.0, "tin": 100.0}
        assert build_risk_snapshot(positions, prices, {}).positions_at_risk == 2

    def test_var_and_beta_placeholders(self):
        positions = [make_position("copper", quantity=10, entry_price=100), make_position("zinc", quantity=10, entry_price=300)]
        snapshot = build_risk_snapshot(positions, {}, {"copper": 2.0, "zinc": 1.0}, var_pct=0.05)
        assert snapshot.value_at_risk == pytest.approx(200)
        assert snapshot.portfolio_beta == pytest.approx(0.25 * 0.02 + 0.75 * 0.01)

    def test_payload_shape(self):
        payload = build_risk_snapshot([make_position()], {"copper": 100.0}, {}).to_payload()
        assert payload["metal_exposure"] == [{"metal": "copper", "exposure": 1000.0, "percentage": 100.0}]
        assert payload["position_type_balance"]["long_percentage"] == 100.0
        assert payload["position_type_balance"]["short_percentage"] == 0.0
