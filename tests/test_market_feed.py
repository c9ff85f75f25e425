"""Tests for the simulated/live market feed and its price cache."""

import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import httpx
import pytest

from mas_hedging.core.database import session_scope
from mas_hedging.core.errors import FeedUnavailableError, NotFoundError, ValidationError
from mas_hedging.models import MarketTick
from mas_hedging.models.market import METAL_TYPES
from mas_hedging.services.market_feed import (
    LiveFeed,
    MarketFeed,
    PriceCache,
    SimulatedFeed,
    reference_quote,
    seed_reference_ticks,
)
from mas_hedging.services.metals_client import MetalsApiClient

FIXED_NOW = datetime(2024, 1, 15, 12, 0, 0)


def reference_quotes():
    return {metal: reference_quote(metal, FIXED_NOW) for metal in METAL_TYPES}


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def mock_client(handler) -> MetalsApiClient:
    return MetalsApiClient(transport=httpx.MockTransport(handler))


def add_ticks(rows) -> None:
    with session_scope() as session:
        session.add_all(
            [
                MarketTick(metal_type=metal, price=price, change_percent=change, volume=volume, timestamp=timestamp)
                for metal, price, change, volume, timestamp in rows
            ]
        )


class TestSimulatedFeed:
    def test_same_seed_same_ticks(self):
        first = SimulatedFeed(random.Random(7), clock=lambda: FIXED_NOW).generate(reference_quotes())
        second = SimulatedFeed(random.Random(7), clock=lambda: FIXED_NOW).generate(reference_quotes())
        assert first == second

    def test_moves_are_bounded(self):
        feed = SimulatedFeed(random.Random(1), max_move_pct=2.0, clock=lambda: FIXED_NOW)
        previous = reference_quotes()
        for _ in range(200):
            current = feed.generate(previous)
            for metal, quote in current.items():
                assert abs(quote.change_percent) <= 2.0
                assert abs(quote.price / previous[metal].price - 1) <= 0.02 + 1e-3
                assert quote.volume >= 0
                assert quote.market_cap == pytest.approx(quote.price * quote.volume * 0.1, rel=1e-3)
            previous = current

    def test_every_metal_is_quoted(self):
        quotes = SimulatedFeed(random.Random(3)).generate(reference_quotes())
        assert set(quotes) == set(METAL_TYPES)


class TestPriceCache:
    def test_reuses_value_inside_ttl(self):
        clock = FakeClock()
        cache = PriceCache(ttl_seconds=30, clock=clock)
        calls = []

        def loader():
            calls.append(1)
            return len(calls)

        assert cache.get_or_refresh(loader) == (1, False)
        clock.now = 29.9
        assert cache.get_or_refresh(loader) == (1, True)
        clock.now = 30.0
        assert cache.get_or_refresh(loader) == (2, False)

    def test_invalidate_forces_reload(self):
        cache = PriceCache(ttl_seconds=30, clock=FakeClock())
        cache.get_or_refresh(lambda: "a")
        cache.invalidate()
        assert cache.get_or_refresh(lambda: "b") == ("b", False)

    def test_concurrent_readers_share_one_load(self):
        cache = PriceCache(ttl_seconds=30)
        calls = []
        barrier = threading.Barrier(8)

        def loader():
            calls.append(1)
            time.sleep(0.05)
            return object()

        def read(_):
            barrier.wait()
            return cache.get_or_refresh(loader)[0]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(read, range(8)))
        assert len(calls) == 1
        assert all(result is results[0] for result in results)


class TestLiveFeed:
    def test_maps_upstream_records(self):
        def handler(request):
            assert request.url.params["symbols"]
            return httpx.Response(
                200,
                json=[{"symbol": metal.upper(), "price": 100.0, "volume": 1000} for metal in METAL_TYPES],
            )

        quotes = LiveFeed(mock_client(handler), clock=lambda: FIXED_NOW).generate(reference_quotes())
        assert quotes["copper"].price == 100.0
        assert quotes["copper"].volume == 1000.0
        assert quotes["copper"].change_24h == pytest.approx(100.0 - 8742.50)

    def test_http_error_is_feed_unavailable(self):
        feed = LiveFeed(mock_client(lambda request: httpx.Response(503)))
        with pytest.raises(FeedUnavailableError):
            feed.generate(reference_quotes())

    def test_partial_answer_is_feed_unavailable(self):
        feed = LiveFeed(mock_client(lambda request: httpx.Response(200, json=[{"symbol": "copper", "price": 1.0}])))
        with pytest.raises(FeedUnavailableError):
            feed.generate(reference_quotes())

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"error": "rate limited"}),
            httpx.Response(200, json=["copper", "zinc"]),
            httpx.Response(200, json=[{"symbol": "copper", "price": {"usd": 1}}]),
            httpx.Response(200, json=[{"symbol": "copper", "price": "n/a"}]),
            httpx.Response(200, text="<html>maintenance</html>"),
        ],
    )
    def test_malformed_body_is_feed_unavailable(self, response):
        feed = LiveFeed(mock_client(lambda request: response))
        with pytest.raises(FeedUnavailableError):
            feed.generate(reference_quotes())


class TestMarketFeed:
    def test_snapshot_is_cached(self, feed):
        first = feed.snapshot()
        second = feed.snapshot()
        assert not first.cached
        assert second.cached
        assert first.quotes == second.quotes

    def test_refresh_persists_ticks(self, feed):
        feed.snapshot()
        for metal in METAL_TYPES:
            assert feed.latest_tick(metal) == feed.snapshot().quotes[metal]

    def test_refresh_walks_from_last_tick(self):
        seed_reference_ticks(random.Random(0))
        feed = MarketFeed(SimulatedFeed(random.Random(5)), PriceCache(ttl_seconds=0))
        first = feed.snapshot().quotes
        second = feed.snapshot().quotes
        for metal in METAL_TYPES:
            assert second[metal].change_24h == pytest.approx(second[metal].price - first[metal].price, abs=0.011)

    def test_falls_back_when_live_feed_fails(self):
        live = LiveFeed(mock_client(lambda request: httpx.Response(500)))
        feed = MarketFeed(live, PriceCache(), fallback=SimulatedFeed(random.Random(1)))
        assert set(feed.snapshot().quotes) == set(METAL_TYPES)

    def test_falls_back_on_malformed_body(self):
        live = LiveFeed(mock_client(lambda request: httpx.Response(200, json={"error": "rate limited"})))
        feed = MarketFeed(live, PriceCache(), fallback=SimulatedFeed(random.Random(1)))
        assert set(feed.snapshot().quotes) == set(METAL_TYPES)

    def test_without_fallback_failure_propagates(self):
        live = LiveFeed(mock_client(lambda request: httpx.Response(500)))
        with pytest.raises(FeedUnavailableError):
            MarketFeed(live, PriceCache()).snapshot()

    def test_stale_quotes_are_not_current(self):
        now = {"value": datetime.utcnow()}
        feed = MarketFeed(
            SimulatedFeed(random.Random(2), clock=lambda: now["value"]),
            PriceCache(ttl_seconds=3600),
            freshness=timedelta(minutes=60),
            clock=lambda: now["value"],
        )
        assert feed.current_price("copper") is not None
        now["value"] += timedelta(minutes=61)
        assert feed.current_prices() == {}
        assert feed.current_price("copper", default=1.5) == 1.5

    def test_latest_tick_unknown_metal(self, feed):
        with pytest.raises(NotFoundError):
            feed.latest_tick("gold")

    def test_history_rejects_bad_period(self, feed):
        with pytest.raises(ValidationError):
            feed.history("copper", "2w")

    def test_history_metrics(self, feed):
        feed.snapshot()
        history = feed.history("copper", "1h")
        assert history["metrics"]["data_points"] == 1
        assert history["metrics"]["high"] == history["metrics"]["low"] == history["data"][0]["price"]

    def test_seed_only_runs_on_empty_table(self):
        assert seed_reference_ticks(random.Random(0)) == len(METAL_TYPES)
        assert seed_reference_ticks(random.Random(0)) == 0

    def test_summary_counts_and_top_movers(self, feed):
        now = datetime.utcnow()
        moves = {"copper": 3.0, "aluminum": 2.0, "zinc": 1.0, "nickel": 0.5, "lead": -1.0, "tin": 0.0}
        add_ticks([(metal, 100.0, change, 10.0, now) for metal, change in moves.items()])
        summary = feed.summary()
        assert summary["summary"] == {
            "total_metals": 6,
            "total_volume": 60.0,
            "gainers": 4,
            "losers": 1,
            "unchanged": 1,
        }
        assert [q["metal"] for q in summary["top_gainers"]] == ["copper", "aluminum", "zinc"]
        assert [q["metal"] for q in summary["top_losers"]] == ["lead"]

    def test_summary_skips_old_ticks(self, feed):
        now = datetime.utcnow()
        add_ticks([("copper", 100.0, 1.0, 10.0, now), ("tin", 100.0, 5.0, 10.0, now - timedelta(hours=3))])
        summary = feed.summary()
        assert summary["summary"]["total_metals"] == 1
        assert [q["metal"] for q in summary["top_gainers"]] == ["copper"]

    def test_average_volatility_window(self, feed):
        now = datetime.utcnow()
        add_ticks(
            [
                ("copper", 100.0, 2.0, 1.0, now),
                ("copper", 100.0, -4.0, 1.0, now - timedelta(days=1)),
                ("copper", 100.0, 50.0, 1.0, now - timedelta(days=40)),
                ("zinc", 100.0, None, 1.0, now),
            ]
        )
        assert feed.average_volatility(30) == {"copper": pytest.approx(3.0)}


class TestMarketApi:
    def test_price_matches_snapshot(self, client):
        data = client.get("/api/market/data").json()["data"]
        price = client.get("/api/market/price/copper").json()
        assert price["price"] == data["copper"]["price"]
        assert price["timestamp"] == data["copper"]["timestamp"]

    def test_price_unknown_metal(self, client):
        resp = client.get("/api/market/price/gold")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Metal not found"}

    def test_history(self, client):
        client.get("/api/market/data")
        body = client.get("/api/market/history/copper", params={"period": "24h"}).json()
        # seeded reference tick plus the refresh above
        assert body["metrics"]["data_points"] == 2
        assert body["metrics"]["high"] == max(point["price"] for point in body["data"])

    def test_history_bad_period(self, client):
        assert client.get("/api/market/history/copper", params={"period": "2w"}).status_code == 400

    def test_summary(self, client):
        quotes = client.get("/api/market/data").json()["data"].values()
        body = client.get("/api/market/summary").json()
        gainers = sorted((q for q in quotes if q["change_percent"] > 0), key=lambda q: q["change_percent"], reverse=True)
        counts = body["summary"]
        assert counts["total_metals"] == 6
        assert counts["gainers"] == len(gainers)
        assert counts["gainers"] + counts["losers"] + counts["unchanged"] == 6
        assert [q["metal"] for q in body["top_gainers"]] == [q["metal"] for q in gainers[:3]]
