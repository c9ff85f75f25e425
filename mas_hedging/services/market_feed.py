"""Market price feed.

Prices are produced by a ``FeedStrategy`` (simulated random walk or a live
HTTP source), persisted as ``MarketTick`` rows and served from a
``PriceCache`` so that every reader inside one TTL window sees the same
quotes. Refreshes happen lazily on the read path; there is no background
scheduler.
"""

import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import lru_cache
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from mas_hedging.core.config import Settings, get_settings
from mas_hedging.core.database import session_scope
from mas_hedging.core.errors import FeedUnavailableError, NotFoundError, ValidationError
from mas_hedging.models import MarketTick
from mas_hedging.models.market import METAL_TYPES
from mas_hedging.services.metals_client import MetalsApiClient

logger = logging.getLogger(__name__)

# Seed quotes: (price, change_percent)
REFERENCE_QUOTES = {
    "copper": (8742.50, 1.24),
    "aluminum": (2450.75, -0.85),
    "zinc": (3120.25, 2.15),
    "nickel": (21875.00, -1.45),
    "lead": (2185.30, 0.75),
    "tin": (24650.00, 3.20),
}
MARKET_CAP_FACTOR = 0.1
VOLUME_SWING = 0.2
DEFAULT_VOLUME = 500_000.0

HISTORY_PERIODS = {
    "1h": timedelta(hours=1),
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
SUMMARY_WINDOW = timedelta(hours=2)


@dataclass(frozen=True)
class Quote:
    metal: str
    price: float
    change_24h: Optional[float]
    change_percent: Optional[float]
    volume: Optional[float]
    market_cap: Optional[float]
    timestamp: datetime

    @classmethod
    def from_tick(cls, tick: MarketTick) -> "Quote":
        return cls(
            metal=tick.metal_type,
            price=tick.price,
            change_24h=tick.change_24h,
            change_percent=tick.change_percent,
            volume=tick.volume,
            market_cap=tick.market_cap,
            timestamp=tick.timestamp,
        )

    def to_tick(self) -> MarketTick:
        return MarketTick(
            metal_type=self.metal,
            price=self.price,
            change_24h=self.change_24h,
            change_percent=self.change_percent,
            volume=self.volume,
            market_cap=self.market_cap,
            timestamp=self.timestamp,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metal": self.metal,
            "price": self.price,
            "change_24h": self.change_24h,
            "change_percent": self.change_percent,
            "volume": self.volume,
            "market_cap": self.market_cap,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class FeedSnapshot:
    quotes: Dict[str, Quote]
    generated_at: datetime
    cached: bool

    def prices(self) -> Dict[str, float]:
        return {metal: quote.price for metal, quote in self.quotes.items()}


class PriceCache:
    """Process-wide holder for the last feed refresh.

    A single lock guards both the freshness check and the reload, so one
    caller regenerates the value while concurrent callers wait and then
    receive that same value.
    """

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._value: Any = None
        self._loaded_at: Optional[float] = None

    def get_or_refresh(self, loader: Callable[[], Any]) -> Tuple[Any, bool]:
        """Return ``(value, cached)``; ``cached`` is False when ``loader`` ran."""
        with self._lock:
            if self._loaded_at is not None and self._clock() - self._loaded_at < self.ttl_seconds:
                return self._value, True
            value = loader()
            self._value = value
            self._loaded_at = self._clock()
            return value, False

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._loaded_at = None


class FeedStrategy:
    name = "base"

    def generate(self, previous: Dict[str, Quote]) -> Dict[str, Quote]:
        """Produce the next quote for every metal in ``previous``."""
        raise NotImplementedError


class SimulatedFeed(FeedStrategy):
    name = "simulated"

    def __init__(
        self,
        rng: random.Random,
        max_move_pct: float = 2.0,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.rng = rng
        self.max_move_pct = max_move_pct
        self._clock = clock

    def tick(self, metal: str, previous: Quote) -> Quote:
        change_percent = self.rng.uniform(-self.max_move_pct, self.max_move_pct)
        price = previous.price * (1 + change_percent / 100)
        base_volume = previous.volume if previous.volume is not None else DEFAULT_VOLUME
        volume = max(0.0, base_volume * (1 + self.rng.uniform(-VOLUME_SWING, VOLUME_SWING)))
        return Quote(
            metal=metal,
            price=round(price, 2),
            change_24h=round(price - previous.price, 2),
            change_percent=round(change_percent, 2),
            volume=float(round(volume)),
            market_cap=float(round(price * volume * MARKET_CAP_FACTOR)),
            timestamp=self._clock(),
        )

    def generate(self, previous: Dict[str, Quote]) -> Dict[str, Quote]:
        return {metal: self.tick(metal, quote) for metal, quote in previous.items()}


class LiveFeed(FeedStrategy):
    name = "live"

    def __init__(self, client: MetalsApiClient, clock: Callable[[], datetime] = datetime.utcnow):
        self.client = client
        self._clock = clock

    def generate(self, previous: Dict[str, Quote]) -> Dict[str, Quote]:
        try:
            spot = self.client.spot_prices(list(previous))
        except (httpx.HTTPError, TypeError, ValueError) as exc:
            raise FeedUnavailableError(f"live feed request failed: {exc}") from exc
        missing = sorted(set(previous) - set(spot))
        if missing:
            raise FeedUnavailableError(f"live feed returned no price for {', '.join(missing)}")

        now = self._clock()
        quotes: Dict[str, Quote] = {}
        for metal, prev in previous.items():
            price = spot[metal]["price"]
            volume = spot[metal].get("volume")
            if volume is None:
                volume = prev.volume
            change = price - prev.price
            quotes[metal] = Quote(
                metal=metal,
                price=round(price, 2),
                change_24h=round(change, 2),
                change_percent=round(change / prev.price * 100, 2) if prev.price else 0.0,
                volume=volume,
                market_cap=float(round(price * volume * MARKET_CAP_FACTOR)) if volume is not None else None,
                timestamp=now,
            )
        return quotes


def reference_quote(metal: str, timestamp: datetime) -> Quote:
    price, change_percent = REFERENCE_QUOTES[metal]
    return Quote(
        metal=metal,
        price=price,
        change_24h=None,
        change_percent=change_percent,
        volume=DEFAULT_VOLUME,
        market_cap=float(round(price * DEFAULT_VOLUME * MARKET_CAP_FACTOR)),
        timestamp=timestamp,
    )


def latest_quotes(session: Session, since: Optional[datetime] = None) -> List[Quote]:
    """Most recent tick per metal, optionally restricted to ``timestamp > since``.

    Ticks are append-only, so the highest id per metal is the newest row.
    """
    newest = select(func.max(MarketTick.id)).group_by(MarketTick.metal_type)
    if since is not None:
        newest = newest.where(MarketTick.timestamp > since)
    rows = session.execute(select(MarketTick).where(MarketTick.id.in_(newest))).scalars().all()
    return [Quote.from_tick(row) for row in rows]


def average_volatility(session: Session, since: datetime) -> Dict[str, float]:
    """Mean absolute percent change per metal since ``since``."""
    rows = session.execute(
        select(MarketTick.metal_type, func.avg(func.abs(MarketTick.change_percent)))
        .where(MarketTick.timestamp > since, MarketTick.change_percent.is_not(None))
        .group_by(MarketTick.metal_type)
    ).all()
    return {metal: float(avg or 0.0) for metal, avg in rows}


def seed_reference_ticks(rng: random.Random) -> int:
    """Insert one reference tick per metal when the table is empty."""
    with session_scope(use_lock=True) as session:
        if session.execute(select(MarketTick.id).limit(1)).first():
            return 0
        now = datetime.utcnow()
        for metal in METAL_TYPES:
            price, change_percent = REFERENCE_QUOTES[metal]
            session.add(
                MarketTick(
                    metal_type=metal,
                    price=price,
                    change_percent=change_percent,
                    volume=float(round(rng.random() * 1_000_000)),
                    market_cap=float(round(price * (rng.random() * 100_000 + 50_000))),
                    timestamp=now,
                )
            )
    logger.info("Seeded reference market data for %d metals", len(METAL_TYPES))
    return len(METAL_TYPES)


class MarketFeed:
    def __init__(
        self,
        strategy: FeedStrategy,
        cache: PriceCache,
        fallback: Optional[FeedStrategy] = None,
        freshness: timedelta = timedelta(minutes=60),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.strategy = strategy
        self.cache = cache
        self.fallback = fallback
        self.freshness = freshness
        self._clock = clock

    def snapshot(self) -> FeedSnapshot:
        (quotes, generated_at), cached = self.cache.get_or_refresh(self._refresh)
        return FeedSnapshot(quotes=quotes, generated_at=generated_at, cached=cached)

    def _refresh(self) -> Tuple[Dict[str, Quote], datetime]:
        now = self._clock()
        with session_scope(use_lock=True) as session:
            previous = {quote.metal: quote for quote in latest_quotes(session)}
            for metal in METAL_TYPES:
                if metal not in previous:
                    previous[metal] = reference_quote(metal, now)
            quotes = self._generate(previous)
            session.add_all([quote.to_tick() for quote in quotes.values()])
        logger.info("Market feed refreshed (%s) for %d metals", self.strategy.name, len(quotes))
        return quotes, now

    def _generate(self, previous: Dict[str, Quote]) -> Dict[str, Quote]:
        try:
            return self.strategy.generate(previous)
        except FeedUnavailableError as exc:
            if self.fallback is None:
                raise
            logger.warning("Market feed %s unavailable, using %s: %s", self.strategy.name, self.fallback.name, exc.message)
            return self.fallback.generate(previous)

    def current_prices(self) -> Dict[str, float]:
        """Prices of snapshot quotes that are still inside the freshness window."""
        cutoff = self._clock() - self.freshness
        return {
            metal: quote.price
            for metal, quote in self.snapshot().quotes.items()
            if quote.timestamp >= cutoff
        }

    def current_price(self, metal: str, default: Optional[float] = None) -> Optional[float]:
        return self.current_prices().get(metal, default)

    def current_quotes(self) -> Dict[str, Quote]:
        cutoff = self._clock() - self.freshness
        return {metal: quote for metal, quote in self.snapshot().quotes.items() if quote.timestamp >= cutoff}

    def latest_tick(self, metal: str) -> Quote:
        metal = metal.lower()
        with session_scope() as session:
            tick = session.execute(
                select(MarketTick)
                .where(MarketTick.metal_type == metal)
                .order_by(MarketTick.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            if tick is None:
                raise NotFoundError("Metal not found")
            return Quote.from_tick(tick)

    def history(self, metal: str, period: str = "24h") -> Dict[str, Any]:
        metal = metal.lower()
        if period not in HISTORY_PERIODS:
            raise ValidationError(f"period must be one of {', '.join(HISTORY_PERIODS)}")
        since = self._clock() - HISTORY_PERIODS[period]
        with session_scope() as session:
            rows = (
                session.execute(
                    select(MarketTick)
                    .where(MarketTick.metal_type == metal, MarketTick.timestamp > since)
                    .order_by(MarketTick.timestamp.asc(), MarketTick.id.asc())
                )
                .scalars()
                .all()
            )
            points = [
                {"price": row.price, "volume": row.volume, "timestamp": row.timestamp.isoformat()}
                for row in rows
            ]
        prices = [point["price"] for point in points]
        volumes = [point["volume"] or 0 for point in points]
        return {
            "metal": metal,
            "period": period,
            "data": points,
            "metrics": {
                "high": max(prices) if prices else None,
                "low": min(prices) if prices else None,
                "avg_volume": sum(volumes) / len(volumes) if volumes else 0.0,
                "data_points": len(points),
            },
        }

    def summary(self) -> Dict[str, Any]:
        with session_scope() as session:
            quotes = latest_quotes(session, since=self._clock() - SUMMARY_WINDOW)
        gainers = sorted((q for q in quotes if (q.change_percent or 0) > 0), key=lambda q: q.change_percent, reverse=True)
        losers = sorted((q for q in quotes if (q.change_percent or 0) < 0), key=lambda q: q.change_percent)
        return {
            "summary": {
                "total_metals": len(quotes),
                "total_volume": sum(q.volume or 0 for q in quotes),
                "gainers": len(gainers),
                "losers": len(losers),
                "unchanged": len(quotes) - len(gainers) - len(losers),
            },
            "top_gainers": [q.to_dict() for q in gainers[:3]],
            "top_losers": [q.to_dict() for q in losers[:3]],
            "timestamp": self._clock().isoformat(),
        }

    def average_volatility(self, days: int) -> Dict[str, float]:
        with session_scope() as session:
            return average_volatility(session, self._clock() - timedelta(days=days))


def build_market_feed(settings: Settings, rng: Optional[random.Random] = None) -> MarketFeed:
    rng = rng or random.Random(settings.market_seed)
    simulated = SimulatedFeed(rng, max_move_pct=settings.market_max_move_pct)
    cache = PriceCache(settings.market_cache_ttl_sec)
    freshness = timedelta(minutes=settings.market_freshness_minutes)
    if settings.market_feed_mode == "live":
        return MarketFeed(LiveFeed(MetalsApiClient()), cache, fallback=simulated, freshness=freshness)
    if settings.market_feed_mode != "simulated":
        raise ValueError(f"Unknown market_feed_mode: {settings.market_feed_mode}")
    return MarketFeed(simulated, cache, freshness=freshness)


@lru_cache(maxsize=1)
def get_market_feed() -> MarketFeed:
    return build_market_feed(get_settings())
