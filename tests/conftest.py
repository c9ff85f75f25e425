import os
import random
import tempfile
from datetime import date, timedelta

# The engine is created at import time, so the store must be redirected first.
_TMP_DIR = tempfile.mkdtemp(prefix="mas-hedging-tests-")
os.environ["DATA_DIR"] = _TMP_DIR
os.environ["SQLITE_PATH"] = os.path.join(_TMP_DIR, "test.db")
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

import mas_hedging.models  # noqa: F401,E402
from mas_hedging.core.database import Base, engine  # noqa: E402
from mas_hedging.main import app  # noqa: E402
from mas_hedging.services.market_feed import (  # noqa: E402
    MarketFeed,
    PriceCache,
    SimulatedFeed,
    get_market_feed,
)

PASSWORD = "s3cret-pass"


@pytest.fixture(autouse=True)
def fresh_db():
    """Recreate the schema so every test starts from an empty store."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def feed() -> MarketFeed:
    """Seeded simulated feed whose cache never expires during a test."""
    return MarketFeed(SimulatedFeed(random.Random(42)), PriceCache(ttl_seconds=3600))


@pytest.fixture
def client(feed):
    app.dependency_overrides[get_market_feed] = lambda: feed
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def register(client: TestClient, email: str = "trader@example.com", password: str = PASSWORD) -> dict:
    resp = client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "first_name": "Test", "last_name": "Trader"},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def login(client: TestClient, email: str, password: str = PASSWORD) -> dict:
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def auth_headers(client) -> dict:
    register(client)
    return login(client, "trader@example.com")


@pytest.fixture
def admin_headers(client) -> dict:
    return login(client, "admin@mashedging.com", "admin123!")


def position_payload(metal: str, price: float, direction: str = "long", quantity: float = 10, **extra) -> dict:
    today = date.today()
    payload = {
        "metal_type": metal,
        "direction": direction,
        "quantity": quantity,
        "entry_price": price,
        "contract_date": today.isoformat(),
        "expiry_date": (today + timedelta(days=30)).isoformat(),
    }
    payload.update(extra)
    return payload
