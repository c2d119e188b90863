import asyncio
import os
import tempfile

_test_dir = tempfile.mkdtemp(prefix="cryptofolio-tests-")
os.environ.setdefault("LOG_FILE", os.path.join(_test_dir, "logs", "test.log"))
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_test_dir, 'default.db')}"
)
os.environ.setdefault("SECRET_KEY", "test-secret")

import httpx
import pytest

from cryptofolio_api.db.database import Database
from cryptofolio_api.services.holding_store import HoldingStore


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'cryptofolio.db'}"


@pytest.fixture
def run_with_store(database_url):
    """Run an async scenario against a fresh HoldingStore on its own event loop."""

    def runner(scenario):
        async def main():
            database = Database(database_url)
            await database.init_db()
            try:
                return await scenario(HoldingStore(database))
            finally:
                await database.dispose()

        return asyncio.run(main())

    return runner


COINS = {
    "BTC": [{"id": "bitcoin", "name": "Bitcoin", "symbol": "btc"}],
    "ETH": [
        {"id": "ethereum", "name": "Ethereum", "symbol": "eth"},
        {"id": "ethereum-wormhole", "name": "Ethereum (Wormhole)", "symbol": "eth"},
    ],
    "SOL": [{"id": "solana", "name": "Solana", "symbol": "sol"}],
}

MARKETS = {
    "bitcoin": {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "current_price": 50000.0,
        "price_change_percentage_24h": 2.0,
        "price_change_percentage_1h_in_currency": 0.1,
        "market_cap": 1.0e12,
        "total_volume": 3.0e10,
    },
    "ethereum": {
        "id": "ethereum",
        "symbol": "eth",
        "name": "Ethereum",
        "current_price": 2000.0,
        "price_change_percentage_24h": -4.0,
        "market_cap": 2.4e11,
    },
    "solana": {
        "id": "solana",
        "symbol": "sol",
        "name": "Solana",
        "current_price": 100.0,
        "price_change_percentage_24h": 1.0,
    },
}


def coingecko_handler(request: httpx.Request) -> httpx.Response:
    """Minimal stand-in for the CoinGecko endpoints the service calls."""
    path = request.url.path
    params = request.url.params
    if path.endswith("/search"):
        query = params.get("query", "").upper()
        return httpx.Response(200, json={"coins": COINS.get(query, [])})
    if path.endswith("/coins/markets"):
        if "ids" in params:
            ids = [i for i in params["ids"].split(",") if i]
            return httpx.Response(200, json=[MARKETS[i] for i in ids if i in MARKETS])
        per_page = int(params.get("per_page", 10))
        return httpx.Response(200, json=list(MARKETS.values())[:per_page])
    if path.endswith("/simple/supported_vs_currencies"):
        return httpx.Response(200, json=["usd", "eur", "btc"])
    return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def coingecko_transport():
    return httpx.MockTransport(coingecko_handler)
