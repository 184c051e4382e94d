from __future__ import annotations

import asyncio

from oracle_engine.errors import TransientFetchFailure
from oracle_engine.feed import TokenFeed, TokenSnapshot


JUPITER_ROW = {
    "id": "GvbeE3xrQMHzCBoikm4816VQsrUZAC7owbJma5Ffpump",
    "name": "Oracle",
    "symbol": "ORC",
    "mcap": 1_250_000.0,
    "usdPrice": 0.00125,
    "liquidity": 84_000.0,
    "decimals": 6,
    "circSupply": 999_000_000,
    "holderCount": 1520,
    "organicScore": 61.4,
    "isVerified": True,
    "tags": ["community"],
    "fdv": 1_300_000.0,
    "updatedAt": "2025-07-01T12:00:00Z",
    "firstPool": {"createdAt": "2025-06-01T00:00:00Z"},
    "audit": {"topHoldersPercentage": 0.21},
    "stats24h": {
        "buyVolume": 30_000.0,
        "sellVolume": 12_500.0,
        "priceChange": 0.034,
        "volumeChange": -0.12,
        "liquidityChange": 0.01,
        "numTraders": 310,
    },
}


def test_from_jupiter_maps_fields():
    snap = TokenSnapshot.from_jupiter(JUPITER_ROW)

    assert snap.mint == JUPITER_ROW["id"]
    assert snap.symbol == "ORC"
    assert snap.marketcap == 1_250_000.0
    assert snap.price_usd == 0.00125
    assert snap.volume_24h == 42_500.0
    assert snap.created_at == "2025-06-01T00:00:00Z"
    assert snap.supply == 999_000_000
    assert snap.top_holders_percentage == 0.21
    assert snap.num_traders_24h == 310
    assert snap.is_verified is True
    assert snap.source == "jupiter_api"
    assert snap.status == "active"


def test_from_jupiter_tolerates_missing_sections():
    snap = TokenSnapshot.from_jupiter({"id": "abc", "symbol": "X"})

    assert snap.volume_24h is None
    assert snap.created_at is None
    assert snap.tags == []
    assert snap.is_verified is False


def test_fallback_snapshot():
    snap = TokenSnapshot.fallback()

    assert (snap.name, snap.symbol, snap.mint) == ("Oracle Market", "ORACLE", "oracle-conversation")
    assert snap.source == "fallback"
    assert snap.decimals == 9
    assert snap.supply == 1_000_000_000
    assert snap.price_usd is None
    assert snap.to_dict()["symbol"] == "ORACLE"


class ScriptedFeed(TokenFeed):
    def __init__(self, results):
        super().__init__("contract-under-test", interval=0.01)
        self.results = list(results)

    async def fetch_raw(self):
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def test_failed_refresh_keeps_previous_snapshot():
    feed = ScriptedFeed([JUPITER_ROW, TransientFetchFailure("502 Bad Gateway"), None])

    async def _go():
        return [await feed.refresh(), await feed.refresh(), await feed.refresh()]

    assert asyncio.run(_go()) == [True, False, False]
    assert feed.current_snapshot().symbol == "ORC"
    assert feed.snapshot_or_fallback().symbol == "ORC"


def test_snapshot_or_fallback_before_first_fetch():
    feed = TokenFeed("contract-under-test")

    assert feed.current_snapshot() is None
    assert feed.snapshot_or_fallback().source == "fallback"


def test_start_without_contract_is_noop():
    feed = TokenFeed("")

    async def _go():
        await feed.start()
        running = feed.is_running
        await feed.stop()
        return running

    assert asyncio.run(_go()) is False
    assert feed.current_snapshot() is None


def test_start_polls_until_stopped():
    feed = ScriptedFeed([JUPITER_ROW] * 50)

    async def _go():
        await feed.start()
        await feed.start()
        await asyncio.sleep(0.05)
        await feed.stop()

    asyncio.run(_go())

    assert not feed.is_running
    assert len(feed.results) < 49
    assert feed.status()["has_data"] is True
    assert feed.status()["last_fetch"] == "2025-07-01T12:00:00Z"


def test_status_shape():
    status = TokenFeed("abc").status()

    assert status == {
        "is_running": False,
        "contract_address": "abc",
        "has_data": False,
        "last_fetch": None,
    }
