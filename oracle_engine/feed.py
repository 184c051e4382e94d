from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from .config import DEFAULT_TOKEN_API_URL
from .errors import TransientFetchFailure


@dataclass(frozen=True)
class TokenSnapshot:
    name: str
    symbol: str
    mint: str
    status: str = "active"
    source: str = "jupiter_api"
    marketcap: Optional[float] = None
    price_usd: Optional[float] = None
    volume_24h: Optional[float] = None
    liquidity: Optional[float] = None
    created_at: Optional[str] = None
    decimals: Optional[int] = None
    supply: Optional[float] = None
    holder_count: Optional[int] = None
    organic_score: Optional[float] = None
    is_verified: bool = False
    tags: List[str] = field(default_factory=list)
    price_change_24h: Optional[float] = None
    volume_change_24h: Optional[float] = None
    liquidity_change_24h: Optional[float] = None
    num_traders_24h: Optional[int] = None
    top_holders_percentage: Optional[float] = None
    fdv: Optional[float] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_jupiter(cls, raw: Dict[str, Any]) -> "TokenSnapshot":
        stats = raw.get("stats24h") or {}
        audit = raw.get("audit") or {}
        first_pool = raw.get("firstPool") or {}
        buy = stats.get("buyVolume")
        sell = stats.get("sellVolume")
        volume = (buy or 0) + (sell or 0) if buy is not None or sell is not None else None
        return cls(
            name=raw.get("name") or "",
            symbol=raw.get("symbol") or "",
            mint=raw.get("id") or "",
            marketcap=raw.get("mcap"),
            price_usd=raw.get("usdPrice"),
            volume_24h=volume,
            liquidity=raw.get("liquidity"),
            created_at=first_pool.get("createdAt"),
            decimals=raw.get("decimals"),
            supply=raw.get("circSupply"),
            holder_count=raw.get("holderCount"),
            organic_score=raw.get("organicScore"),
            is_verified=bool(raw.get("isVerified")),
            tags=list(raw.get("tags") or []),
            price_change_24h=stats.get("priceChange"),
            volume_change_24h=stats.get("volumeChange"),
            liquidity_change_24h=stats.get("liquidityChange"),
            num_traders_24h=stats.get("numTraders"),
            top_holders_percentage=audit.get("topHoldersPercentage"),
            fdv=raw.get("fdv"),
            updated_at=raw.get("updatedAt"),
        )

    @classmethod
    def fallback(cls) -> "TokenSnapshot":
        """Placeholder used until the first successful fetch."""
        return cls(
            name="Oracle Market",
            symbol="ORACLE",
            mint="oracle-conversation",
            source="fallback",
            created_at=datetime.now(timezone.utc).isoformat(),
            decimals=9,
            supply=1_000_000_000,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


class TokenFeed:
    """Polls the token search API and caches the latest good snapshot."""

    def __init__(
        self,
        contract_address: Optional[str],
        api_url: str = DEFAULT_TOKEN_API_URL,
        interval: float = 8.0,
        request_timeout: float = 10.0,
    ) -> None:
        self.contract_address = contract_address or ""
        self.api_url = api_url
        self.interval = interval
        self.request_timeout = request_timeout
        self._snapshot: Optional[TokenSnapshot] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._http: Optional[aiohttp.ClientSession] = None
        if not self.contract_address:
            logger.warning("feed_disabled | no contract address configured")
        else:
            logger.info(f"feed_tracking | contract={self.contract_address}")

    @property
    def is_running(self) -> bool:
        return self._running

    def current_snapshot(self) -> Optional[TokenSnapshot]:
        return self._snapshot

    def snapshot_or_fallback(self) -> TokenSnapshot:
        return self._snapshot or TokenSnapshot.fallback()

    def status(self) -> Dict[str, Any]:
        return {
            "is_running": self._running,
            "contract_address": self.contract_address,
            "has_data": self._snapshot is not None,
            "last_fetch": self._snapshot.updated_at if self._snapshot else None,
        }

    async def start(self) -> None:
        if self._running:
            logger.info("feed_start_skipped | already running")
            return
        if not self.contract_address:
            logger.warning("feed_start_skipped | no contract address configured")
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._http = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.request_timeout)
        )
        await self.refresh()
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"feed_started | interval={self.interval}s")

    async def stop(self) -> None:
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        if self._http is not None:
            await self._http.close()
            self._http = None
        logger.info("feed_stopped")

    async def _poll_loop(self) -> None:
        assert self._stop_event is not None
        while self._running:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
            await self.refresh()

    async def refresh(self) -> bool:
        """Fetch once; on failure keep the previous snapshot."""
        try:
            raw = await self.fetch_raw()
        except TransientFetchFailure as e:
            logger.error(f"feed_fetch_failed | {e}")
            return False
        if not raw:
            logger.warning(f"feed_no_data | contract={self.contract_address}")
            return False
        try:
            self._snapshot = TokenSnapshot.from_jupiter(raw)
        except (AttributeError, TypeError) as e:
            logger.error(f"feed_parse_failed | {e}")
            return False
        logger.debug(f"feed_fetched | name={self._snapshot.name} symbol={self._snapshot.symbol}")
        return True

    async def fetch_raw(self) -> Optional[Dict[str, Any]]:
        params = {"query": self.contract_address}
        try:
            if self._http is not None:
                data = await self._get_json(self._http, params)
            else:
                async with aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.request_timeout)
                ) as http:
                    data = await self._get_json(http, params)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransientFetchFailure(str(e) or type(e).__name__) from e
        if isinstance(data, list) and data:
            return data[0]
        return None

    async def _get_json(self, http: aiohttp.ClientSession, params: Dict[str, str]) -> Any:
        async with http.get(
            self.api_url, params=params, headers={"Accept": "application/json"}
        ) as resp:
            resp.raise_for_status()
            return await resp.json()
