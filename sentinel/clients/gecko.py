"""GeckoTerminal REST client for pool resolution and historical OHLCV."""

import asyncio
import logging
from datetime import datetime, timezone

import httpx

from sentinel.clients.http import get_json
from sentinel_core.models import OhlcvSample

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforce a minimum spacing between calls, shared by all callers."""

    def __init__(self, min_interval: float = 2.5):
        self.interval = min_interval
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect the spacing."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            wait_time = self.last_call + self.interval - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = asyncio.get_running_loop().time()


class GeckoTerminalClient:
    """GeckoTerminal public API client.

    The public API allows about 30 requests per minute, so every request
    (pool lookups and OHLCV fetches alike) goes through one RateLimiter.
    """

    HEADERS = {"Accept": "application/json;version=20230302"}

    def __init__(
        self,
        base_url: str = "https://api.geckoterminal.com/api/v2",
        network: str = "solana",
        min_interval: float = 2.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.network = network
        self.rate_limiter = RateLimiter(min_interval)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.HEADERS,
                timeout=15.0,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def resolve_pool(self, address: str) -> str | None:
        """Resolve a token address to its top pool address.

        Returns:
            Pool address, or None if the token has no pools yet

        Raises:
            TransientUpstreamError: rate limited or upstream unavailable
            NotFoundError: token unknown to GeckoTerminal
        """
        await self.rate_limiter.acquire()
        client = await self._get_client()
        data = await get_json(
            client,
            f"/networks/{self.network}/tokens/{address}/pools",
            f"gecko pools {address[:8]}",
            params={"page": 1, "sort": "h24_volume_usd_liquidity_desc"},
        )
        pools = (data or {}).get("data") or []
        if not pools:
            logger.info(f"No pools found for {address}")
            return None

        top = pools[0]
        pool = (top.get("attributes") or {}).get("address")
        if not pool and top.get("id"):
            pool = str(top["id"]).split("_")[-1]
        return pool or None

    async def get_ohlcv(self, pool_ref: str, limit: int = 300) -> list[OhlcvSample]:
        """Fetch 1-minute OHLCV samples for a pool, oldest first.

        Raises:
            TransientUpstreamError: rate limited or upstream unavailable
            NotFoundError: pool unknown to GeckoTerminal
        """
        await self.rate_limiter.acquire()
        client = await self._get_client()
        data = await get_json(
            client,
            f"/networks/{self.network}/pools/{pool_ref}/ohlcv/minute",
            f"gecko ohlcv {pool_ref[:8]}",
            params={"aggregate": 1, "limit": min(limit, 1000), "currency": "usd", "token": "base"},
        )
        rows = (((data or {}).get("data") or {}).get("attributes") or {}).get("ohlcv_list") or []

        samples = []
        for row in rows:
            # [timestamp_sec, open, high, low, close, volume]
            try:
                samples.append(
                    OhlcvSample(
                        timestamp=datetime.fromtimestamp(int(row[0]), tz=timezone.utc),
                        open=float(row[1]),
                        high=float(row[2]),
                        low=float(row[3]),
                        close=float(row[4]),
                        volume=float(row[5]) if len(row) > 5 and row[5] is not None else 0.0,
                    )
                )
            except (TypeError, ValueError, IndexError):
                logger.debug(f"Skipping malformed OHLCV row for {pool_ref}: {row}")
                continue

        # Upstream returns newest first
        samples.sort(key=lambda s: s.timestamp)
        return samples

