"""DexScreener client for market caps and short-window volume."""

import asyncio
import logging
from typing import Callable, Iterable

import httpx

from sentinel.clients.http import get_json
from sentinel.errors import UpstreamError

logger = logging.getLogger(__name__)

BATCH_SIZE = 30
BATCH_DELAY_SECONDS = 0.25


def _market_cap(pair: dict) -> float:
    return float(pair.get("marketCap") or pair.get("fdv") or 0)


def _volume_5m(pair: dict) -> float:
    return float((pair.get("volume") or {}).get("m5") or 0)


class DexScreenerClient:
    """Token pair lookups, up to 30 addresses per request."""

    def __init__(
        self,
        base_url: str = "https://api.dexscreener.com/tokens/v1/solana",
        batch_delay: float = BATCH_DELAY_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.batch_delay = batch_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=10.0, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _collect(
        self, addresses: Iterable[str], field: Callable[[dict], float], label: str
    ) -> dict[str, float]:
        """Max of ``field`` across each token's pairs.

        Tokens DexScreener does not know are absent from the result.
        """
        addresses = list(addresses)
        result: dict[str, float] = {}
        if not addresses:
            return result

        client = await self._get_client()
        for i in range(0, len(addresses), BATCH_SIZE):
            batch = addresses[i:i + BATCH_SIZE]
            try:
                data = await get_json(client, f"{self.base_url}/{','.join(batch)}", f"dexscreener {label}")
            except UpstreamError as e:
                logger.error(f"DexScreener {label} batch {i // BATCH_SIZE + 1} error: {e}")
                data = None

            pairs = data.get("pairs", []) if isinstance(data, dict) else (data or [])
            for pair in pairs:
                address = (pair.get("baseToken") or {}).get("address")
                if not address:
                    continue
                try:
                    value = field(pair)
                except (TypeError, ValueError):
                    continue
                if address not in result or value > result[address]:
                    result[address] = value

            if i + BATCH_SIZE < len(addresses) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        return result

    async def get_market_caps(self, addresses: Iterable[str]) -> dict[str, float]:
        """Current market cap (USD) per token."""
        return await self._collect(addresses, _market_cap, "market cap")

    async def get_volume_5m(self, addresses: Iterable[str]) -> dict[str, float]:
        """5-minute trading volume (USD) per token."""
        return await self._collect(addresses, _volume_5m, "volume")
