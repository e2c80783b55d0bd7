"""Jupiter Price API client (live price sampler)."""

import logging
import time
from typing import Iterable

import httpx

from sentinel.clients.http import get_json
from sentinel.errors import UpstreamError

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


class JupiterPriceClient:
    """Batched USD price lookups."""

    def __init__(
        self,
        base_url: str = "https://api.jup.ag/price/v3",
        api_key: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key.strip()
        self.last_update: float | None = None
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {}
            if self.api_key:
                headers["x-api-key"] = self.api_key
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=10.0,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def get_prices(self, ids: Iterable[str]) -> dict[str, float]:
        """Fetch USD prices for the given mints.

        Batches that fail are logged and skipped; the result holds only
        mints with a positive price.
        """
        mints = list(ids)
        prices: dict[str, float] = {}
        if not mints:
            return prices

        client = await self._get_client()
        for i in range(0, len(mints), BATCH_SIZE):
            batch = mints[i:i + BATCH_SIZE]
            try:
                data = await get_json(
                    client, self.base_url, "jupiter price", params={"ids": ",".join(batch)}
                )
            except UpstreamError as e:
                logger.error(f"Jupiter polling error: {e}")
                continue
            if not isinstance(data, dict):
                continue

            self.last_update = time.time()
            for mint in batch:
                item = data.get(mint) or {}
                try:
                    price = float(item.get("usdPrice") or 0)
                except (TypeError, ValueError):
                    continue
                if price > 0:
                    prices[mint] = price
        return prices
