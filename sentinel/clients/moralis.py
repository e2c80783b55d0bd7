"""Moralis Solana API client for graduated-token discovery."""

import asyncio
import logging
import time
from datetime import datetime

import httpx

from sentinel.clients.http import get_json
from sentinel.errors import NotFoundError, UpstreamError
from sentinel_core.models import DiscoveredToken

logger = logging.getLogger(__name__)


def _parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class MoralisClient:
    """Fetch recently graduated tokens from one or more launchpads."""

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://solana-gateway.moralis.io",
        exchanges: list[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.exchanges = exchanges or ["pumpfun"]
        self.last_update: float | None = None
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"accept": "application/json"}
            if self.api_key:
                headers["X-API-Key"] = self.api_key
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=15.0,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _fetch_exchange(self, exchange: str, limit: int) -> list[DiscoveredToken]:
        client = await self._get_client()
        try:
            data = await get_json(
                client,
                f"/token/mainnet/exchange/{exchange}/graduated",
                f"moralis {exchange}",
                params={"limit": limit},
            )
        except NotFoundError:
            logger.warning(f"Exchange '{exchange}' not supported by Moralis (404), skipping")
            return []
        except UpstreamError as e:
            logger.error(f"Moralis fetch failed for {exchange}: {e}")
            return []

        rows = data.get("result", []) if isinstance(data, dict) else (data or [])
        tokens = []
        for row in rows:
            address = row.get("tokenAddress") or row.get("address")
            if not address:
                continue
            tokens.append(
                DiscoveredToken(
                    address=address,
                    symbol=row.get("symbol") or "",
                    name=row.get("name") or "",
                    created_at=_parse_timestamp(row.get("createdAt") or row.get("blockTimestamp")),
                )
            )
        if tokens:
            logger.info(f"Moralis {exchange}: {len(tokens)} token(s)")
        return tokens

    async def get_graduated(self, limit: int = 20) -> list[DiscoveredToken]:
        """Graduated tokens from all configured exchanges, de-duplicated by address."""
        results = await asyncio.gather(
            *(self._fetch_exchange(exchange, limit) for exchange in self.exchanges)
        )

        seen: set[str] = set()
        tokens: list[DiscoveredToken] = []
        for batch in results:
            for token in batch:
                if token.address not in seen:
                    seen.add(token.address)
                    tokens.append(token)

        if tokens:
            self.last_update = time.time()
        return tokens
