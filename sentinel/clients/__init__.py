"""Upstream API clients."""

from sentinel.clients.dexscreener import DexScreenerClient
from sentinel.clients.gecko import GeckoTerminalClient, RateLimiter
from sentinel.clients.jupiter import JupiterPriceClient
from sentinel.clients.moralis import MoralisClient
from sentinel.clients.telegram import TelegramNotifier

__all__ = [
    "DexScreenerClient",
    "GeckoTerminalClient",
    "RateLimiter",
    "JupiterPriceClient",
    "MoralisClient",
    "TelegramNotifier",
]
