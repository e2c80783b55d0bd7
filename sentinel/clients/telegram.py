"""Telegram Bot API notification sink."""

import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx

from sentinel.clients.http import check_response
from sentinel.errors import UpstreamError
from sentinel_core.models import AlertRecord, Instrument, Signal

logger = logging.getLogger(__name__)

AlertCallback = Callable[[str, AlertRecord], Awaitable[None]]


def format_market_cap(value: float) -> str:
    if value >= 1000:
        return f"${value / 1000:.1f}K"
    return f"${value:.2f}"


def format_age(launched_at: datetime, now: datetime) -> str:
    """Age as '1d 2h 3m'; leading units are omitted while zero."""
    minutes = max(0, int((now - launched_at).total_seconds() // 60))
    parts = []
    if minutes >= 1440:
        parts.append(f"{minutes // 1440}d")
    if minutes >= 60:
        parts.append(f"{(minutes % 1440) // 60}h")
    parts.append(f"{minutes % 60}m")
    return " ".join(parts)


def _delta_line(label: str, market_cap: float, previous: float, ago: str) -> str:
    pct = (market_cap - previous) / previous * 100 if previous else 0.0
    arrow = "📈" if pct >= 0 else "📉"
    sign = "+" if pct >= 0 else ""
    return f"\n{arrow} *MC Δ {label}:* {sign}{pct:.1f}% ({ago})"


def format_signal(
    signal: Signal,
    instrument: Instrument,
    market_cap: float,
    previous: AlertRecord | None = None,
    now: float | None = None,
) -> str:
    """Render a signal as a Markdown alert message."""
    now = time.time() if now is None else now
    age_line = ""
    if instrument.launched_at is not None:
        age = format_age(instrument.launched_at, datetime.fromtimestamp(now, tz=timezone.utc))
        age_line = f"\n⏱ *Age:* {age}"

    change_lines = ""
    if previous is not None:
        minutes_ago = round((now - previous.sent_at) / 60)
        change_lines = _delta_line("last", market_cap, previous.market_cap, f"{minutes_ago}m ago")
        if previous.first_market_cap != previous.market_cap:
            hours = (now - previous.first_sent_at) / 3600
            ago = f"{hours:.1f}h ago" if hours >= 1 else f"{round(hours * 60)}m ago"
            change_lines += _delta_line("first", market_cap, previous.first_market_cap, ago)

    mint = instrument.id
    links = [f"[Jupiter](https://jup.ag/tokens/{mint})"]
    if instrument.pool_ref:
        links.append(f"[Axiom](https://axiom.trade/meme/{instrument.pool_ref})")
    links.append(f"[DexScreener](https://dexscreener.com/solana/{mint})")

    volume_line = ""
    if signal.volume_filter_active:
        volume_line = f"\n📊 *Volume:* {signal.volume:.0f} (avg {signal.avg_volume:.0f})"

    return (
        "🚨 *EMA RSI Alert*\n"
        "──────────────────\n"
        f"📌 *Ticker:* {instrument.display_name}{age_line}\n"
        f"💰 *Mkt Cap:* {format_market_cap(market_cap)}{change_lines}\n"
        f"📈 *RSI:* {signal.rsi:.2f}\n"
        f"📐 *EMA fast:* {signal.fast_ema:.4e}\n"
        f"📐 *EMA slow:* {signal.slow_ema:.4e}{volume_line}\n"
        f"🔗 {' · '.join(links)}\n"
        f"`{mint}`"
    )


class TelegramNotifier:
    """Fire-and-forget Telegram delivery.

    Delivery failures are logged and never retried. Without a bot token
    messages are only logged.
    """

    def __init__(
        self,
        bot_token: str = "",
        chat_id: str = "",
        token_supply: float = 1_000_000_000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.token_supply = token_supply
        self.sent_count = 0
        self._alerts: dict[str, AlertRecord] = {}
        self._alert_callbacks: list[AlertCallback] = []
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"https://api.telegram.org/bot{self.bot_token}",
                timeout=10.0,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send_message(self, text: str) -> bool:
        """Send a Markdown message. Returns True if delivered."""
        if not self.enabled:
            logger.info(f"Telegram disabled, message not sent:\n{text}")
            return False

        client = await self._get_client()
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        try:
            response = await client.post("/sendMessage", json=payload)
            check_response(response, "telegram sendMessage")
        except (httpx.TransportError, UpstreamError) as e:
            logger.error(f"Telegram delivery failed: {e}")
            return False

        self.sent_count += 1
        return True

    def on_alert(self, callback: AlertCallback) -> None:
        """Register an async callback for every delivered signal alert.

        Callbacks receive the instrument id and its updated alert record.
        """
        self._alert_callbacks.append(callback)

    async def send_signal(self, signal: Signal, instrument: Instrument) -> bool:
        """Deliver a signal alert, tracking market cap change across alerts."""
        market_cap = signal.price * self.token_supply
        previous = self._alerts.get(instrument.id)
        now = time.time()
        text = format_signal(signal, instrument, market_cap, previous, now)

        delivered = await self.send_message(text)
        if not delivered:
            return False

        logger.info(f"Alert sent for {instrument.display_name} (MC {format_market_cap(market_cap)})")
        record = AlertRecord(
            market_cap=market_cap,
            sent_at=now,
            first_market_cap=previous.first_market_cap if previous else market_cap,
            first_sent_at=previous.first_sent_at if previous else now,
        )
        self._alerts[instrument.id] = record
        for callback in self._alert_callbacks:
            try:
                await callback(instrument.id, record)
            except Exception as e:
                logger.error(f"Alert callback error for {instrument.display_name}: {e}")
        return True

    def last_alert(self, instrument_id: str) -> AlertRecord | None:
        return self._alerts.get(instrument_id)

    def restore_alerts(self, alerts: dict[str, AlertRecord]) -> None:
        """Load persisted alert history, e.g. after a restart."""
        self._alerts.update(alerts)

    def forget(self, instrument_id: str) -> None:
        """Drop alert history of a pruned instrument."""
        self._alerts.pop(instrument_id, None)
