"""Consumer of closed candles: persist, prune, evaluate, notify."""

import logging
from typing import Protocol

from sentinel.services.maintenance import Pruner
from sentinel.storage.protocols import CandleStore, InstrumentStore
from sentinel_core.aggregator import CandleAggregator
from sentinel_core.evaluator import evaluate
from sentinel_core.models import Candle, EvaluatorConfig, Instrument, Signal

logger = logging.getLogger(__name__)


class SignalSink(Protocol):
    """Notification sink. Delivery failures are handled by the sink."""

    async def send_signal(self, signal: Signal, instrument: Instrument) -> bool:
        ...


class CandleProcessor:
    """Single consumer registered on the aggregator's candle clock.

    Per closed candle:
    1. Persist it (duplicate keys are ignored)
    2. Load the recent history, oldest first
    3. Prune the instrument if the close implies a market cap under the floor
    4. Evaluate the history
    5. Hand signals above the alert floor to the sink
    """

    def __init__(
        self,
        candles: CandleStore,
        instruments: InstrumentStore,
        aggregator: CandleAggregator,
        pruner: Pruner,
        sink: SignalSink,
        config: EvaluatorConfig,
        history_limit: int = 60,
        token_supply: float = 1_000_000_000,
        min_market_cap: float = 2000.0,
        alert_min_market_cap: float = 5000.0,
    ):
        self.candles = candles
        self.instruments = instruments
        self.aggregator = aggregator
        self.pruner = pruner
        self.sink = sink
        self.config = config
        self.history_limit = history_limit
        self.token_supply = token_supply
        self.min_market_cap = min_market_cap
        self.alert_min_market_cap = alert_min_market_cap

        self.signal_count = 0
        self.last_signal: Signal | None = None

    async def handle(self, candle: Candle) -> Signal | None:
        """Process one closed candle. Returns the delivered signal, if any."""
        await self.candles.save(candle)

        history = await self.candles.get_recent(candle.instrument_id, self.history_limit)
        if not history:
            return None

        instrument = self.aggregator.registry.get(candle.instrument_id)
        if instrument is None:
            instrument = await self.instruments.get(candle.instrument_id)
        if instrument is None:
            instrument = Instrument(id=candle.instrument_id, pool_ref=candle.pool_ref)

        market_cap = candle.close * self.token_supply
        if market_cap < self.min_market_cap:
            await self.pruner.prune(
                candle.instrument_id,
                f"market cap ${market_cap:.0f} < ${self.min_market_cap:.0f}",
            )
            return None

        signal = evaluate(history, self.config)
        if signal is None:
            return None

        signal_cap = signal.price * self.token_supply
        if signal_cap < self.alert_min_market_cap:
            logger.debug(
                f"Signal for {instrument.display_name} dropped, market cap ${signal_cap:.0f} below alert floor"
            )
            return None

        self.signal_count += 1
        self.last_signal = signal
        logger.info(
            f"Signal: {instrument.display_name} @ {signal.price:.8g} "
            f"(EMA {signal.fast_ema:.4e}/{signal.slow_ema:.4e}, RSI {signal.rsi:.1f})"
        )
        try:
            await self.sink.send_signal(signal, instrument)
        except Exception as e:
            logger.error(f"Signal delivery error for {instrument.display_name}: {e}")
        return signal
