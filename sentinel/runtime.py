"""Wiring of clients, stores, and services into one runtime."""

import asyncio
import logging
from datetime import datetime, timezone

from sentinel.clients import (
    DexScreenerClient,
    GeckoTerminalClient,
    JupiterPriceClient,
    MoralisClient,
    TelegramNotifier,
)
from sentinel.config import Settings
from sentinel.services import (
    BackfillQueue,
    CandleProcessor,
    DiscoveryService,
    GapReconciler,
    MaintenanceService,
    PriceSampler,
    PruneThresholds,
    Pruner,
    ReportService,
    Scheduler,
)
from sentinel.storage import (
    BackfillTaskRepository,
    CandleRepository,
    Database,
    get_database,
    InstrumentRepository,
    MemoryBackfillTaskStore,
    MemoryCandleStore,
    MemoryInstrumentStore,
)
from sentinel.storage.protocols import BackfillTaskStore, CandleStore, InstrumentStore
from sentinel_core.aggregator import CandleAggregator, closed_period_start
from sentinel_core.dedup import DedupGate
from sentinel_core.registry import InstrumentRegistry

logger = logging.getLogger(__name__)

# Candle clock fires slightly after each boundary
CLOCK_OFFSET_SECONDS = 0.05


class Runtime:
    """Everything the running service owns.

    Stores and clients may be injected (tests); by default they are built
    from the settings.
    """

    def __init__(
        self,
        settings: Settings,
        candles: CandleStore | None = None,
        instruments: InstrumentStore | None = None,
        tasks: BackfillTaskStore | None = None,
        gecko: GeckoTerminalClient | None = None,
        moralis: MoralisClient | None = None,
        jupiter: JupiterPriceClient | None = None,
        dexscreener: DexScreenerClient | None = None,
        notifier: TelegramNotifier | None = None,
    ):
        self.settings = settings
        self.database: Database | None = None

        if candles is None or instruments is None or tasks is None:
            if settings.uses_memory_store:
                candles = candles if candles is not None else MemoryCandleStore()
                instruments = instruments if instruments is not None else MemoryInstrumentStore()
                tasks = tasks if tasks is not None else MemoryBackfillTaskStore()
            else:
                self.database = get_database()
                candles = candles if candles is not None else CandleRepository()
                instruments = instruments if instruments is not None else InstrumentRepository()
                tasks = tasks if tasks is not None else BackfillTaskRepository()
        self.candles = candles
        self.instruments = instruments
        self.tasks = tasks

        self.gecko = gecko or GeckoTerminalClient(
            base_url=settings.gecko_base_url,
            network=settings.gecko_network,
            min_interval=settings.gecko_min_interval_seconds,
        )
        self.moralis = moralis or MoralisClient(
            api_key=settings.moralis_api_key,
            base_url=settings.moralis_base_url,
            exchanges=settings.discovery_exchanges,
        )
        self.jupiter = jupiter or JupiterPriceClient(
            base_url=settings.jupiter_base_url,
            api_key=settings.jupiter_api_key,
        )
        self.dexscreener = dexscreener or DexScreenerClient(base_url=settings.dexscreener_base_url)
        self.notifier = notifier or TelegramNotifier(
            bot_token=settings.telegram_bot_token,
            chat_id=settings.telegram_chat_id,
            token_supply=settings.token_supply,
        )

        self.evaluator_config = settings.evaluator_config()
        self.registry = InstrumentRegistry()
        self.aggregator = CandleAggregator(self.registry, settings.candle_period_seconds)
        self.dedup = DedupGate(settings.dedup_cap)

        self.queue = BackfillQueue(
            tasks=self.tasks,
            candles=self.candles,
            instruments=self.instruments,
            source=self.gecko,
            aggregator=self.aggregator,
            max_attempts=settings.backfill_max_attempts,
            retry_cooldown_seconds=settings.backfill_retry_cooldown_seconds,
            fetch_limit=settings.backfill_fetch_limit,
        )
        self.reconciler = GapReconciler(
            candles=self.candles,
            instruments=self.instruments,
            queue=self.queue,
            source=self.gecko,
            gap_threshold_seconds=settings.gap_threshold_seconds,
            fetch_limit=settings.backfill_fetch_limit,
        )
        self.pruner = Pruner(self.aggregator, self.queue, self.instruments)
        self.pruner.on_prune(self.notifier.forget)
        self.notifier.on_alert(self.instruments.save_alert)

        thresholds = PruneThresholds(
            min_market_cap=settings.min_market_cap_usd,
            mature_min_market_cap=settings.mature_min_market_cap_usd,
            mature_age_hours=settings.mature_age_hours,
            min_volume_5m=settings.min_volume_5m_usd,
        )
        self.maintenance = MaintenanceService(
            aggregator=self.aggregator,
            candles=self.candles,
            market_data=self.dexscreener,
            pruner=self.pruner,
            thresholds=thresholds,
            token_supply=settings.token_supply,
        )
        self.processor = CandleProcessor(
            candles=self.candles,
            instruments=self.instruments,
            aggregator=self.aggregator,
            pruner=self.pruner,
            sink=self.notifier,
            config=self.evaluator_config,
            history_limit=settings.history_limit,
            token_supply=settings.token_supply,
            min_market_cap=settings.min_market_cap_usd,
            alert_min_market_cap=settings.alert_min_market_cap_usd,
        )
        self.aggregator.on_candle(self.processor.handle)

        self.discovery = DiscoveryService(
            source=self.moralis,
            market_data=self.dexscreener,
            history=self.gecko,
            candles=self.candles,
            instruments=self.instruments,
            aggregator=self.aggregator,
            queue=self.queue,
            dedup=self.dedup,
            limit=settings.discovery_limit,
            min_market_cap=settings.min_market_cap_usd,
            fetch_limit=settings.backfill_fetch_limit,
        )
        self.sampler = PriceSampler(self.jupiter, self.aggregator)
        self.reports = ReportService(
            instruments=self.instruments,
            candles=self.candles,
            aggregator=self.aggregator,
            queue=self.queue,
            config=self.evaluator_config,
            window_hours=settings.report_window_hours,
            top_n=settings.report_top_n,
            token_supply=settings.token_supply,
        )

        self.scheduler = Scheduler()
        self._first_discovery = True
        self._gap_fill_task: asyncio.Task | None = None
        self._register_tasks()

    # ------------------------------------------------------------------
    # Periodic jobs
    # ------------------------------------------------------------------

    def _register_tasks(self) -> None:
        s = self.settings
        self.scheduler.add(
            "candle_clock",
            self.close_candles,
            s.candle_period_seconds,
            align=True,
            align_offset=CLOCK_OFFSET_SECONDS,
        )
        self.scheduler.add("price_sampler", self.sampler.poll, s.price_poll_interval_seconds, run_on_start=True)
        self.scheduler.add("discovery", self.discover_and_drain, s.discovery_interval_seconds, run_on_start=True)
        self.scheduler.add("maintenance", self.maintenance.run, s.maintenance_interval_seconds, run_on_start=True)
        self.scheduler.add("report", self.send_report, s.report_interval_seconds)

    async def close_candles(self) -> None:
        period = closed_period_start(datetime.now(timezone.utc), self.settings.candle_period_seconds)
        await self.aggregator.flush(period)

    async def discover_and_drain(self) -> None:
        """Discovery cycle followed by a queue drain.

        The first cycle after startup drains with the larger startup batch.
        A failed discovery still drains.
        """
        batch = self.settings.backfill_startup_batch_size if self._first_discovery else self.settings.backfill_batch_size
        self._first_discovery = False
        try:
            await self.discovery.run_cycle()
        finally:
            await self.queue.drain(batch)

    async def send_report(self) -> None:
        report = await self.reports.gainers_report()
        if report:
            await self.notifier.send_message(report)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def restore_tracked(self) -> int:
        """Register every active instrument for live tracking.

        Persisted alert history is handed back to the notifier so market cap
        deltas carry across restarts.
        """
        instruments = await self.instruments.list_active()
        for instrument in instruments:
            self.dedup.add(instrument.id)
            self.aggregator.add_token(instrument)
        alerts = await self.instruments.load_alerts()
        self.notifier.restore_alerts(alerts)
        logger.info(f"Restored {len(instruments)} tracked instrument(s), {len(alerts)} with alert history")
        return len(instruments)

    async def _gap_fill(self) -> None:
        try:
            await self.reconciler.gap_fill_on_startup()
        except Exception as e:
            logger.error(f"Gap fill error: {e}")

    async def start(self, run_scheduler: bool = True) -> None:
        """Startup sequence: tables, audit, restore, gap fill, scheduler."""
        if self.database is not None:
            await self.database.create_tables()
            logger.info("Database initialized")

        await self.reconciler.audit_and_enqueue_missing()
        await self.restore_tracked()
        self._gap_fill_task = asyncio.create_task(self._gap_fill(), name="gap-fill")

        await self.notifier.send_message(await self.reports.status_message())
        if run_scheduler:
            self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self._gap_fill_task and not self._gap_fill_task.done():
            self._gap_fill_task.cancel()
            await asyncio.gather(self._gap_fill_task, return_exceptions=True)

        for client in (self.gecko, self.moralis, self.jupiter, self.dexscreener, self.notifier):
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Error closing {client.__class__.__name__}: {e}")

        if self.database is not None:
            await self.database.close()
            logger.info("Database connections closed")
