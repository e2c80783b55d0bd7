"""Application configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from sentinel_core.models import EvaluatorConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database ("memory://" keeps everything in process)
    database_url: str = "postgresql://localhost/sentinel"

    # Candles
    candle_period_seconds: int = 15
    history_limit: int = 60

    # Evaluator (EMA crossover + RSI + optional volume spike)
    ema_fast_period: int = 9
    ema_slow_period: int = 20
    rsi_period: int = 14
    rsi_threshold: float = 50.0
    require_volume_spike: bool = False
    volume_window: int = 10
    volume_min_samples: int = 5
    volume_multiplier: float = 1.5

    # Backfill queue
    backfill_max_attempts: int = 5
    backfill_retry_cooldown_seconds: int = 120
    backfill_fetch_limit: int = 300
    backfill_batch_size: int = 5
    backfill_startup_batch_size: int = 10
    gap_threshold_seconds: int = 60

    # Discovery
    discovery_interval_seconds: int = 60
    discovery_limit: int = 20
    discovery_exchanges: list[str] = ["pumpfun"]
    dedup_cap: int = 5000

    # Live sampler / periodic jobs
    price_poll_interval_seconds: int = 15
    maintenance_interval_seconds: int = 3600
    report_interval_seconds: int = 3600
    report_window_hours: int = 6
    report_top_n: int = 5

    # Valuation and pruning (one canonical threshold set)
    token_supply: float = 1_000_000_000
    min_market_cap_usd: float = 2000.0
    mature_min_market_cap_usd: float = 5000.0
    mature_age_hours: float = 2.0
    min_volume_5m_usd: float = 100.0
    alert_min_market_cap_usd: float = 5000.0

    # Upstream providers
    gecko_base_url: str = "https://api.geckoterminal.com/api/v2"
    gecko_network: str = "solana"
    gecko_min_interval_seconds: float = 2.5
    moralis_base_url: str = "https://solana-gateway.moralis.io"
    moralis_api_key: str = ""
    jupiter_base_url: str = "https://api.jup.ag/price/v3"
    jupiter_api_key: str = ""
    dexscreener_base_url: str = "https://api.dexscreener.com/tokens/v1/solana"

    # Notifications
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    @property
    def uses_memory_store(self) -> bool:
        return self.database_url.startswith("memory://")

    def evaluator_config(self) -> EvaluatorConfig:
        """Build the evaluator configuration passed to every evaluation."""
        return EvaluatorConfig(
            fast_period=self.ema_fast_period,
            slow_period=self.ema_slow_period,
            rsi_period=self.rsi_period,
            rsi_threshold=self.rsi_threshold,
            require_volume_spike=self.require_volume_spike,
            volume_window=self.volume_window,
            volume_min_samples=self.volume_min_samples,
            volume_multiplier=self.volume_multiplier,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
