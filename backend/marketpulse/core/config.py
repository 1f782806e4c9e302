"""
Application configuration settings
"""

from functools import lru_cache
from typing import Dict, List, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Market data plane settings"""

    # Project
    PROJECT_NAME: str = "MarketPulse - Live Market Data Plane"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"

    # Provider credentials (an empty key disables the adapter)
    FINNHUB_API_KEY: str = ""
    FMP_API_KEY: str = ""
    ALPHAVANTAGE_API_KEY: str = ""
    IEX_API_KEY: str = ""

    # Provider endpoints
    FINNHUB_BASE_URL: str = "https://finnhub.io/api/v1"
    FMP_BASE_URL: str = "https://financialmodelingprep.com/api/v3"
    ALPHAVANTAGE_BASE_URL: str = "https://www.alphavantage.co/query"
    IEX_BASE_URL: str = "https://cloud.iexapis.com/stable"

    # Provider rate limits (requests per minute) and burst sizes
    FINNHUB_RATE_LIMIT_RPM: int = 60
    FINNHUB_BURST: int = 5
    FMP_RATE_LIMIT_RPM: int = 300
    FMP_BURST: int = 10
    ALPHAVANTAGE_RATE_LIMIT_RPM: int = 5
    ALPHAVANTAGE_BURST: int = 1
    IEX_RATE_LIMIT_RPM: int = 100
    IEX_BURST: int = 5
    RATE_LIMIT_MAX_WAIT: float = 1.0

    # Provider retry / timeout policy
    PROVIDER_PRIORITY: List[str] = ["fmp", "finnhub", "alphavantage", "iex"]
    PROVIDER_MAX_RETRIES: int = 2
    PROVIDER_RETRY_BASE_DELAY: float = 0.3
    PROVIDER_RETRY_MAX_DELAY: float = 5.0
    NEWS_TIMEOUT: float = 5.0
    QUOTES_TIMEOUT: float = 3.0
    MASTER_TIMEOUT: float = 10.0

    # News
    NEWS_LIMIT: int = 100
    NEWS_MAX_ITEMS: int = 10_000
    NEWS_RETENTION_DAYS: int = 14
    NEWS_DEDUP_WINDOW_MINUTES: int = 5
    NEWS_REFRESH_INTERVAL: float = 60.0

    # Ticker resolver (empty lists fall back to the built-in vocabularies)
    RESOLVER_STOPWORDS: List[str] = []
    RESOLVER_GENERAL_VOCABULARY: List[str] = []
    RESOLVER_CACHE_SIZE: int = 10_000
    RESOLVER_CACHE_TTL: int = 24 * 60 * 60
    RESOLVER_FUZZY_THRESHOLD: float = 0.82

    # Tick stream
    STREAM_URL: str = "wss://ws.finnhub.io"
    TICK_BUFFER_CAPACITY: int = 300
    TICK_REORDER_TOLERANCE_MS: int = 2000
    HEARTBEAT_INTERVAL: float = 25.0
    POLL_INTERVAL: float = 5.0
    RECONNECT_BASE_DELAY: float = 0.5
    RECONNECT_MAX_DELAY: float = 10.0
    RECONNECT_MAX_ATTEMPTS: int = 10

    # Scanner
    SCANNER_CADENCE_OVERRIDES: Dict[str, float] = {}
    SCANNER_LIMIT: int = 50
    SCANNER_SEED_SYMBOLS: List[str] = [
        "AAPL", "NVDA", "TSLA", "MSFT", "GOOGL", "AMZN", "META", "NFLX", "AMD", "INTC",
        "SPY", "QQQ", "IWM", "VTI", "ARKK", "TQQQ", "SOXL", "TMF", "UPRO", "TNA",
    ]
    TOP_GAINERS_LIMIT: int = 20
    MOVERS_MIN_PCT: float = 2.0
    MOVERS_MAX_PCT: float = 100.0
    RVOL_THRESHOLD: float = 2.0
    UNUSUAL_VOLUME_RATIO: float = 2.0
    RANGE_BREAK_MIN_PCT: float = 2.0
    GAP_MIN_PCT: float = 2.0
    NEWS_MOMENTUM_MIN_SCORE: float = 30.0
    LEADER_CHANNEL: str = "marketpulse-scanner"
    LEADER_HEARTBEAT_INTERVAL: float = 30.0
    LEADER_TIMEOUT: float = 120.0
    PHASE_REFRESH_INTERVAL: float = 60.0

    # Market calendar
    MARKET_TIMEZONE: str = "America/New_York"
    MARKET_HOLIDAYS: List[str] = []

    # Symbol master
    SYMBOL_MASTER_REFRESH_HOURS: int = 24

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @field_validator(
        "PROVIDER_PRIORITY",
        "SCANNER_SEED_SYMBOLS",
        "RESOLVER_STOPWORDS",
        "RESOLVER_GENERAL_VOCABULARY",
        "MARKET_HOLIDAYS",
        mode="before",
    )
    @classmethod
    def assemble_name_list(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        return v

    @field_validator("PROVIDER_PRIORITY")
    @classmethod
    def normalize_provider_names(cls, v: List[str]) -> List[str]:
        return [name.lower() for name in v]

    @field_validator("SCANNER_SEED_SYMBOLS")
    @classmethod
    def normalize_seed_symbols(cls, v: List[str]) -> List[str]:
        return [symbol.upper() for symbol in v]

    @field_validator("SCANNER_CADENCE_OVERRIDES")
    @classmethod
    def normalize_cadence_keys(cls, v: Dict[str, float]) -> Dict[str, float]:
        return {phase.upper(): float(seconds) for phase, seconds in v.items()}

    @property
    def provider_keys(self) -> Dict[str, str]:
        return {
            "finnhub": self.FINNHUB_API_KEY,
            "fmp": self.FMP_API_KEY,
            "alphavantage": self.ALPHAVANTAGE_API_KEY,
            "iex": self.IEX_API_KEY,
        }

    def provider_priority(self, name: str) -> int:
        """Lower number wins; unknown providers sort after configured ones"""
        try:
            return self.PROVIDER_PRIORITY.index(name) + 1
        except ValueError:
            return len(self.PROVIDER_PRIORITY) + 1

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get settings instance - for dependency injection"""
    return Settings()
