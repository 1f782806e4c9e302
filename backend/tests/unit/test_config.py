"""
Test application settings
"""

from marketpulse.core.config import Settings


class TestSettings:
    """Test Settings defaults and validators"""

    def test_defaults(self):
        """Test documented defaults"""
        settings = Settings(_env_file=None)

        assert settings.PROVIDER_PRIORITY == ["fmp", "finnhub", "alphavantage", "iex"]
        assert settings.TICK_BUFFER_CAPACITY == 300
        assert settings.TICK_REORDER_TOLERANCE_MS == 2000
        assert settings.HEARTBEAT_INTERVAL == 25.0
        assert settings.POLL_INTERVAL == 5.0
        assert settings.RECONNECT_MAX_ATTEMPTS == 10
        assert settings.NEWS_DEDUP_WINDOW_MINUTES == 5
        assert settings.RESOLVER_FUZZY_THRESHOLD == 0.82
        assert len(settings.SCANNER_SEED_SYMBOLS) == 20

    def test_comma_separated_lists(self):
        """Test comma-separated strings are split and normalized"""
        settings = Settings(
            _env_file=None,
            PROVIDER_PRIORITY="FINNHUB, fmp",
            SCANNER_SEED_SYMBOLS="aapl,msft, ",
            MARKET_HOLIDAYS="2026-10-16",
        )

        assert settings.PROVIDER_PRIORITY == ["finnhub", "fmp"]
        assert settings.SCANNER_SEED_SYMBOLS == ["AAPL", "MSFT"]
        assert settings.MARKET_HOLIDAYS == ["2026-10-16"]

    def test_cadence_override_keys_uppercased(self):
        settings = Settings(_env_file=None, SCANNER_CADENCE_OVERRIDES={"regular": 5})

        assert settings.SCANNER_CADENCE_OVERRIDES == {"REGULAR": 5.0}

    def test_environment_override(self, monkeypatch):
        """Test scalar settings read from the environment"""
        monkeypatch.setenv("POLL_INTERVAL", "2.5")
        monkeypatch.setenv("FMP_API_KEY", "from-env")

        settings = Settings(_env_file=None)

        assert settings.POLL_INTERVAL == 2.5
        assert settings.provider_keys["fmp"] == "from-env"

    def test_provider_priority(self):
        """Test unknown providers rank after configured ones"""
        settings = Settings(_env_file=None, PROVIDER_PRIORITY=["finnhub", "fmp"])

        assert settings.provider_priority("finnhub") == 1
        assert settings.provider_priority("fmp") == 2
        assert settings.provider_priority("iex") == 3
