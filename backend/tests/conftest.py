"""
Shared fixtures - settings, a loaded symbol master and a store on a fake clock
"""

import pytest

from marketpulse.core.config import Settings
from marketpulse.state.store import StateStore
from marketpulse.symbols.symbol_master import SymbolMaster

from tests.mocks import FakeClock, StaticListingSource, sample_listings


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        FINNHUB_API_KEY="finnhub-test",
        FMP_API_KEY="fmp-test",
        PROVIDER_MAX_RETRIES=0,
        SCANNER_SEED_SYMBOLS=["NVDA", "AAPL"],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def listing_source():
    return StaticListingSource(sample_listings())


@pytest.fixture
def master(listing_source, clock):
    symbol_master = SymbolMaster(listing_source, clock=clock)
    symbol_master.load_listings(listing_source.listings)
    return symbol_master


@pytest.fixture
def store(clock):
    return StateStore(clock_ms=clock.ms)
