"""
Test alias generation and the symbol master catalog
"""

import asyncio

import pytest

from marketpulse.core.exceptions import SymbolMasterUnavailableError, UnauthorizedError
from marketpulse.models.market_data import Exchange, SecurityType, SymbolListing
from marketpulse.symbols.aliases import (
    generate_aliases,
    is_stopword,
    normalize_text,
    strip_corporate_suffixes,
    tokenize,
)
from marketpulse.symbols.symbol_master import AliasKind, SymbolMaster

from tests.mocks import StaticListingSource, sample_listings


class TestAliases:
    """Test text normalization and alias derivation"""

    def test_normalize_text(self):
        assert normalize_text("Apple's iPhone 17, launched!") == "apple iphone 17 launched"
        assert normalize_text("AT&T Inc.") == "at t inc"
        assert normalize_text("") == ""
        assert tokenize("Tesla, Inc.") == ["tesla", "inc"]

    def test_strip_corporate_suffixes(self):
        assert strip_corporate_suffixes("apple inc") == "apple"
        assert strip_corporate_suffixes("the walt disney company") == "walt disney"
        assert strip_corporate_suffixes("jpmorgan chase co") == "jpmorgan chase"
        # A lone suffix-like word is kept
        assert strip_corporate_suffixes("group") == "group"

    def test_generate_aliases(self):
        aliases = generate_aliases("AAPL", "Apple Inc.")

        assert aliases == frozenset({"AAPL", "apple inc", "apple", "appleinc"})

    def test_punctuated_names(self):
        aliases = generate_aliases("T", "AT&T Inc.")

        assert "att inc" in aliases
        assert "attinc" in aliases
        assert "at t" in aliases
        assert "T" in aliases
        # Compact forms shorter than four characters are too ambiguous
        assert "att" not in aliases

    def test_stopword_names_are_not_aliases(self):
        aliases = generate_aliases("GNRL", "General")

        assert aliases == frozenset({"GNRL"})
        assert is_stopword("general")
        assert is_stopword("CEO")
        assert is_stopword("merger", extra=["merger"])
        assert not is_stopword("apple")


class TestSymbolMasterLoad:
    """Test loading, filtering and snapshot publication"""

    @pytest.mark.asyncio
    async def test_load_filters_listings(self, listing_source, clock):
        master = SymbolMaster(listing_source, clock=clock)

        assert await master.load() is True
        symbols = master.snapshot.symbols
        assert set(symbols) == {"AAPL", "MSFT", "NVDA", "AMD", "TSLA", "JPM", "QQQ"}
        assert "US" not in symbols
        assert "BRK.B" not in symbols
        assert master.version == 1
        assert master.snapshot.sources == ("fmp",)

    @pytest.mark.asyncio
    async def test_first_load_failure_is_fatal(self, clock):
        source = StaticListingSource()
        source.error = UnauthorizedError("fmp", "rejected")
        master = SymbolMaster(source, clock=clock)

        with pytest.raises(SymbolMasterUnavailableError):
            await master.load()
        assert not master.is_loaded
        assert master.load_failures == 1
        with pytest.raises(SymbolMasterUnavailableError):
            master.snapshot

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_snapshot(self, listing_source, clock):
        master = SymbolMaster(listing_source, clock=clock)
        await master.load()
        previous = master.snapshot

        listing_source.error = UnauthorizedError("fmp", "rejected")
        assert await master.load() is False

        assert master.snapshot is previous
        assert master.version == 1
        assert master.last_error == "rejected"

    @pytest.mark.asyncio
    async def test_empty_listing_is_a_failure(self, clock):
        master = SymbolMaster(StaticListingSource([]), clock=clock)

        with pytest.raises(SymbolMasterUnavailableError):
            await master.load()

    @pytest.mark.asyncio
    async def test_load_timeout(self, clock):
        class SlowSource:
            async def list_symbols(self):
                await asyncio.sleep(10)

        master = SymbolMaster(SlowSource(), load_timeout=0.01, clock=clock)

        with pytest.raises(SymbolMasterUnavailableError):
            await master.load()

    def test_refresh_due(self, master, clock):
        assert not master.needs_refresh()
        clock.advance(24 * 3600)
        assert master.needs_refresh()

    def test_word_like_symbols_are_kept(self, clock):
        listings = sample_listings() + [
            SymbolListing("NOW", "ServiceNow, Inc.", "NYSE", SecurityType.STOCK, source="fmp"),
            SymbolListing("PM", "Philip Morris International Inc.", "NYSE", SecurityType.STOCK, source="fmp"),
        ]
        master = SymbolMaster(StaticListingSource(listings), clock=clock)
        master.load_listings(listings)

        assert master.is_active("NOW")
        assert master.is_active("PM")
        assert not master.is_active("US")
        assert master.search("ServiceNow")[0].symbol == "NOW"
        assert master.search("now")[0].symbol == "NOW"

    def test_duplicate_listings_merge(self, clock):
        master = SymbolMaster(StaticListingSource([]), clock=clock)
        master.load_listings(
            [
                SymbolListing("AAPL", "Apple Inc.", None, source="finnhub"),
                SymbolListing("AAPL", "Apple Incorporated", "NASDAQ", sector="Technology", source="fmp"),
            ]
        )
        apple = master.get_by_symbol("AAPL")

        assert apple.company_name == "Apple Inc."
        assert apple.exchange == Exchange.NASDAQ
        assert apple.sector == "Technology"


class TestSymbolMasterLookups:
    """Test lookups against a loaded snapshot"""

    def test_get_by_symbol(self, master):
        assert master.get_by_symbol(" aapl ").company_name == "Apple Inc."
        assert master.get_by_symbol("NOPE") is None
        assert master.is_active("MSFT")
        assert not master.is_active("US")

    def test_alias_kinds(self, master):
        matches = {(s.symbol, kind) for s, kind in master.alias_matches("apple")}
        assert matches == {("AAPL", AliasKind.CORE_NAME)}

        matches = {(s.symbol, kind) for s, kind in master.alias_matches("apple inc")}
        assert matches == {("AAPL", AliasKind.NAME)}

        assert [s.symbol for s in master.search_by_alias("appleinc")] == ["AAPL"]

    def test_core_names_and_prefix_index(self, master):
        assert master.core_name("MSFT") == "microsoft"
        assert "MSFT" in master.names_with_prefix("mic")
        assert master.names_with_prefix("zzz") == ()

    def test_by_exchange_and_sector(self, master):
        nasdaq = {s.symbol for s in master.get_by_exchange(Exchange.NASDAQ)}
        assert "JPM" not in nasdaq
        assert {"AAPL", "MSFT"} <= nasdaq
        assert [s.symbol for s in master.get_by_sector("financial services")] == ["JPM"]

    def test_search_ranking(self, master):
        results = master.search("MSFT")
        assert results[0].symbol == "MSFT"

        results = master.search("micro")
        assert {s.symbol for s in results} >= {"MSFT", "AMD"}

        assert master.search("   ") == []

    def test_search_filters(self, master):
        results = master.search("corporation", exchange=Exchange.NYSE)
        assert results == []

        etfs = master.search("qqq")
        assert etfs[0].symbol == "QQQ"
        assert etfs[0].type == SecurityType.ETF

    def test_stats(self, master):
        stats = master.get_stats()

        assert stats["loaded"] is True
        assert stats["total"] == 7
        assert stats["by_exchange"]["NYSE"] == 1
        assert stats["by_type"]["etf"] == 1
        assert stats["version"] == 1

    def test_unloaded_master(self, listing_source):
        master = SymbolMaster(listing_source)

        assert master.get_by_symbol("AAPL") is None
        assert list(master.alias_matches("apple")) == []
        assert master.search("apple") == []
        assert master.get_stats()["loaded"] is False
