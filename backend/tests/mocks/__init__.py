"""
Mock infrastructure for MarketPulse testing

- FakeClock: controllable wall clock in seconds and milliseconds
- StubAdapter: provider adapter serving canned data through the real retry plumbing
- StaticListingSource: symbol master source returning a fixed listing set
- FakeConnection / FakeConnector: scripted trade socket
"""

from .mock_providers import (
    FakeClock,
    StaticListingSource,
    StubAdapter,
    make_news,
    sample_listings,
)
from .mock_stream import FakeConnection, FakeConnector, wait_until

__all__ = [
    "FakeClock",
    "FakeConnection",
    "FakeConnector",
    "StaticListingSource",
    "StubAdapter",
    "make_news",
    "sample_listings",
    "wait_until",
]
