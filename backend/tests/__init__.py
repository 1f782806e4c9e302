"""
MarketPulse Test Suite

Tests cover:
- Unit tests for core plumbing and every market data component
- Integration tests for the assembled market data plane

Test Structure:
- tests/unit/ - Unit tests for individual components
- tests/integration/ - Plane lifecycle and end-to-end data flow
- tests/mocks/ - Deterministic fakes for providers, clocks and the trade socket

Usage:
    pytest backend/tests/                   # Run all tests
    pytest backend/tests/unit/              # Run unit tests only
    pytest backend/tests/integration/       # Run integration tests only
    pytest -k "resolver"                    # Run tests matching pattern
"""
