"""
MarketPulse - live market data plane for the real-time dashboard
"""

__version__ = "1.0.0"
