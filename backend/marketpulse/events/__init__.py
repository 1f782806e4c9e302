"""
Scheduling and coordination components for the scanner
"""

from .broadcast import BroadcastChannel, ChannelRegistry, default_registry
from .leader_election import LeaderElection
from .market_calendar import MarketCalendar
from .scanner_scheduler import ScannerScheduler

__all__ = [
    "BroadcastChannel",
    "ChannelRegistry",
    "default_registry",
    "LeaderElection",
    "MarketCalendar",
    "ScannerScheduler",
]
