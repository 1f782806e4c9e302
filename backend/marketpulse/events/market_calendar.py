"""
US equity market calendar: trading phases in Eastern time plus holidays
"""

from datetime import date, datetime, time
from typing import Iterable, Optional, Set

import pytz

from marketpulse.models.market_data import MarketPhase

# NYSE full-day closures
DEFAULT_HOLIDAYS = frozenset(
    date.fromisoformat(day)
    for day in (
        "2025-01-01", "2025-01-09", "2025-01-20", "2025-02-17", "2025-04-18", "2025-05-26",
        "2025-06-19", "2025-07-04", "2025-09-01", "2025-11-27", "2025-12-25",
        "2026-01-01", "2026-01-19", "2026-02-16", "2026-04-03", "2026-05-25", "2026-06-19",
        "2026-07-03", "2026-09-07", "2026-11-26", "2026-12-25",
        "2027-01-01", "2027-01-18", "2027-02-15", "2027-03-26", "2027-05-31", "2027-06-18",
        "2027-07-05", "2027-09-06", "2027-11-25", "2027-12-24",
    )
)


class MarketCalendar:
    """Maps a wall-clock instant to a MarketPhase"""

    def __init__(self, timezone: str = "America/New_York", holidays: Optional[Iterable] = None):
        self.market_timezone = pytz.timezone(timezone)
        self.pre_market_start = time(4, 0)  # 4:00 AM ET
        self.market_open_time = time(9, 30)  # 9:30 AM ET
        self.market_close_time = time(16, 0)  # 4:00 PM ET
        self.after_hours_end = time(20, 0)  # 8:00 PM ET

        extra: Set[date] = set()
        for day in holidays or ():
            extra.add(day if isinstance(day, date) else date.fromisoformat(str(day)))
        self.holidays = DEFAULT_HOLIDAYS | frozenset(extra)

    @classmethod
    def from_settings(cls, settings) -> "MarketCalendar":
        return cls(settings.MARKET_TIMEZONE, settings.MARKET_HOLIDAYS)

    def localize(self, now: Optional[datetime] = None) -> datetime:
        now = now or datetime.now(pytz.utc)
        if now.tzinfo is None:
            now = pytz.utc.localize(now)
        return now.astimezone(self.market_timezone)

    def is_trading_day(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self.holidays

    def phase_at(self, now: Optional[datetime] = None) -> MarketPhase:
        local = self.localize(now)
        if not self.is_trading_day(local.date()):
            return MarketPhase.CLOSED
        current = local.time()
        if self.pre_market_start <= current < self.market_open_time:
            return MarketPhase.PRE
        if self.market_open_time <= current < self.market_close_time:
            return MarketPhase.REGULAR
        if self.market_close_time <= current < self.after_hours_end:
            return MarketPhase.POST
        return MarketPhase.CLOSED

    def is_market_hours(self, now: Optional[datetime] = None) -> bool:
        return self.phase_at(now) == MarketPhase.REGULAR
