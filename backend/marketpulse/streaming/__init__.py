from marketpulse.streaming.polling import PollingFallback
from marketpulse.streaming.tick_stream import SessionState, TickStreamSession

__all__ = ["PollingFallback", "SessionState", "TickStreamSession"]
