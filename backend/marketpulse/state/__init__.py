"""
In-memory state store
"""

from marketpulse.state.store import StateStore, StoreDiff, StoreWatcher
from marketpulse.state.tick_buffer import TickBuffer

__all__ = ["StateStore", "StoreDiff", "StoreWatcher", "TickBuffer"]
