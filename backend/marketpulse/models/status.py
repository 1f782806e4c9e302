"""
Connection status and provider health
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from marketpulse.models.market_data import MarketPhase


class WsState(str, Enum):
    CONNECTING = "CONNECTING"
    LIVE = "LIVE"
    DEGRADED = "DEGRADED"
    OFFLINE = "OFFLINE"


@dataclass(frozen=True)
class SessionStatus:
    ws_state: WsState = WsState.OFFLINE
    last_heartbeat: Optional[int] = None
    subscribed_count: int = 0
    market_phase: MarketPhase = MarketPhase.CLOSED
    reconnect_attempts: int = 0
    polling_active: bool = False

    def to_dict(self) -> dict:
        return {
            "ws_state": self.ws_state.value,
            "last_heartbeat": self.last_heartbeat,
            "subscribed_count": self.subscribed_count,
            "market_phase": self.market_phase.value,
            "reconnect_attempts": self.reconnect_attempts,
            "polling_active": self.polling_active,
        }


class ProviderStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    BACKOFF = "backoff"
    DISABLED = "disabled"


@dataclass
class ProviderHealth:
    provider: str
    status: ProviderStatus = ProviderStatus.HEALTHY
    last_success: Optional[float] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0
    backoff_until: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "status": self.status.value,
            "last_success": self.last_success,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "backoff_until": self.backoff_until,
        }
