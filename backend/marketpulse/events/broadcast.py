"""
Named in-process broadcast channels

Every channel opened under the same name on the same registry receives the
messages posted by the others (never its own), synchronously and in post
order.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)


class ChannelMessageType(Enum):
    ANNOUNCE = "announce"
    HEARTBEAT = "heartbeat"
    LEAVE = "leave"


@dataclass(frozen=True)
class ChannelMessage:
    message_type: ChannelMessageType
    sender_id: str
    announced_at: float
    sent_at: float
    payload: Dict[str, Any] = field(default_factory=dict)


MessageHandler = Callable[[ChannelMessage], None]


class ChannelRegistry:
    """Process-local rendezvous for channels sharing a name"""

    def __init__(self):
        self._channels: Dict[str, List["BroadcastChannel"]] = {}

    def open(self, name: str, handler: Optional[MessageHandler] = None) -> "BroadcastChannel":
        channel = BroadcastChannel(name, self, handler)
        self._channels.setdefault(name, []).append(channel)
        return channel

    def _detach(self, channel: "BroadcastChannel") -> None:
        members = self._channels.get(channel.name, [])
        if channel in members:
            members.remove(channel)
        if not members:
            self._channels.pop(channel.name, None)

    def _deliver(self, sender: "BroadcastChannel", message: ChannelMessage) -> int:
        delivered = 0
        for channel in list(self._channels.get(sender.name, [])):
            if channel is sender or channel.handler is None:
                continue
            try:
                channel.handler(message)
                delivered += 1
            except Exception:
                logger.exception(
                    "Broadcast handler failed", channel=sender.name, message=message.message_type.value
                )
        return delivered

    def members(self, name: str) -> int:
        return len(self._channels.get(name, []))


class BroadcastChannel:
    def __init__(self, name: str, registry: ChannelRegistry, handler: Optional[MessageHandler] = None):
        self.name = name
        self.handler = handler
        self._registry = registry
        self.closed = False

    def post(self, message: ChannelMessage) -> int:
        if self.closed:
            return 0
        return self._registry._deliver(self, message)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._registry._detach(self)


default_registry = ChannelRegistry()
