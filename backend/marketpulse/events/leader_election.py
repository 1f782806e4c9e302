"""
Leader election over a named broadcast channel

Each instance announces itself with the time it joined. The instance with
the oldest announcement (instance id breaks ties) leads. Everyone sends
heartbeats; a peer silent for longer than the timeout is forgotten, which
re-runs the election.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import structlog

from marketpulse.events.broadcast import (
    BroadcastChannel,
    ChannelMessage,
    ChannelMessageType,
    ChannelRegistry,
    default_registry,
)

logger = structlog.get_logger(__name__)


@dataclass
class Peer:
    instance_id: str
    announced_at: float
    last_seen: float


class LeaderElection:
    def __init__(
        self,
        channel_name: str = "marketpulse-scanner",
        registry: ChannelRegistry = default_registry,
        instance_id: Optional[str] = None,
        heartbeat_interval: float = 30.0,
        timeout: float = 120.0,
        clock: Callable[[], float] = time.time,
        on_change: Optional[Callable[[bool], None]] = None,
    ):
        self.channel_name = channel_name
        self.registry = registry
        self.instance_id = instance_id or uuid.uuid4().hex
        self.heartbeat_interval = heartbeat_interval
        self.timeout = timeout
        self._clock = clock
        self.on_change = on_change

        self.announced_at: Optional[float] = None
        self.peers: Dict[str, Peer] = {}
        self.leader_id: Optional[str] = None
        self._channel: Optional[BroadcastChannel] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_leader(self) -> bool:
        return self.leader_id is not None and self.leader_id == self.instance_id

    def join(self) -> None:
        """Open the channel and announce; safe to call outside an event loop"""
        if self._channel is not None:
            return
        self.announced_at = self._clock()
        self._channel = self.registry.open(self.channel_name, self._on_message)
        self._post(ChannelMessageType.ANNOUNCE)
        self._evaluate()

    def start(self) -> None:
        self.join()
        if self._task is None:
            self._task = asyncio.create_task(self._heartbeat_loop(), name="leader-heartbeat")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.leave()

    def leave(self) -> None:
        if self._channel is None:
            return
        self._post(ChannelMessageType.LEAVE)
        self._channel.close()
        self._channel = None
        self.peers.clear()
        self._set_leader(None)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self.heartbeat()

    def heartbeat(self) -> None:
        """Send a heartbeat, forget silent peers and re-evaluate"""
        if self._channel is None:
            return
        self._post(ChannelMessageType.HEARTBEAT)
        now = self._clock()
        for peer_id, peer in list(self.peers.items()):
            if now - peer.last_seen > self.timeout:
                logger.info(
                    "Scanner peer timed out", peer=peer_id, silent_seconds=round(now - peer.last_seen, 1)
                )
                del self.peers[peer_id]
        self._evaluate()

    def _post(self, message_type: ChannelMessageType, **payload) -> None:
        self._channel.post(
            ChannelMessage(
                message_type=message_type,
                sender_id=self.instance_id,
                announced_at=self.announced_at,
                sent_at=self._clock(),
                payload=payload,
            )
        )

    def _on_message(self, message: ChannelMessage) -> None:
        if message.sender_id == self.instance_id:
            return
        if message.message_type == ChannelMessageType.LEAVE:
            self.peers.pop(message.sender_id, None)
        else:
            self.peers[message.sender_id] = Peer(
                message.sender_id, message.announced_at, self._clock()
            )
            if message.message_type == ChannelMessageType.ANNOUNCE and not message.payload.get("reply"):
                # Let the newcomer learn about us immediately
                self._post(ChannelMessageType.ANNOUNCE, reply=True)
        self._evaluate()

    def _evaluate(self) -> None:
        if self.announced_at is None:
            return
        candidates: Dict[str, Tuple[float, str]] = {
            self.instance_id: (self.announced_at, self.instance_id)
        }
        for peer in self.peers.values():
            candidates[peer.instance_id] = (peer.announced_at, peer.instance_id)
        self._set_leader(min(candidates.values())[1])

    def _set_leader(self, leader_id: Optional[str]) -> None:
        if leader_id == self.leader_id:
            return
        was_leader = self.is_leader
        self.leader_id = leader_id
        if self.is_leader != was_leader:
            logger.info(
                "Scanner leadership changed",
                instance=self.instance_id,
                is_leader=self.is_leader,
                leader=leader_id,
                peers=len(self.peers),
            )
            if self.on_change is not None:
                self.on_change(self.is_leader)

    def get_status(self) -> dict:
        return {
            "instance_id": self.instance_id,
            "is_leader": self.is_leader,
            "leader_id": self.leader_id,
            "peers": sorted(self.peers),
            "announced_at": self.announced_at,
        }
