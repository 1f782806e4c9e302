"""
Realtime trade stream wire format

Inbound frames are decoded into tagged variants. Unknown fields are
ignored, unknown root shapes raise MalformedPayloadError and individual
trade entries that fail to parse are skipped.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Tuple, Union

import structlog

from marketpulse.core.exceptions import MalformedPayloadError
from marketpulse.models.market_data import Tick

logger = structlog.get_logger(__name__)

STREAM = "stream"


@dataclass(frozen=True)
class TradeFrame:
    ticks: Tuple[Tick, ...]
    skipped: int = 0


@dataclass(frozen=True)
class PingFrame:
    pass


@dataclass(frozen=True)
class PongFrame:
    pass


@dataclass(frozen=True)
class ErrorFrame:
    message: str = ""


@dataclass(frozen=True)
class ControlFrame:
    """Echoed subscribe/unsubscribe acknowledgements"""

    type: str
    symbols: Tuple[str, ...] = field(default_factory=tuple)


Frame = Union[TradeFrame, PingFrame, PongFrame, ErrorFrame, ControlFrame]


def decode_frame(raw: Union[str, bytes]) -> Frame:
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayloadError(STREAM, "frame is not valid utf-8") from e
    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise MalformedPayloadError(STREAM, "frame is not valid JSON") from e

    if not isinstance(payload, dict):
        raise MalformedPayloadError(
            STREAM, f"frame root must be an object, got {type(payload).__name__}"
        )

    frame_type = payload.get("type")
    if frame_type == "trade":
        return _decode_trades(payload.get("data"))
    if frame_type == "ping":
        return PingFrame()
    if frame_type == "pong":
        return PongFrame()
    if frame_type == "error":
        return ErrorFrame(str(payload.get("msg") or payload.get("message") or ""))
    if frame_type in ("subscribe", "unsubscribe"):
        symbol = payload.get("symbol")
        return ControlFrame(frame_type, (symbol,) if isinstance(symbol, str) else ())
    raise MalformedPayloadError(STREAM, f"unknown frame type {frame_type!r}")


def _decode_trades(data: Any) -> TradeFrame:
    if not isinstance(data, list):
        raise MalformedPayloadError(STREAM, "trade frame without a data list")
    ticks: List[Tick] = []
    skipped = 0
    for entry in data:
        try:
            ticks.append(
                Tick(
                    symbol=str(entry["s"]).strip().upper(),
                    price=float(entry["p"]),
                    volume=int(entry.get("v") or 0),
                    timestamp=int(entry["t"]),
                )
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            skipped += 1
            logger.debug("Skipping malformed trade", entry=repr(entry)[:200], error=str(e))
    return TradeFrame(tuple(ticks), skipped)


def encode_trade_frame(ticks: Iterable[Tick]) -> str:
    return json.dumps(
        {
            "type": "trade",
            "data": [
                {"s": tick.symbol, "p": tick.price, "v": tick.volume, "t": tick.timestamp}
                for tick in ticks
            ],
        }
    )


def encode_subscribe(symbol: str) -> str:
    return json.dumps({"type": "subscribe", "symbol": symbol})


def encode_unsubscribe(symbol: str) -> str:
    return json.dumps({"type": "unsubscribe", "symbol": symbol})


def encode_ping() -> str:
    return json.dumps({"type": "ping"})


def encode_pong() -> str:
    return json.dumps({"type": "pong"})
