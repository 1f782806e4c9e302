"""
Test the trade stream wire format
"""

import json

import pytest

from marketpulse.core.exceptions import MalformedPayloadError
from marketpulse.models.market_data import Tick
from marketpulse.streaming.frames import (
    ControlFrame,
    ErrorFrame,
    PingFrame,
    PongFrame,
    TradeFrame,
    decode_frame,
    encode_subscribe,
    encode_trade_frame,
)


class TestDecodeFrame:
    def test_trade_frame_skips_bad_entries(self):
        raw = json.dumps(
            {
                "type": "trade",
                "data": [
                    {"s": "tsla", "p": 250.1, "v": 10, "t": 1000, "c": ["1"]},
                    {"s": "TSLA", "p": "oops", "t": 1001},
                    {"s": "TSLA", "p": -1, "t": 1002},
                    {"p": 1.0, "t": 1003},
                ],
            }
        )

        frame = decode_frame(raw)

        assert isinstance(frame, TradeFrame)
        assert frame.ticks == (Tick("TSLA", 250.1, 10, 1000),)
        assert frame.skipped == 3

    def test_control_frames(self):
        assert isinstance(decode_frame('{"type": "ping"}'), PingFrame)
        assert isinstance(decode_frame(b'{"type": "pong"}'), PongFrame)
        assert decode_frame('{"type": "error", "msg": "too many symbols"}') == ErrorFrame(
            "too many symbols"
        )
        assert decode_frame(encode_subscribe("NVDA")) == ControlFrame("subscribe", ("NVDA",))

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            b"\xff\xfe",
            "[1, 2, 3]",
            '{"type": "mystery"}',
            '{"type": "trade", "data": {"s": "TSLA"}}',
        ],
    )
    def test_malformed_frames(self, raw):
        with pytest.raises(MalformedPayloadError):
            decode_frame(raw)

    def test_encode_trade_frame(self):
        ticks = [Tick("TSLA", 100.0, 5, 1000), Tick("TSLA", 101.0, 2, 1100)]

        frame = decode_frame(encode_trade_frame(ticks))

        assert frame.ticks == tuple(ticks)
