"""
Tests for the market-channel wire format.
"""
import json
from decimal import Decimal

import pytest

from data_sources.polymarket.websocket import build_subscription, parse_price_message


def test_subscription_messages():
    assert json.loads(build_subscription("subscribe", "0xabc")) == {
        "type": "subscribe",
        "channel": "market",
        "market": "0xabc",
    }
    assert json.loads(build_subscription("unsubscribe", "0xabc"))["type"] == "unsubscribe"


def test_unknown_action_is_rejected():
    with pytest.raises(ValueError):
        build_subscription("resubscribe", "0xabc")


def test_parses_single_and_batched_events():
    assert parse_price_message('{"type": "price_update", "market": "m1", "price": "0.45"}') == [
        ("m1", Decimal("0.45"))
    ]

    batch = json.dumps([
        {"type": "trade", "asset_id": "m2", "price": 0.61},
        {"type": "price_update", "market": "m3", "yes_price": "0.12"},
        {"type": "heartbeat"},
    ])
    assert parse_price_message(batch) == [("m2", Decimal("0.61")), ("m3", Decimal("0.12"))]


@pytest.mark.parametrize("raw", [
    "",
    "{",
    "null",
    '"price_update"',
    '{"type": "price_update", "market": "m1", "price": true}',
    '{"type": "price_update", "market": "m1", "price": "Infinity"}',
    '{"type": "price_update", "market": "", "price": "0.5"}',
])
def test_malformed_frames_yield_nothing(raw):
    assert parse_price_message(raw) == []
