"""
Tests for the live price feed: momentum, backoff, subscriptions and message handling.
"""
import asyncio
import json
from decimal import Decimal

import pytest

from core.errors import ConnectionTimeout, FeedConnectionError, NotConnected, ReconnectExhausted
from core.ingestion.managers.price_feed import (
    FeedSettings,
    FeedState,
    PriceFeedConnection,
    calculate_momentum,
    momentum_label,
)


def _feed(scheduler, factory, **overrides):
    settings = dict(
        url="wss://test",
        connect_timeout=0.05,
        max_reconnect_attempts=5,
        backoff_base=1.0,
        backoff_cap=30.0,
        history_length=60,
    )
    settings.update(overrides)
    return PriceFeedConnection(FeedSettings(**settings), scheduler, factory)


# ---------------------------------------------------------------------------
# Momentum
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("history", [[], [0.5], [0.5, 0.6]])
def test_momentum_needs_three_samples(history):
    assert calculate_momentum(history) == 0


def test_momentum_counts_last_four_moves():
    assert calculate_momentum([0.5, 0.51, 0.52, 0.50, 0.53]) == 2


def test_momentum_ignores_older_moves_and_flat_ticks():
    assert calculate_momentum([0.9, 0.1, 0.2, 0.3, 0.3, 0.4]) == 3
    assert calculate_momentum(["0.5", "0.5", "0.5"]) == 0


def test_momentum_labels():
    assert momentum_label(4) == "Strong Bullish"
    assert momentum_label(1) == "Bullish"
    assert momentum_label(0) == "Neutral"
    assert momentum_label(-2) == "Bearish"
    assert momentum_label(-3) == "Strong Bearish"


# ---------------------------------------------------------------------------
# Reconnect backoff
# ---------------------------------------------------------------------------

def test_reconnect_delay_doubles_up_to_cap(scheduler, transport_factory):
    feed = _feed(scheduler, transport_factory)

    assert [feed.reconnect_delay(a) for a in range(1, 6)] == [2.0, 4.0, 8.0, 16.0, 30.0]


def test_no_sixth_attempt_is_ever_scheduled(scheduler, transport_factory):
    feed = _feed(scheduler, transport_factory)
    reported = []
    feed.on_reconnect_exhausted = reported.append

    handles = [feed.attempt_reconnect() for _ in range(5)]
    assert all(h is not None for h in handles)
    assert len(scheduler.pending) == 1

    assert feed.attempt_reconnect() is None
    assert feed.reconnect_exhausted
    assert isinstance(reported[0], ReconnectExhausted)
    assert reported[0].attempts == 5
    assert len(scheduler.pending) == 1


async def test_failed_reconnects_back_off_then_give_up(scheduler, transport_factory, drain):
    feed = _feed(scheduler, transport_factory)
    reported = []
    feed.on_reconnect_exhausted = reported.append
    await feed.connect()

    transport_factory.failures = 99
    transport_factory.current.drop()
    await drain()
    assert feed.state == FeedState.DISCONNECTED
    assert feed.reconnect_attempts == 1

    for delay in (2, 4, 8, 16, 30):
        calls_before = transport_factory.calls
        scheduler.advance(delay / 2)
        await drain()
        assert transport_factory.calls == calls_before
        scheduler.advance(delay / 2)
        await drain()
        assert transport_factory.calls == calls_before + 1

    assert feed.reconnect_exhausted
    assert len(reported) == 1
    assert scheduler.pending == []

    scheduler.advance(3600)
    await drain()
    assert transport_factory.calls == 6


async def test_reconnect_restores_subscriptions(scheduler, transport_factory, drain):
    feed = _feed(scheduler, transport_factory)
    await feed.connect()
    feed.subscribe("mkt-1", lambda update: None)

    transport_factory.current.drop()
    await drain()
    scheduler.advance(2)
    await drain()

    assert feed.is_connected
    assert feed.reconnect_attempts == 0
    assert len(transport_factory.transports) == 2
    assert transport_factory.current.sent == [{"type": "subscribe", "channel": "market", "market": "mkt-1"}]

    await feed.disconnect()


async def test_dropped_transport_is_closed_before_reconnect(scheduler, transport_factory, drain):
    feed = _feed(scheduler, transport_factory)
    await feed.connect()
    first = transport_factory.current

    first.drop()
    await drain()
    assert first.closed

    scheduler.advance(2)
    await drain()

    assert feed.is_connected
    assert len(transport_factory.transports) == 2
    assert not transport_factory.current.closed

    await feed.disconnect()
    assert transport_factory.current.closed


async def test_disconnect_voids_scheduled_reconnect(scheduler, transport_factory, drain):
    feed = _feed(scheduler, transport_factory)
    await feed.connect()

    transport_factory.current.drop()
    await drain()
    assert len(scheduler.pending) == 1

    await feed.disconnect()
    scheduler.advance(60)
    await drain()

    assert transport_factory.calls == 1
    assert feed.state == FeedState.DISCONNECTED
    assert scheduler.pending == []


async def test_stale_reconnect_timer_is_a_no_op(scheduler, transport_factory, drain):
    feed = _feed(scheduler, transport_factory)
    await feed.connect()
    transport_factory.current.drop()
    await drain()

    stale_generation = feed._generation
    await feed.disconnect()
    feed._on_reconnect_timer(stale_generation)
    await drain()

    assert transport_factory.calls == 1


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------

async def test_connect_timeout(scheduler, transport_factory):
    transport_factory.hang = True
    feed = _feed(scheduler, transport_factory)

    with pytest.raises(ConnectionTimeout):
        await feed.connect()

    assert feed.state == FeedState.DISCONNECTED
    assert scheduler.pending == []


async def test_disconnect_while_connecting_discards_transport(scheduler, transport_factory, drain):
    transport_factory.gate = asyncio.Event()
    feed = _feed(scheduler, transport_factory, connect_timeout=5.0)

    connecting = asyncio.ensure_future(feed.connect())
    await drain()
    assert feed.state == FeedState.CONNECTING

    await feed.disconnect()
    transport_factory.gate.set()

    assert await connecting is False
    assert feed.state == FeedState.DISCONNECTED
    assert transport_factory.current.closed
    with pytest.raises(NotConnected):
        feed.subscribe("mkt-1", lambda update: None)


async def test_connect_error(scheduler, transport_factory):
    transport_factory.failures = 1
    feed = _feed(scheduler, transport_factory)
    states = []
    feed.on_state_change = states.append

    with pytest.raises(FeedConnectionError):
        await feed.connect()

    assert states == [FeedState.CONNECTING, FeedState.DISCONNECTED]
    assert feed.get_stats()["last_error"] == "connection refused"


# ---------------------------------------------------------------------------
# Subscriptions and messages
# ---------------------------------------------------------------------------

def test_subscribe_requires_connection(scheduler, transport_factory):
    feed = _feed(scheduler, transport_factory)

    with pytest.raises(NotConnected):
        feed.subscribe("mkt-1", lambda update: None)


async def test_unsubscribe_is_symmetric_and_idempotent(scheduler, transport_factory):
    feed = _feed(scheduler, transport_factory)
    await feed.connect()
    transport = transport_factory.current

    feed.subscribe("mkt-1", lambda update: None)
    feed.unsubscribe("mkt-1")
    feed.unsubscribe("mkt-1")
    feed.unsubscribe("never-subscribed")

    assert [m["type"] for m in transport.sent] == ["subscribe", "unsubscribe"]
    assert not feed.is_subscribed("mkt-1")

    await feed.disconnect()


async def test_messages_reach_only_the_subscribed_market(scheduler, transport_factory, drain):
    feed = _feed(scheduler, transport_factory)
    await feed.connect()
    updates = []
    feed.subscribe("mkt-1", updates.append)

    transport = transport_factory.current
    transport.push({"type": "price_update", "market": "mkt-1", "price": "0.51"})
    transport.push([
        {"type": "trade", "asset_id": "mkt-1", "price": 0.53},
        {"type": "price_update", "market": "mkt-2", "price": "0.90"},
    ])
    await drain()

    assert [u.price for u in updates] == [Decimal("0.51"), Decimal("0.53")]
    assert updates[-1].change == Decimal("0.02")
    assert updates[-1].is_real
    assert feed.get_price("mkt-2") == Decimal("0.90")

    await feed.disconnect()


def test_malformed_messages_are_dropped(scheduler, transport_factory):
    feed = _feed(scheduler, transport_factory)
    updates = []
    feed._callbacks["mkt-1"] = updates.append

    for raw in (
        "not json",
        json.dumps({"type": "price_update", "market": "mkt-1"}),
        json.dumps({"type": "price_update", "market": "mkt-1", "price": "abc"}),
        json.dumps({"type": "price_update", "price": "0.5"}),
        json.dumps({"type": "book", "market": "mkt-1", "price": "0.5"}),
        json.dumps({"type": "price_update", "market": "mkt-1", "price": "NaN"}),
    ):
        feed.handle_message(raw)

    assert updates == []
    assert feed.get_price("mkt-1") is None

    feed.handle_message(json.dumps({"type": "price_update", "market": "mkt-1", "yes_price": "0.42"}))
    assert updates[0].price == Decimal("0.42")


def test_subscriber_errors_do_not_stop_the_stream(scheduler, transport_factory):
    feed = _feed(scheduler, transport_factory)

    def _boom(update):
        raise ValueError("bad consumer")

    feed._callbacks["mkt-1"] = _boom
    feed.handle_message(json.dumps({"type": "price_update", "market": "mkt-1", "price": "0.5"}))
    feed.handle_message(json.dumps({"type": "price_update", "market": "mkt-1", "price": "0.6"}))

    assert feed.get_price("mkt-1") == Decimal("0.6")


def test_history_is_bounded(scheduler, transport_factory):
    feed = _feed(scheduler, transport_factory, history_length=5)

    for i in range(8):
        feed.handle_message(json.dumps({"type": "price_update", "market": "mkt-1", "price": f"0.{50 + i}"}))

    history = feed.get_history("mkt-1")
    assert len(history) == 5
    assert history[0] == Decimal("0.53")

    stats = feed.get_price_stats("mkt-1")
    assert stats.sample_count == 5
    assert stats.high == Decimal("0.57")
    assert stats.low == Decimal("0.53")
    assert stats.momentum == 4
    assert stats.trend == 1
    assert not stats.is_simulated
