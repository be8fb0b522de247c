"""
Shared pytest fixtures: virtual time, an in-memory feed transport, markets and engines.
"""
import asyncio
import json
import random
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from core.timing.scheduler import VirtualScheduler
from data_sources.simulated.price_simulator import FallbackPriceSimulator
from execution.risk_engine import RiskEngine, RiskLimits
from execution.trade_engine import PricePolicy, TradeLifecycleEngine, TradingRules
from models import (
    ExitReason,
    FeeBreakdown,
    Market,
    PriceSource,
    TradeOutcome,
    VolatilityTier,
)

_CLOSED = object()


class FakeTransport:
    """In-memory stand-in for the websocket connection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def send(self, message: str) -> None:
        self.sent.append(json.loads(message))

    def push(self, payload) -> None:
        if not isinstance(payload, (str, bytes)):
            payload = json.dumps(payload)
        self._inbox.put_nowait(payload)

    def drop(self) -> None:
        """Server-side close."""
        self._inbox.put_nowait(_CLOSED)

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeTransportFactory:
    """Transport factory whose next connects can be made to fail or hang."""

    def __init__(self):
        self.transports = []
        self.calls = 0
        self.failures = 0
        self.hang = False
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, url: str) -> FakeTransport:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.hang:
            await asyncio.sleep(3600)
        if self.failures:
            self.failures -= 1
            raise OSError("connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def scheduler():
    return VirtualScheduler()


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def market():
    return Market(
        id="mkt-btc-100k",
        question="Will BTC close above $100k today?",
        yes_price=Decimal("0.50"),
        volatility_tier=VolatilityTier.MEDIUM,
        confidence=80,
    )


@pytest.fixture
def flat_rules():
    """Rules where shares == stake / entry (confidence at baseline, no leverage)."""
    return TradingRules(
        take_profit_pct=Decimal("0.15"),
        stop_loss_pct=Decimal("0.12"),
        timer_seconds=20,
        refresh_interval=1.0,
        confidence_baseline=Decimal("80"),
        share_leverage=Decimal("1"),
    )


@pytest.fixture
def make_engine(scheduler, flat_rules):
    """Engine on virtual time with simulated prices permitted and no live feed."""

    def _make(rules=None, limits=None, policy=None, feed=None, seed=7):
        return TradeLifecycleEngine(
            feed=feed,
            simulator=FallbackPriceSimulator(rng=random.Random(seed)),
            risk_engine=RiskEngine(limits or RiskLimits(starting_bankroll=Decimal("1000"))),
            rules=rules or flat_rules,
            policy=policy or PricePolicy(require_real_prices=False, allow_simulation=True),
            scheduler=scheduler,
        )

    return _make


@pytest.fixture
def make_outcome():
    """Build a closed-trade record with a given net P&L."""
    counter = {"n": 0}

    def _make(net_pnl, reason=ExitReason.MANUAL, hold_seconds=10.0):
        counter["n"] += 1
        net = Decimal(str(net_pnl))
        now = datetime(2024, 5, 1, 12, 0, counter["n"] % 60, tzinfo=timezone.utc)
        return TradeOutcome(
            trade_id=f"trade_{counter['n']}",
            market_id="mkt-btc-100k",
            question="Will BTC close above $100k today?",
            volatility_tier=VolatilityTier.MEDIUM,
            stake=Decimal("10"),
            entry_price=Decimal("0.50"),
            exit_price=Decimal("0.55"),
            shares=20,
            gross_pnl=net,
            net_pnl=net,
            fees=FeeBreakdown(
                slippage=Decimal("0"),
                spread_cost=Decimal("0"),
                trading_fee=Decimal("0"),
                gas_cost=Decimal("0"),
                total=Decimal("0"),
                percentage_of_stake=Decimal("0"),
            ),
            hold_seconds=hold_seconds,
            exit_reason=reason,
            price_source=PriceSource.SIMULATED,
            confidence=80.0,
            opened_at=now,
            closed_at=now,
        )

    return _make


@pytest.fixture
def drain():
    """Awaitable helper that lets pending tasks run."""
    return settle
