"""
Fallback Price Simulator
Random-walk prices for when the live feed is down AND simulation is explicitly allowed.
Every output is tagged as simulated.
"""
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Deque, Dict, Optional

from loguru import logger

import config as cfg
from models import PriceStats, PriceUpdate, VolatilityTier


@dataclass(frozen=True)
class SimulationSettings:
    """Per-tier step sizes and price bounds."""
    step_sizes: Dict[str, Decimal] = field(default_factory=lambda: dict(cfg.SIMULATION_STEP))
    floor: Decimal = cfg.SIMULATION_PRICE_FLOOR
    ceiling: Decimal = cfg.SIMULATION_PRICE_CEILING
    history_length: int = cfg.PRICE_HISTORY_LENGTH

    def step_size(self, tier) -> Decimal:
        tier = VolatilityTier.parse(tier)
        step = self.step_sizes.get(tier.value)
        if step is None:
            step = self.step_sizes[VolatilityTier.MEDIUM.value]
        return step


@dataclass
class _SimulatedMarket:
    current: Decimal
    start: Decimal
    step: Decimal
    high: Decimal
    low: Decimal
    momentum: int = 0
    tick_count: int = 0
    history: Deque[Decimal] = field(default_factory=deque)


class FallbackPriceSimulator:
    """
    Pure random walk, no drift and no mean reversion.

    Each tick moves the price by uniform[-1, 1] x tier step, clamped to
    [floor, ceiling]. Momentum counts consecutive moves in one direction
    and resets when the direction flips.
    """

    _QUANTUM = Decimal("0.000001")

    def __init__(self, settings: Optional[SimulationSettings] = None, rng: Optional[random.Random] = None):
        self.settings = settings or SimulationSettings()
        self._rng = rng or random.Random()
        self._markets: Dict[str, _SimulatedMarket] = {}

    def initialize(self, market_id: str, start_price: Decimal, tier=VolatilityTier.MEDIUM) -> None:
        """Seed a market at its entry price."""
        start_price = Decimal(str(start_price))
        self._markets[market_id] = _SimulatedMarket(
            current=start_price,
            start=start_price,
            step=self.settings.step_size(tier),
            high=start_price,
            low=start_price,
            history=deque([start_price], maxlen=self.settings.history_length),
        )
        logger.warning(f"[SIMULATION] Simulated prices enabled for {market_id} (start {start_price})")

    def tick(self, market_id: str) -> Optional[PriceUpdate]:
        """
        Advance one random step.

        Returns:
            Simulated PriceUpdate, or None for an unknown market
        """
        data = self._markets.get(market_id)
        if data is None:
            return None

        data.tick_count += 1
        change = Decimal(str(self._rng.uniform(-1.0, 1.0))) * data.step
        new_price = (data.current + change).quantize(self._QUANTUM)
        new_price = max(self.settings.floor, min(self.settings.ceiling, new_price))

        if new_price > data.current:
            data.momentum = data.momentum + 1 if data.momentum >= 0 else 1
        elif new_price < data.current:
            data.momentum = data.momentum - 1 if data.momentum <= 0 else -1
        else:
            data.momentum = 0

        previous = data.current
        data.current = new_price
        data.high = max(data.high, new_price)
        data.low = min(data.low, new_price)
        data.history.append(new_price)

        return PriceUpdate(
            market_id=market_id,
            price=new_price,
            change=new_price - previous,
            history=tuple(data.history),
            momentum=data.momentum,
            is_real=False,
            timestamp=datetime.now(timezone.utc),
        )

    def get_price(self, market_id: str) -> Optional[Decimal]:
        data = self._markets.get(market_id)
        return data.current if data else None

    def get_price_stats(self, market_id: str) -> Optional[PriceStats]:
        data = self._markets.get(market_id)
        if data is None:
            return None

        return PriceStats(
            current=data.current,
            start=data.start,
            high=data.high,
            low=data.low,
            change=data.current - data.start,
            change_percent=float((data.current - data.start) / data.start * 100),
            momentum=data.momentum,
            trend=1 if data.current > data.start else -1,
            is_real=False,
            sample_count=data.tick_count + 1,
        )

    def remove(self, market_id: str) -> None:
        self._markets.pop(market_id, None)

    def clear(self) -> None:
        self._markets.clear()

    def shutdown(self) -> None:
        self.clear()
