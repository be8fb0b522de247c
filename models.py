"""
Data models for the Polymarket trade lifecycle engine.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import config as cfg


class VolatilityTier(Enum):
    """Volatility classification driving fee and price-step assumptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any) -> "VolatilityTier":
        """Resolve a tier name; anything unknown falls back to medium."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.MEDIUM

    @classmethod
    def classify(
        cls,
        volatility_pct: float,
        low: float = cfg.VOLATILITY_LOW,
        medium: float = cfg.VOLATILITY_MEDIUM,
    ) -> "VolatilityTier":
        if volatility_pct < low:
            return cls.LOW
        if volatility_pct < medium:
            return cls.MEDIUM
        return cls.HIGH


class TradeState(Enum):
    """Trade lifecycle states."""
    PENDING = "pending"
    STARTED = "started"
    CLOSED = "closed"


class ExitReason(Enum):
    """Why a trade reached the closed state."""
    MANUAL = "manual"
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    MAX_LOSS = "max_loss"
    TIMER_EXPIRED = "timer_expired"
    CANCELLED = "cancelled"


class PriceSource(Enum):
    REAL = "real"
    SIMULATED = "simulated"


@dataclass(frozen=True)
class Market:
    """Scored market handed in by the market-scoring collaborator."""
    id: str
    question: str
    yes_price: Decimal
    volatility_tier: VolatilityTier = VolatilityTier.MEDIUM
    confidence: float = 0.0  # 0-100 from the external predictor

    def __post_init__(self):
        # Accept floats / strings from JSON callers without losing Decimal math
        if not isinstance(self.yes_price, Decimal):
            object.__setattr__(self, "yes_price", Decimal(str(self.yes_price)))
        object.__setattr__(self, "volatility_tier", VolatilityTier.parse(self.volatility_tier))
        if not Decimal("0") < self.yes_price < Decimal("1"):
            raise ValueError(f"yes_price must be in (0, 1), got {self.yes_price}")
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be in [0, 100], got {self.confidence}")


@dataclass(frozen=True)
class FeeBreakdown:
    """Fee components for one round trip."""
    slippage: Decimal
    spread_cost: Decimal
    trading_fee: Decimal
    gas_cost: Decimal
    total: Decimal
    percentage_of_stake: Decimal

    def to_dict(self) -> Dict[str, float]:
        return {
            'slippage': float(self.slippage),
            'spread_cost': float(self.spread_cost),
            'trading_fee': float(self.trading_fee),
            'gas_cost': float(self.gas_cost),
            'total': float(self.total),
            'percentage_of_stake': float(self.percentage_of_stake),
        }


ZERO_FEES = FeeBreakdown(
    slippage=Decimal("0"),
    spread_cost=Decimal("0"),
    trading_fee=Decimal("0"),
    gas_cost=Decimal("0"),
    total=Decimal("0"),
    percentage_of_stake=Decimal("0"),
)


@dataclass(frozen=True)
class PriceUpdate:
    """Price tick delivered to a subscriber, live or simulated."""
    market_id: str
    price: Decimal
    change: Decimal
    history: Tuple[Decimal, ...]
    momentum: int
    is_real: bool
    timestamp: datetime

    @property
    def is_simulated(self) -> bool:
        return not self.is_real


@dataclass(frozen=True)
class PriceStats:
    """Summary of a market's recent prices."""
    current: Decimal
    start: Decimal
    high: Decimal
    low: Decimal
    change: Decimal
    change_percent: float
    momentum: int
    trend: int
    is_real: bool
    sample_count: int

    @property
    def is_simulated(self) -> bool:
        return not self.is_real


@dataclass
class Trade:
    """The single open position, owned by the lifecycle engine."""
    trade_id: str
    market: Market
    stake: Decimal
    shares: int
    entry_price: Decimal
    current_price: Decimal
    take_profit_target: Decimal
    stop_loss_target: Decimal
    time_remaining: int
    confidence: float
    price_source: PriceSource
    opened_at: datetime
    state: TradeState = TradeState.PENDING
    start_time: Optional[float] = None
    gross_pnl: Decimal = Decimal("0")
    net_pnl: Decimal = Decimal("0")
    fees: FeeBreakdown = ZERO_FEES
    exit_reason: Optional[ExitReason] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.state in (TradeState.PENDING, TradeState.STARTED)


@dataclass(frozen=True)
class TradeOutcome:
    """Immutable record of a closed trade for persistence and analytics."""
    trade_id: str
    market_id: str
    question: str
    volatility_tier: VolatilityTier
    stake: Decimal
    entry_price: Decimal
    exit_price: Decimal
    shares: int
    gross_pnl: Decimal
    net_pnl: Decimal
    fees: FeeBreakdown
    hold_seconds: float
    exit_reason: ExitReason
    price_source: PriceSource
    confidence: float
    opened_at: datetime
    closed_at: datetime

    @property
    def price_change(self) -> Decimal:
        return self.exit_price - self.entry_price

    @property
    def price_change_percent(self) -> float:
        return float(self.price_change / self.entry_price * 100)

    @property
    def net_pnl_percent(self) -> float:
        if self.stake == 0:
            return 0.0
        return float(self.net_pnl / self.stake * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'trade_id': self.trade_id,
            'market_id': self.market_id,
            'question': self.question,
            'volatility_tier': self.volatility_tier.value,
            'stake': float(self.stake),
            'entry_price': float(self.entry_price),
            'exit_price': float(self.exit_price),
            'price_change': float(self.price_change),
            'price_change_percent': self.price_change_percent,
            'shares': self.shares,
            'gross_pnl': float(self.gross_pnl),
            'net_pnl': float(self.net_pnl),
            'net_pnl_percent': self.net_pnl_percent,
            'fees': self.fees.to_dict(),
            'hold_seconds': self.hold_seconds,
            'exit_reason': self.exit_reason.value,
            'price_source': self.price_source.value,
            'confidence': self.confidence,
            'opened_at': self.opened_at.isoformat(),
            'closed_at': self.closed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeOutcome":
        fees = data.get('fees', {})
        return cls(
            trade_id=data['trade_id'],
            market_id=data['market_id'],
            question=data.get('question', ''),
            volatility_tier=VolatilityTier.parse(data.get('volatility_tier')),
            stake=Decimal(str(data['stake'])),
            entry_price=Decimal(str(data['entry_price'])),
            exit_price=Decimal(str(data['exit_price'])),
            shares=int(data['shares']),
            gross_pnl=Decimal(str(data['gross_pnl'])),
            net_pnl=Decimal(str(data['net_pnl'])),
            fees=FeeBreakdown(
                slippage=Decimal(str(fees.get('slippage', 0))),
                spread_cost=Decimal(str(fees.get('spread_cost', 0))),
                trading_fee=Decimal(str(fees.get('trading_fee', 0))),
                gas_cost=Decimal(str(fees.get('gas_cost', 0))),
                total=Decimal(str(fees.get('total', 0))),
                percentage_of_stake=Decimal(str(fees.get('percentage_of_stake', 0))),
            ),
            hold_seconds=float(data.get('hold_seconds', 0.0)),
            exit_reason=ExitReason(data['exit_reason']),
            price_source=PriceSource(data.get('price_source', 'real')),
            confidence=float(data.get('confidence', 0.0)),
            opened_at=datetime.fromisoformat(data['opened_at']),
            closed_at=datetime.fromisoformat(data['closed_at']),
        )
