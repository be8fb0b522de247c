"""
Trade Lifecycle Engine
Owns the single open position: entry gate, price ingestion, P&L and automatic exits.

    Pending --start()--> Started --(take profit | stop loss | max loss | timer | manual)--> Closed
       |
       +--cancel()--> Closed(cancelled)
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR
from typing import Callable, List, Optional

from loguru import logger

import config as cfg
from core.errors import (
    AlreadyOpen,
    InsufficientFunds,
    NoOpenTrade,
    PriceSourceUnavailable,
    RejectedByValidator,
    SessionLocked,
)
from core.ingestion.managers.price_feed import PriceFeedConnection, momentum_label
from core.timing.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from data_sources.simulated.price_simulator import FallbackPriceSimulator
from execution.entry_validator import EntryRules, EntryValidator
from execution.fee_model import FeeModel
from execution.risk_engine import RiskEngine
from models import (
    ExitReason,
    Market,
    PriceSource,
    PriceUpdate,
    Trade,
    TradeOutcome,
    TradeState,
)


@dataclass(frozen=True)
class TradingRules:
    """Exit policy and sizing parameters fixed at open time."""
    take_profit_pct: Decimal = cfg.TAKE_PROFIT_LEVELS[cfg.ACTIVE_TAKE_PROFIT_LEVEL]
    stop_loss_pct: Decimal = cfg.STOP_LOSS
    timer_seconds: int = cfg.DEFAULT_TIMER
    refresh_interval: float = cfg.REFRESH_INTERVAL
    confidence_baseline: Decimal = cfg.CONFIDENCE_BASELINE
    share_leverage: Decimal = cfg.SHARE_LEVERAGE
    auto_take_profit: bool = cfg.AUTO_TAKE_PROFIT
    auto_stop_loss: bool = cfg.AUTO_STOP_LOSS


@dataclass(frozen=True)
class PricePolicy:
    """Whether simulated prices may stand in for a dead live feed."""
    require_real_prices: bool = cfg.REQUIRE_REAL_PRICES
    allow_simulation: bool = cfg.ALLOW_SIMULATION

    @property
    def simulation_permitted(self) -> bool:
        return self.allow_simulation and not self.require_real_prices

    @classmethod
    def simulated(cls, allowed: bool) -> "PricePolicy":
        return cls(require_real_prices=not allowed, allow_simulation=allowed)


@dataclass(frozen=True)
class EngineSnapshot:
    """Read-only projection for UI binding."""
    state: Optional[TradeState]
    market_id: Optional[str]
    current_price: Optional[Decimal]
    gross_pnl: Decimal
    net_pnl: Decimal
    momentum: int
    momentum_label: str
    time_remaining: Optional[int]
    price_source: Optional[PriceSource]
    bankroll: Decimal
    session_pnl: Decimal
    fees_paid: Decimal
    consecutive_wins: int
    consecutive_losses: int
    session_locked: bool


OutcomeListener = Callable[[TradeOutcome], None]


class TradeLifecycleEngine:
    """
    Single-position state machine.

    Collaborators are injected:
    - feed: live prices (subscribed while a trade is open)
    - simulator: fallback prices, only when the policy permits
    - scheduler: countdown and price-refresh timers
    """

    def __init__(
        self,
        feed: Optional[PriceFeedConnection] = None,
        simulator: Optional[FallbackPriceSimulator] = None,
        fee_model: Optional[FeeModel] = None,
        validator: Optional[EntryValidator] = None,
        risk_engine: Optional[RiskEngine] = None,
        rules: Optional[TradingRules] = None,
        policy: Optional[PricePolicy] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.rules = rules or TradingRules()
        self.fee_model = fee_model or FeeModel()
        self.validator = validator or EntryValidator(
            self.fee_model,
            EntryRules(take_profit_pct=self.rules.take_profit_pct, stop_loss_pct=self.rules.stop_loss_pct),
        )
        self.risk = risk_engine or RiskEngine()
        self.policy = policy or PricePolicy()
        self.feed = feed
        self.simulator = simulator
        self.scheduler = scheduler or (feed.scheduler if feed else AsyncioScheduler())

        self.active_trade: Optional[Trade] = None
        self.last_trade: Optional[Trade] = None
        self.last_outcome: Optional[TradeOutcome] = None

        self._latest_update: Optional[PriceUpdate] = None
        self._momentum = 0
        self._countdown_timer: Optional[TimerHandle] = None
        self._price_timer: Optional[TimerHandle] = None
        self._listeners: List[OutcomeListener] = []

        logger.info(
            f"Initialized Trade Lifecycle Engine: TP {self.rules.take_profit_pct:.0%}, "
            f"SL {self.rules.stop_loss_pct:.0%}, timer {self.rules.timer_seconds}s"
        )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_outcome_listener(self, listener: OutcomeListener) -> None:
        self._listeners.append(listener)

    def remove_outcome_listener(self, listener: OutcomeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def open(self, market: Market, stake: Optional[Decimal] = None) -> Trade:
        """
        Open a position in the Pending state.

        Args:
            market: Scored market (confidence comes from the external predictor)
            stake: Dollar amount; defaults to the tier's suggested stake

        Raises:
            SessionLocked, AlreadyOpen, InsufficientFunds,
            RejectedByValidator, PriceSourceUnavailable
        """
        if self.risk.locked:
            raise SessionLocked(
                f"Session locked in red zone (P&L ${self.risk.session_pnl:.2f}); reset required"
            )

        if self.active_trade is not None:
            raise AlreadyOpen(f"Trade {self.active_trade.trade_id} is already {self.active_trade.state.value}")

        stake = Decimal(str(stake)) if stake is not None else self.risk.suggest_stake(market.volatility_tier)
        if stake <= 0:
            raise ValueError(f"Stake must be positive, got {stake}")

        if not self.risk.can_afford(stake):
            raise InsufficientFunds(f"Stake ${stake:.2f} exceeds bankroll ${self.risk.bankroll:.2f}")

        validation = self.validator.validate_entry(market, market.confidence, stake, market.volatility_tier)
        if not validation.valid:
            raise RejectedByValidator(validation.reasons, validation)

        source = self._select_price_source(market)

        trade = Trade(
            trade_id=f"trade_{uuid.uuid4().hex[:12]}",
            market=market,
            stake=stake,
            shares=self.calculate_shares(stake, market.yes_price, market.confidence),
            entry_price=market.yes_price,
            current_price=market.yes_price,
            take_profit_target=stake * self.rules.take_profit_pct,
            stop_loss_target=-(stake * self.rules.stop_loss_pct),
            time_remaining=self.rules.timer_seconds,
            confidence=market.confidence,
            price_source=source,
            opened_at=datetime.now(timezone.utc),
            metadata={"validation": validation},
        )
        self._recompute_pnl(trade)

        self.risk.reserve(stake)
        self._latest_update = None
        self._momentum = 0
        self.active_trade = trade
        self._attach_price_source(trade)

        logger.info(
            f"Opened {trade.trade_id} on {market.id}: ${stake:.2f} for {trade.shares} shares "
            f"@ {trade.entry_price} (TP +${trade.take_profit_target:.2f}, "
            f"SL -${abs(trade.stop_loss_target):.2f}, source {source.value})"
        )
        return trade

    def start(self) -> Trade:
        """Start the countdown and price-refresh timers."""
        trade = self._require(TradeState.PENDING, "start")

        trade.start_time = self.scheduler.now()
        trade.state = TradeState.STARTED

        self._countdown_timer = self.scheduler.call_every(1.0, self.on_countdown_tick, name="countdown")
        self._price_timer = self.scheduler.call_every(
            self.rules.refresh_interval, self._on_price_timer, name="price-refresh"
        )

        logger.info(f"Started {trade.trade_id}: {trade.time_remaining}s on the clock")
        return trade

    def on_price_tick(self, new_price: Decimal) -> Optional[TradeOutcome]:
        """
        Ingest a price, recompute P&L and evaluate exits.

        Exit priority: take profit, stop loss, max loss. First match wins.

        Returns:
            The TradeOutcome if this tick closed the trade
        """
        trade = self._require(TradeState.STARTED, "price tick")

        trade.current_price = Decimal(str(new_price))
        self._recompute_pnl(trade)

        reason = self._exit_trigger(trade)
        if reason is not None:
            return self._close(reason)
        return None

    def on_countdown_tick(self) -> Optional[TradeOutcome]:
        """One second elapsed; close when the clock runs out."""
        trade = self.active_trade
        if trade is None or trade.state != TradeState.STARTED:
            return None

        trade.time_remaining -= 1
        if trade.time_remaining <= 5:
            logger.debug(f"{trade.trade_id}: {trade.time_remaining}s remaining")

        if trade.time_remaining <= 0:
            return self._close(ExitReason.TIMER_EXPIRED)
        return None

    def exit_manual(self) -> TradeOutcome:
        """Close a started trade at the last computed P&L."""
        self._require(TradeState.STARTED, "exit")
        return self._close(ExitReason.MANUAL)

    def cancel(self) -> Trade:
        """Abandon a pending trade: full refund, no streak or P&L impact."""
        trade = self._require(TradeState.PENDING, "cancel")

        self._detach_price_source(trade)
        self.risk.refund(trade.stake)

        trade.state = TradeState.CLOSED
        trade.exit_reason = ExitReason.CANCELLED
        self.active_trade = None
        self.last_trade = trade

        logger.info(f"Cancelled {trade.trade_id}; stake ${trade.stake:.2f} refunded")
        return trade

    def reset_session(self) -> None:
        """External session reset; clears the red-zone lock."""
        if self.active_trade is not None:
            raise AlreadyOpen("Cannot reset the session with an open trade")
        self.risk.reset_session()

    def shutdown(self) -> None:
        """Stop all timers; close a started trade manually and cancel a pending one."""
        trade = self.active_trade
        if trade is not None:
            if trade.state == TradeState.STARTED:
                self._close(ExitReason.MANUAL)
            else:
                self.cancel()
        self._stop_timers()
        logger.info("Trade Lifecycle Engine shut down")

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def calculate_shares(self, stake: Decimal, entry_price: Decimal, confidence: float) -> int:
        """
        floor(stake / entry x confidence multiplier x leverage)

        The multiplier is confidence relative to the baseline (1 when no
        confidence is supplied).
        """
        multiplier = (
            Decimal(str(confidence)) / self.rules.confidence_baseline if confidence else Decimal("1")
        )
        raw = (stake / entry_price) * multiplier * self.rules.share_leverage
        return int(raw.to_integral_value(rounding=ROUND_FLOOR))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, state: TradeState, action: str) -> Trade:
        trade = self.active_trade
        if trade is None:
            raise NoOpenTrade(f"Cannot {action}: no open trade")
        if trade.state != state:
            raise NoOpenTrade(f"Cannot {action}: trade {trade.trade_id} is {trade.state.value}, needs {state.value}")
        return trade

    def _recompute_pnl(self, trade: Trade) -> None:
        trade.gross_pnl = (trade.current_price - trade.entry_price) * trade.shares
        trade.fees = self.fee_model.compute_fees(trade.stake, trade.market.volatility_tier, trade.gross_pnl > 0)
        trade.net_pnl = trade.gross_pnl - trade.fees.total

    def _exit_trigger(self, trade: Trade) -> Optional[ExitReason]:
        if self.rules.auto_take_profit and trade.net_pnl >= trade.take_profit_target:
            return ExitReason.TAKE_PROFIT
        if self.rules.auto_stop_loss and trade.net_pnl <= trade.stop_loss_target:
            return ExitReason.STOP_LOSS
        if trade.net_pnl <= -trade.stake:
            return ExitReason.MAX_LOSS
        return None

    def _select_price_source(self, market: Market) -> PriceSource:
        if self.feed is not None and self.feed.is_connected:
            return PriceSource.REAL
        if self.simulator is not None and self.policy.simulation_permitted:
            logger.warning(f"Live feed unavailable; using SIMULATED prices for {market.id}")
            return PriceSource.SIMULATED
        raise PriceSourceUnavailable(
            "Trading blocked: live price feed unavailable and simulated prices not permitted"
        )

    def _attach_price_source(self, trade: Trade) -> None:
        if trade.price_source == PriceSource.REAL:
            self.feed.subscribe(trade.market.id, self._on_feed_update)
        else:
            self.simulator.initialize(trade.market.id, trade.entry_price, trade.market.volatility_tier)

    def _detach_price_source(self, trade: Trade) -> None:
        if trade.price_source == PriceSource.REAL:
            if self.feed is not None:
                self.feed.unsubscribe(trade.market.id)
        elif self.simulator is not None:
            self.simulator.remove(trade.market.id)

    def _on_feed_update(self, update: PriceUpdate) -> None:
        trade = self.active_trade
        if trade is not None and update.market_id == trade.market.id:
            self._latest_update = update

    def _on_price_timer(self) -> None:
        trade = self.active_trade
        if trade is None or trade.state != TradeState.STARTED:
            return

        if trade.price_source == PriceSource.REAL:
            update = self._latest_update
        else:
            update = self.simulator.tick(trade.market.id)

        if update is None:
            return

        self._momentum = update.momentum
        self.on_price_tick(update.price)

    def _stop_timers(self) -> None:
        for timer in (self._countdown_timer, self._price_timer):
            if timer is not None:
                timer.cancel()
        self._countdown_timer = None
        self._price_timer = None

    def _close(self, reason: ExitReason) -> TradeOutcome:
        trade = self.active_trade
        self._stop_timers()
        self._detach_price_source(trade)

        hold_seconds = self.scheduler.now() - trade.start_time if trade.start_time is not None else 0.0

        self.risk.settle(trade.stake, trade.net_pnl, trade.fees.total)

        trade.state = TradeState.CLOSED
        trade.exit_reason = reason
        self.active_trade = None
        self.last_trade = trade

        outcome = TradeOutcome(
            trade_id=trade.trade_id,
            market_id=trade.market.id,
            question=trade.market.question,
            volatility_tier=trade.market.volatility_tier,
            stake=trade.stake,
            entry_price=trade.entry_price,
            exit_price=trade.current_price,
            shares=trade.shares,
            gross_pnl=trade.gross_pnl,
            net_pnl=trade.net_pnl,
            fees=trade.fees,
            hold_seconds=hold_seconds,
            exit_reason=reason,
            price_source=trade.price_source,
            confidence=trade.confidence,
            opened_at=trade.opened_at,
            closed_at=datetime.now(timezone.utc),
        )
        self.last_outcome = outcome

        logger.info(
            f"Closed {trade.trade_id} ({reason.value}): net ${trade.net_pnl:+.2f} "
            f"(gross ${trade.gross_pnl:+.2f}, fees ${trade.fees.total:.2f}), "
            f"bankroll ${self.risk.bankroll:.2f}"
        )

        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception:
                logger.exception(f"Outcome listener failed for {trade.trade_id}")

        return outcome

    # ------------------------------------------------------------------
    # Projections
    # ------------------------------------------------------------------

    @property
    def session_locked(self) -> bool:
        return self.risk.locked

    def snapshot(self) -> EngineSnapshot:
        trade = self.active_trade
        return EngineSnapshot(
            state=trade.state if trade else None,
            market_id=trade.market.id if trade else None,
            current_price=trade.current_price if trade else None,
            gross_pnl=trade.gross_pnl if trade else Decimal("0"),
            net_pnl=trade.net_pnl if trade else Decimal("0"),
            momentum=self._momentum if trade else 0,
            momentum_label=momentum_label(self._momentum if trade else 0),
            time_remaining=trade.time_remaining if trade else None,
            price_source=trade.price_source if trade else None,
            bankroll=self.risk.bankroll,
            session_pnl=self.risk.session_pnl,
            fees_paid=self.risk.fees_paid,
            consecutive_wins=self.risk.consecutive_wins,
            consecutive_losses=self.risk.consecutive_losses,
            session_locked=self.risk.locked,
        )
