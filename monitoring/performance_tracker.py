"""
Performance Tracker
Bounded journal of closed trades with running analytics and JSON persistence
"""
import json
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Union

from loguru import logger

import config as cfg
from models import TradeOutcome
from monitoring.trade_stats import max_drawdown, profit_factor, sharpe_ratio


@dataclass
class PerformanceMetrics:
    """Running analytics snapshot."""
    timestamp: datetime

    # Trade statistics
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float

    # P&L
    total_net_pnl: Decimal
    total_gross_pnl: Decimal
    total_fees: Decimal
    avg_win: Decimal
    avg_loss: Decimal
    profit_factor: float

    # Streaks
    consecutive_wins: int
    consecutive_losses: int

    # Risk / return
    max_drawdown: float
    sharpe_ratio: float
    avg_hold_time: float  # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "total_net_pnl": float(self.total_net_pnl),
            "total_gross_pnl": float(self.total_gross_pnl),
            "total_fees": float(self.total_fees),
            "avg_win": float(self.avg_win),
            "avg_loss": float(self.avg_loss),
            "profit_factor": self.profit_factor,
            "consecutive_wins": self.consecutive_wins,
            "consecutive_losses": self.consecutive_losses,
            "max_drawdown": self.max_drawdown,
            "sharpe_ratio": self.sharpe_ratio,
            "avg_hold_time": self.avg_hold_time,
        }


class PerformanceTracker:
    """
    Trade journal.

    Features:
    - Keeps the most recent outcomes (bounded)
    - Running win/loss streaks (a win is net P&L > 0)
    - Analytics snapshot on demand
    - Save/load as JSON
    """

    def __init__(self, max_entries: int = cfg.TRADE_LOG_MAX_ENTRIES):
        """
        Initialize performance tracker.

        Args:
            max_entries: Outcomes kept in memory
        """
        self._outcomes: Deque[TradeOutcome] = deque(maxlen=max_entries)
        self.consecutive_wins = 0
        self.consecutive_losses = 0

        self._last_metrics: Optional[PerformanceMetrics] = None
        self._metrics_dirty = True

        logger.info(f"Initialized Performance Tracker (max {max_entries} outcomes)")

    def __len__(self) -> int:
        return len(self._outcomes)

    def record_outcome(self, outcome: TradeOutcome) -> None:
        """Append a closed trade. Usable directly as an engine outcome listener."""
        self._append(outcome)

        logger.info(
            f"Recorded trade: {outcome.trade_id} {outcome.exit_reason.value} "
            f"P&L=${outcome.net_pnl:+.2f} ({outcome.net_pnl_percent:+.2f}%)"
        )

    def _append(self, outcome: TradeOutcome) -> None:
        self._outcomes.append(outcome)

        if outcome.net_pnl > 0:
            self.consecutive_wins += 1
            self.consecutive_losses = 0
        else:
            self.consecutive_losses += 1
            self.consecutive_wins = 0

        self._metrics_dirty = True

    def calculate_metrics(self, force: bool = False) -> PerformanceMetrics:
        """
        Calculate current performance metrics.

        Args:
            force: Force recalculation even if cache valid
        """
        if not force and not self._metrics_dirty and self._last_metrics:
            return self._last_metrics

        outcomes = list(self._outcomes)
        pnls = [float(o.net_pnl) for o in outcomes]
        wins = [o.net_pnl for o in outcomes if o.net_pnl > 0]
        losses = [o.net_pnl for o in outcomes if o.net_pnl <= 0]
        total = len(outcomes)

        metrics = PerformanceMetrics(
            timestamp=datetime.now(),
            total_trades=total,
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / total if total else 0.0,
            total_net_pnl=sum((o.net_pnl for o in outcomes), Decimal("0")),
            total_gross_pnl=sum((o.gross_pnl for o in outcomes), Decimal("0")),
            total_fees=sum((o.fees.total for o in outcomes), Decimal("0")),
            avg_win=sum(wins, Decimal("0")) / len(wins) if wins else Decimal("0"),
            avg_loss=sum(losses, Decimal("0")) / len(losses) if losses else Decimal("0"),
            profit_factor=profit_factor(pnls),
            consecutive_wins=self.consecutive_wins,
            consecutive_losses=self.consecutive_losses,
            max_drawdown=max_drawdown(pnls),
            sharpe_ratio=sharpe_ratio([o.net_pnl_percent for o in outcomes]),
            avg_hold_time=sum(o.hold_seconds for o in outcomes) / total if total else 0.0,
        )

        self._last_metrics = metrics
        self._metrics_dirty = False
        return metrics

    def get_trade_history(self, limit: int = 100) -> List[TradeOutcome]:
        """Most recent outcomes, oldest first."""
        if limit <= 0:
            return []
        return list(self._outcomes)[-limit:]

    def get_equity_curve(self, starting_equity: Decimal = cfg.STARTING_BANKROLL) -> List[Dict[str, Any]]:
        """
        Get equity curve over time.

        Returns:
            List of {timestamp, equity} points
        """
        curve = []
        running = starting_equity
        for outcome in self._outcomes:
            running += outcome.net_pnl
            curve.append({"timestamp": outcome.closed_at, "equity": float(running)})
        return curve

    def get_exit_reason_breakdown(self) -> Dict[str, int]:
        breakdown: Dict[str, int] = {}
        for outcome in self._outcomes:
            key = outcome.exit_reason.value
            breakdown[key] = breakdown.get(key, 0) + 1
        return breakdown

    def clear(self) -> None:
        self._outcomes.clear()
        self.consecutive_wins = 0
        self.consecutive_losses = 0
        self._metrics_dirty = True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Union[str, Path] = cfg.TRADE_LOG_FILE) -> bool:
        """Save outcomes to a JSON file."""
        try:
            data = [o.to_dict() for o in self._outcomes]
            with open(path, "w") as f:
                json.dump(data, f, indent=2)
            logger.info(f"Saved {len(data)} trade outcomes to {path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save trade outcomes: {e}")
            return False

    def load(self, path: Union[str, Path] = cfg.TRADE_LOG_FILE) -> int:
        """
        Replace the journal with outcomes from a JSON file.

        Returns:
            Number of outcomes loaded (0 when the file does not exist)

        Raises:
            ValueError: the file is not a valid outcome list
        """
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info(f"No trade outcome file at {path}")
            return 0
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt trade outcome file {path}: {e}")
            raise ValueError(f"Corrupt trade outcome file {path}") from e

        if not isinstance(data, list):
            raise ValueError(f"Expected a list of outcomes in {path}")

        self.clear()
        for entry in data:
            self._append(TradeOutcome.from_dict(entry))

        logger.info(f"Loaded {len(self._outcomes)} trade outcomes from {path}")
        return len(self._outcomes)
