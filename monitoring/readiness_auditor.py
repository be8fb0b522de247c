"""
Trade Readiness Auditor
Scores a closed-trade history against the minimums required before going live.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Union

import config as cfg
from models import TradeOutcome
from monitoring.trade_stats import (
    longest_win_streak,
    max_drawdown,
    profit_factor,
    win_rate,
)


@dataclass(frozen=True)
class ReadinessCriteria:
    """Promotion minimums."""
    min_trades: int = cfg.READINESS_MIN_TRADES
    min_win_rate: float = cfg.READINESS_MIN_WIN_RATE
    min_profit_factor: float = cfg.READINESS_MIN_PROFIT_FACTOR
    min_consecutive_wins: int = cfg.READINESS_MIN_CONSECUTIVE_WINS
    max_drawdown: float = cfg.READINESS_MAX_DRAWDOWN


@dataclass(frozen=True)
class ReadinessReport:
    """Audit result: raw statistics plus a verdict per criterion."""
    total_trades: int
    win_rate: float
    profit_factor: float
    max_drawdown: float
    longest_win_streak: int
    checks: Dict[str, bool]

    @property
    def ready(self) -> bool:
        return all(self.checks.values())

    def to_dict(self) -> dict:
        return {
            "total_trades": self.total_trades,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "max_drawdown": self.max_drawdown,
            "longest_win_streak": self.longest_win_streak,
            "checks": dict(self.checks),
            "ready": self.ready,
        }


HistoryItem = Union[TradeOutcome, float, int]


class TradeReadinessAuditor:
    """
    Side-effect-free audit over a history of outcomes.

    Accepts TradeOutcome records or bare net P&L numbers.
    """

    def __init__(self, criteria: Optional[ReadinessCriteria] = None):
        self.criteria = criteria or ReadinessCriteria()

    def audit(self, history: Iterable[HistoryItem]) -> ReadinessReport:
        pnls = [
            float(item.net_pnl) if isinstance(item, TradeOutcome) else float(item)
            for item in history
        ]

        stats = {
            "total_trades": len(pnls),
            "win_rate": win_rate(pnls),
            "profit_factor": profit_factor(pnls),
            "max_drawdown": max_drawdown(pnls),
            "longest_win_streak": longest_win_streak(pnls),
        }

        c = self.criteria
        checks = {
            "min_trades": stats["total_trades"] >= c.min_trades,
            "win_rate": stats["win_rate"] >= c.min_win_rate,
            "profit_factor": stats["profit_factor"] >= c.min_profit_factor,
            "consecutive_wins": stats["longest_win_streak"] >= c.min_consecutive_wins,
            "max_drawdown": stats["max_drawdown"] <= c.max_drawdown,
        }

        return ReadinessReport(checks=checks, **stats)
