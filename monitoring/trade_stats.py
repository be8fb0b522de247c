"""
Trade Statistics
Pure helpers over a sequence of net P&L values, shared by the journal and the readiness auditor.
"""
import math
from typing import Iterable, List, Sequence


def as_floats(values: Iterable) -> List[float]:
    return [float(v) for v in values]


def win_rate(pnls: Sequence[float]) -> float:
    """Fraction of trades with positive net P&L."""
    if not pnls:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls)


def profit_factor(pnls: Sequence[float]) -> float:
    """
    Gross profit / gross loss.

    Infinite when there are no losses but some profit; 0 when there is
    neither.
    """
    gross_profit = sum(p for p in pnls if p > 0)
    gross_loss = abs(sum(p for p in pnls if p < 0))

    if gross_loss == 0:
        return math.inf if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def max_drawdown(pnls: Sequence[float]) -> float:
    """
    Largest fall from the running equity peak, as a fraction of that peak.

    Equity starts at 0 and accumulates each P&L. While the peak is not
    positive there is no drawdown to measure. The value is not capped, so
    giving back more than the peak yields a ratio above 1.
    """
    peak = 0.0
    running = 0.0
    worst = 0.0

    for pnl in pnls:
        running += pnl
        peak = max(peak, running)
        drawdown = (peak - running) / peak if peak > 0 else 0.0
        worst = max(worst, drawdown)

    return worst


def longest_win_streak(pnls: Sequence[float]) -> int:
    best = current = 0
    for pnl in pnls:
        if pnl > 0:
            current += 1
            best = max(best, current)
        else:
            current = 0
    return best


def sharpe_ratio(returns_pct: Sequence[float], periods: int = 252) -> float:
    """
    Simplified annualised Sharpe ratio (no risk-free rate).

    Args:
        returns_pct: Per-trade returns in percent of stake
        periods: Annualisation factor
    """
    if len(returns_pct) < 2:
        return 0.0

    mean = sum(returns_pct) / len(returns_pct)
    variance = sum((r - mean) ** 2 for r in returns_pct) / len(returns_pct)
    std = math.sqrt(variance)

    if std == 0:
        return 0.0
    return mean / std * math.sqrt(periods)
