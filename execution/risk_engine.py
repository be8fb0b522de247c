"""
Risk Engine
Session bankroll, streak bookkeeping and the red-zone session lock
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from loguru import logger

import config as cfg
from models import VolatilityTier


@dataclass(frozen=True)
class RiskLimits:
    """Session risk limits."""
    starting_bankroll: Decimal = cfg.STARTING_BANKROLL
    red_zone_threshold: Decimal = cfg.RED_ZONE_THRESHOLD  # Cumulative P&L that locks the session
    stake_min: Decimal = cfg.STAKE_MIN
    stake_max: Decimal = cfg.STAKE_MAX


# Position in the stake range per tier
_STAKE_FRACTIONS = {
    VolatilityTier.LOW: Decimal("0.2"),
    VolatilityTier.MEDIUM: Decimal("0.5"),
    VolatilityTier.HIGH: Decimal("0.8"),
}


class RiskEngine:
    """
    Session-level risk state.

    Tracks:
    - Bankroll (stake is reserved at open, stake + net P&L credited at close)
    - Cumulative session P&L and fees paid
    - Consecutive win / loss streaks
    - Red-zone lock
    """

    def __init__(self, limits: Optional[RiskLimits] = None):
        self.limits = limits or RiskLimits()

        self.bankroll = self.limits.starting_bankroll
        self.session_pnl = Decimal("0")
        self.fees_paid = Decimal("0")
        self.consecutive_wins = 0
        self.consecutive_losses = 0
        self.trades_settled = 0
        self.locked = False
        self.locked_at: Optional[datetime] = None

        logger.info(
            f"Initialized Risk Engine: bankroll=${self.bankroll}, "
            f"red zone at ${self.limits.red_zone_threshold}"
        )

    def can_afford(self, stake: Decimal) -> bool:
        return stake <= self.bankroll

    def reserve(self, stake: Decimal) -> None:
        """Deduct a stake when a position opens."""
        self.bankroll -= stake
        logger.info(f"Reserved ${stake:.2f} (bankroll ${self.bankroll:.2f})")

    def refund(self, stake: Decimal) -> None:
        """Return a stake untouched (cancelled before start)."""
        self.bankroll += stake
        logger.info(f"Refunded ${stake:.2f} (bankroll ${self.bankroll:.2f})")

    def settle(self, stake: Decimal, net_pnl: Decimal, fees: Decimal) -> bool:
        """
        Book a closed trade.

        Ties count as wins.

        Returns:
            True if this settlement pushed the session into the red zone
        """
        self.bankroll += stake + net_pnl
        self.session_pnl += net_pnl
        self.fees_paid += fees
        self.trades_settled += 1

        if net_pnl >= 0:
            self.consecutive_wins += 1
            self.consecutive_losses = 0
        else:
            self.consecutive_losses += 1
            self.consecutive_wins = 0

        if not self.locked and self.session_pnl <= self.limits.red_zone_threshold:
            self.locked = True
            self.locked_at = datetime.now()
            logger.warning(
                f"[CRITICAL] RED ZONE: session P&L ${self.session_pnl:.2f} "
                f"<= ${self.limits.red_zone_threshold:.2f}, session locked"
            )
            return True
        return False

    def reset_session(self) -> None:
        """Start a fresh session: bankroll, P&L, streaks and lock."""
        self.bankroll = self.limits.starting_bankroll
        self.session_pnl = Decimal("0")
        self.fees_paid = Decimal("0")
        self.consecutive_wins = 0
        self.consecutive_losses = 0
        self.trades_settled = 0
        self.locked = False
        self.locked_at = None
        logger.info(f"Session reset (bankroll ${self.bankroll:.2f})")

    def suggest_stake(self, tier=VolatilityTier.MEDIUM) -> Decimal:
        """Stake inside the configured range, larger for more volatile markets."""
        tier = VolatilityTier.parse(tier)
        span = self.limits.stake_max - self.limits.stake_min
        return self.limits.stake_min + span * _STAKE_FRACTIONS[tier]

    def get_risk_summary(self) -> Dict[str, Any]:
        return {
            "bankroll": float(self.bankroll),
            "starting_bankroll": float(self.limits.starting_bankroll),
            "session_pnl": float(self.session_pnl),
            "fees_paid": float(self.fees_paid),
            "consecutive_wins": self.consecutive_wins,
            "consecutive_losses": self.consecutive_losses,
            "trades_settled": self.trades_settled,
            "red_zone_threshold": float(self.limits.red_zone_threshold),
            "locked": self.locked,
        }
