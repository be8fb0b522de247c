"""
Fee Model
Slippage, spread, taker fee and gas costs for a Polymarket round trip
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict

import config as cfg
from models import FeeBreakdown, VolatilityTier, ZERO_FEES


@dataclass(frozen=True)
class FeeSchedule:
    """Fee rates applied to a stake."""
    taker_fee: Decimal = cfg.TAKER_FEE  # Charged on winnings only
    slippage_rates: Dict[str, Decimal] = field(default_factory=lambda: dict(cfg.SLIPPAGE_RATES))
    typical_spread: Decimal = cfg.TYPICAL_SPREAD
    gas_per_tx: Decimal = cfg.GAS_PER_TX_USD
    include_fees: bool = cfg.INCLUDE_FEES

    def slippage_rate(self, tier) -> Decimal:
        """Slippage for a tier; unknown tiers use the medium rate."""
        tier = VolatilityTier.parse(tier)
        rate = self.slippage_rates.get(tier.value)
        if rate is None:
            rate = self.slippage_rates[VolatilityTier.MEDIUM.value]
        return rate


class FeeModel:
    """
    Pure fee calculator.

    Round trip cost = slippage + half spread + taker fee (winners only)
    + gas for entry and exit.
    """

    def __init__(self, schedule: FeeSchedule = None):
        self.schedule = schedule or FeeSchedule()

    def compute_fees(self, stake: Decimal, tier=VolatilityTier.MEDIUM, is_winning: bool = False) -> FeeBreakdown:
        """
        Compute the fee breakdown for a stake.

        Args:
            stake: Dollar amount committed
            tier: Volatility tier (unknown → medium)
            is_winning: Taker fee only applies to winning positions

        Returns:
            FeeBreakdown (all zero when stake is zero or fees are disabled)
        """
        stake = Decimal(str(stake))
        if stake == 0 or not self.schedule.include_fees:
            return ZERO_FEES

        slippage = stake * self.schedule.slippage_rate(tier)
        spread_cost = stake * (self.schedule.typical_spread / 2)
        trading_fee = stake * self.schedule.taker_fee if is_winning else Decimal("0")
        gas_cost = self.schedule.gas_per_tx * 2  # Entry + exit

        total = slippage + spread_cost + trading_fee + gas_cost

        return FeeBreakdown(
            slippage=slippage,
            spread_cost=spread_cost,
            trading_fee=trading_fee,
            gas_cost=gas_cost,
            total=total,
            percentage_of_stake=total / stake * 100,
        )

    def net_pnl(self, gross_pnl: Decimal, stake: Decimal, tier=VolatilityTier.MEDIUM) -> Decimal:
        """Gross P&L less the round-trip fees for that outcome."""
        fees = self.compute_fees(stake, tier, gross_pnl > 0)
        return gross_pnl - fees.total

    def break_even_profit(self, stake: Decimal, tier=VolatilityTier.MEDIUM) -> Decimal:
        """
        Minimum gross profit that covers entry and exit costs.

        Entry: slippage + half spread. Exit: slippage + taker fee. Plus gas both ways.
        """
        stake = Decimal(str(stake))
        rate = self.schedule.slippage_rate(tier)
        entry_fees = stake * (rate + self.schedule.typical_spread / 2)
        exit_fees = stake * (rate + self.schedule.taker_fee)
        return entry_fees + exit_fees + self.schedule.gas_per_tx * 2
