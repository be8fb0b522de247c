"""
Entry Validator
Pre-trade economic gate: only take trades whose expected value clears fees
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List

from loguru import logger

import config as cfg
from execution.fee_model import FeeModel
from models import Market, VolatilityTier


@dataclass(frozen=True)
class EntryRules:
    """Thresholds for the entry gate."""
    take_profit_pct: Decimal = cfg.TAKE_PROFIT_LEVELS[cfg.ACTIVE_TAKE_PROFIT_LEVEL]
    stop_loss_pct: Decimal = cfg.STOP_LOSS
    min_expected_profit_pct: Decimal = cfg.MIN_EXPECTED_PROFIT  # Of stake
    min_edge_pct: Decimal = cfg.MIN_EDGE_OVER_FEES              # Of stake
    confidence_threshold: float = cfg.CONFIDENCE_THRESHOLD


@dataclass
class EntryValidation:
    """Result of the entry gate."""
    valid: bool
    reasons: List[str] = field(default_factory=list)
    expected_profit: Decimal = Decimal("0")
    fee_cost: Decimal = Decimal("0")
    edge_after_fees: Decimal = Decimal("0")
    break_even_profit: Decimal = Decimal("0")
    min_profit_required: Decimal = Decimal("0")  # Break-even as a fraction of stake


class EntryValidator:
    """
    Checks:
    - Confidence-weighted expected profit above a minimum
    - Edge after fees above a minimum
    - Predictor confidence above threshold

    Every failing check appends a reason; nothing short-circuits.
    """

    def __init__(self, fee_model: FeeModel = None, rules: EntryRules = None):
        self.fee_model = fee_model or FeeModel()
        self.rules = rules or EntryRules()

    def validate_entry(
        self,
        market: Market,
        confidence: float,
        stake: Decimal,
        tier=None,
    ) -> EntryValidation:
        """
        Validate a prospective entry.

        Args:
            market: Scored market
            confidence: Win probability estimate (0-100)
            stake: Dollar amount to commit
            tier: Volatility tier (defaults to the market's)

        Returns:
            EntryValidation with all applicable rejection reasons
        """
        stake = Decimal(str(stake))
        tier = VolatilityTier.parse(tier if tier is not None else market.volatility_tier)
        result = EntryValidation(valid=False)

        # Fees assume a winning exit (taker fee included)
        result.fee_cost = self.fee_model.compute_fees(stake, tier, True).total

        result.break_even_profit = self.fee_model.break_even_profit(stake, tier)
        if stake > 0:
            result.min_profit_required = result.break_even_profit / stake

        win_probability = Decimal(str(confidence)) / 100
        potential_win = stake * self.rules.take_profit_pct
        potential_loss = stake * self.rules.stop_loss_pct
        result.expected_profit = win_probability * potential_win - (1 - win_probability) * potential_loss

        min_expected = stake * self.rules.min_expected_profit_pct
        if result.expected_profit < min_expected:
            result.reasons.append(
                f"Expected profit (${result.expected_profit:.2f}) below minimum (${min_expected:.2f})"
            )

        result.edge_after_fees = result.expected_profit - result.fee_cost
        min_edge = stake * self.rules.min_edge_pct
        if result.edge_after_fees < min_edge:
            result.reasons.append(
                f"Edge after fees (${result.edge_after_fees:.2f}) below minimum (${min_edge:.2f})"
            )

        if confidence < self.rules.confidence_threshold:
            result.reasons.append(
                f"Confidence ({confidence:g}%) below threshold ({self.rules.confidence_threshold:g}%)"
            )

        result.valid = not result.reasons

        if result.valid:
            logger.info(
                f"Entry validated for {market.id}: expected ${result.expected_profit:.2f}, "
                f"edge after fees ${result.edge_after_fees:.2f}"
            )
        else:
            logger.warning(f"Entry rejected for {market.id}: {result.reasons}")

        return result
