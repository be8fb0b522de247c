"""
Tests for round-trip fee computation.
"""
from decimal import Decimal

import pytest

from execution.fee_model import FeeModel, FeeSchedule
from models import VolatilityTier


@pytest.fixture
def fees():
    return FeeModel(FeeSchedule(
        taker_fee=Decimal("0.02"),
        slippage_rates={"low": Decimal("0.005"), "medium": Decimal("0.01"), "high": Decimal("0.02")},
        typical_spread=Decimal("0.01"),
        gas_per_tx=Decimal("0.01"),
        include_fees=True,
    ))


@pytest.mark.parametrize("tier", list(VolatilityTier))
@pytest.mark.parametrize("stake", [Decimal("0.5"), Decimal("5"), Decimal("250")])
def test_taker_fee_only_on_winning_positions(fees, stake, tier):
    assert fees.compute_fees(stake, tier, False).trading_fee == 0
    assert fees.compute_fees(stake, tier, True).trading_fee == stake * Decimal("0.02")


def test_medium_tier_breakdown(fees):
    result = fees.compute_fees(Decimal("5"), VolatilityTier.MEDIUM, True)

    assert result.slippage == Decimal("0.05")
    assert result.spread_cost == Decimal("0.025")
    assert result.trading_fee == Decimal("0.10")
    assert result.gas_cost == Decimal("0.02")
    assert result.total == Decimal("0.195")
    assert result.percentage_of_stake == Decimal("3.9")


def test_slippage_scales_with_tier(fees):
    low = fees.compute_fees(Decimal("10"), VolatilityTier.LOW).slippage
    high = fees.compute_fees(Decimal("10"), VolatilityTier.HIGH).slippage

    assert low == Decimal("0.05")
    assert high == Decimal("0.20")


def test_unknown_tier_uses_medium_rates(fees):
    assert fees.compute_fees(Decimal("10"), "extreme").slippage == Decimal("0.10")
    assert fees.compute_fees(Decimal("10"), None).slippage == Decimal("0.10")


def test_zero_stake_has_no_fees(fees):
    result = fees.compute_fees(Decimal("0"), VolatilityTier.HIGH, True)

    assert result.total == 0
    assert result.gas_cost == 0


def test_fees_can_be_disabled():
    model = FeeModel(FeeSchedule(include_fees=False))

    assert model.compute_fees(Decimal("10"), VolatilityTier.HIGH, True).total == 0
    assert model.net_pnl(Decimal("1.5"), Decimal("10")) == Decimal("1.5")


def test_net_pnl_charges_taker_fee_only_on_gains(fees):
    assert fees.net_pnl(Decimal("1.00"), Decimal("5")) == Decimal("0.805")
    assert fees.net_pnl(Decimal("-0.50"), Decimal("5")) == Decimal("-0.595")


def test_break_even_covers_both_legs(fees):
    # entry 5 x (0.01 + 0.005) + exit 5 x (0.01 + 0.02) + gas 0.02
    assert fees.break_even_profit(Decimal("5"), VolatilityTier.MEDIUM) == Decimal("0.245")
