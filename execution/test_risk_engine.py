"""
Tests for session bankroll and red-zone bookkeeping.
"""
from decimal import Decimal

from execution.risk_engine import RiskEngine, RiskLimits
from models import VolatilityTier


def _engine(**overrides):
    limits = dict(
        starting_bankroll=Decimal("100"),
        red_zone_threshold=Decimal("-10"),
        stake_min=Decimal("2"),
        stake_max=Decimal("25"),
    )
    limits.update(overrides)
    return RiskEngine(RiskLimits(**limits))


def test_settle_credits_stake_plus_net():
    risk = _engine()
    risk.reserve(Decimal("10"))
    risk.settle(Decimal("10"), Decimal("-2.5"), Decimal("0.3"))

    assert risk.bankroll == Decimal("97.5")
    assert risk.session_pnl == Decimal("-2.5")
    assert risk.fees_paid == Decimal("0.3")
    assert risk.consecutive_losses == 1


def test_lock_reported_once_when_threshold_crossed():
    risk = _engine()

    assert risk.settle(Decimal("10"), Decimal("-6"), Decimal("0")) is False
    assert risk.settle(Decimal("10"), Decimal("-4"), Decimal("0")) is True
    assert risk.locked
    assert risk.settle(Decimal("10"), Decimal("-1"), Decimal("0")) is False


def test_reset_session_clears_everything():
    risk = _engine()
    risk.reserve(Decimal("10"))
    risk.settle(Decimal("10"), Decimal("-20"), Decimal("1"))

    risk.reset_session()

    summary = risk.get_risk_summary()
    assert summary["bankroll"] == 100.0
    assert summary["session_pnl"] == 0.0
    assert summary["locked"] is False
    assert summary["consecutive_losses"] == 0


def test_suggested_stake_per_tier():
    risk = _engine()

    assert risk.suggest_stake(VolatilityTier.LOW) == Decimal("6.6")
    assert risk.suggest_stake(VolatilityTier.MEDIUM) == Decimal("13.5")
    assert risk.suggest_stake("high") == Decimal("20.4")
