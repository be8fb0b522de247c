"""
Tests for the pre-trade economic gate.
"""
from decimal import Decimal

from execution.entry_validator import EntryRules, EntryValidator
from models import Market, VolatilityTier


def _validator():
    return EntryValidator(rules=EntryRules(
        take_profit_pct=Decimal("0.15"),
        stop_loss_pct=Decimal("0.12"),
        min_expected_profit_pct=Decimal("0.05"),
        min_edge_pct=Decimal("0.03"),
        confidence_threshold=75,
    ))


def test_confident_entry_clears_fees(market):
    result = _validator().validate_entry(market, 80, Decimal("5"))

    # 0.8 x 0.75 - 0.2 x 0.60
    assert result.valid
    assert result.reasons == []
    assert result.expected_profit == Decimal("0.48")
    assert result.fee_cost == Decimal("0.195")
    assert result.edge_after_fees == Decimal("0.285")
    assert result.min_profit_required == Decimal("0.049")


def test_every_failing_check_is_reported(market):
    result = _validator().validate_entry(market, 60, Decimal("5"))

    assert not result.valid
    assert len(result.reasons) == 3
    assert result.reasons[0].startswith("Expected profit")
    assert result.reasons[1].startswith("Edge after fees")
    assert result.reasons[2].startswith("Confidence")


def test_confidence_threshold_alone_can_reject(market):
    rules = EntryRules(confidence_threshold=95)
    result = EntryValidator(rules=rules).validate_entry(market, 90, Decimal("10"))

    assert not result.valid
    assert len(result.reasons) == 1
    assert "below threshold" in result.reasons[0]


def test_tier_override_changes_fee_cost():
    market = Market(id="m", question="?", yes_price=Decimal("0.5"), volatility_tier=VolatilityTier.LOW, confidence=85)
    validator = _validator()

    low = validator.validate_entry(market, 85, Decimal("10"))
    high = validator.validate_entry(market, 85, Decimal("10"), tier=VolatilityTier.HIGH)

    assert high.fee_cost - low.fee_cost == Decimal("0.15")
