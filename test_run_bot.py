"""
Tests for the command-line entry point.
"""
import pytest
from typer.testing import CliRunner

import config
from models import ExitReason
from monitoring.performance_tracker import PerformanceTracker
from run_bot import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _log_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def journal(tmp_path, make_outcome):
    path = tmp_path / "outcomes.json"
    tracker = PerformanceTracker()
    for pnl in (3, 3, 3, -1, 3):
        tracker.record_outcome(make_outcome(pnl, ExitReason.TAKE_PROFIT if pnl > 0 else ExitReason.STOP_LOSS))
    tracker.save(path)
    return path


def test_journal_summarizes_saved_outcomes(journal):
    result = runner.invoke(app, ["journal", "--journal", str(journal)])

    assert result.exit_code == 0
    assert "Trade Journal" in result.output
    assert "80.0%" in result.output


def test_journal_without_trades(tmp_path):
    result = runner.invoke(app, ["journal", "--journal", str(tmp_path / "none.json")])

    assert result.exit_code == 0
    assert "No trades recorded yet" in result.output


def test_readiness_fails_on_short_history(journal):
    result = runner.invoke(app, ["readiness", "--journal", str(journal)])

    assert result.exit_code == 1
    assert "Not ready" in result.output


def test_trade_rejects_unsupported_timer():
    result = runner.invoke(app, ["trade", "mkt", "--yes-price", "0.5", "--confidence", "80", "--timer", "7"])

    assert result.exit_code != 0
