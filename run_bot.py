#!/usr/bin/env python3
"""
Polymarket Trade Runner
Command-line entry point: run one paper position end to end, review the journal, audit readiness.
"""
import asyncio
import math
import sys
from decimal import Decimal
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

import config as cfg
from core.errors import FeedError, LifecycleError, RejectedByValidator
from core.ingestion.managers.price_feed import PriceFeedConnection
from core.timing.scheduler import AsyncioScheduler
from data_sources.simulated.price_simulator import FallbackPriceSimulator
from execution.trade_engine import PricePolicy, TradeLifecycleEngine, TradingRules
from models import Market, TradeOutcome, VolatilityTier
from monitoring.metrics_exporter import MetricsExporter
from monitoring.performance_tracker import PerformanceTracker
from monitoring.readiness_auditor import TradeReadinessAuditor
from redis_control import get_redis_client, resolve_price_policy

app = typer.Typer(help="Polymarket single-position trade lifecycle engine")
console = Console()


def setup_logging(level: str = cfg.LOG_LEVEL) -> None:
    """Configure loguru sinks: stderr plus a rotating file under LOG_DIR."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())

    log_dir = Path(cfg.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "trading_{time:YYYY-MM-DD}.log",
        level="DEBUG",
        rotation="1 day",
        retention="7 days",
    )


def _resolve_tier(value: str) -> VolatilityTier:
    """Tier name, or a volatility percentage to classify."""
    try:
        return VolatilityTier.classify(float(value))
    except ValueError:
        return VolatilityTier.parse(value)


def _fmt_ratio(value: float) -> str:
    return "∞" if math.isinf(value) else f"{value:.2f}"


def _outcome_panel(outcome: TradeOutcome) -> Panel:
    color = "green" if outcome.net_pnl > 0 else "red"
    body = (
        f"Exit: [bold]{outcome.exit_reason.value}[/bold]  Source: {outcome.price_source.value}\n"
        f"Entry {outcome.entry_price} → Exit {outcome.exit_price} "
        f"({outcome.price_change_percent:+.2f}%), {outcome.shares} shares\n"
        f"Gross ${outcome.gross_pnl:+.2f}  Fees ${outcome.fees.total:.2f}  "
        f"[{color}]Net ${outcome.net_pnl:+.2f} ({outcome.net_pnl_percent:+.2f}%)[/{color}]\n"
        f"Held {outcome.hold_seconds:.0f}s"
    )
    return Panel(body, title=f"Trade {outcome.trade_id}", border_style=color)


async def _run_trade(
    market: Market,
    stake: Optional[Decimal],
    rules: TradingRules,
    policy: PricePolicy,
    journal: Path,
    metrics_port: Optional[int],
) -> int:
    scheduler = AsyncioScheduler()
    feed = PriceFeedConnection(scheduler=scheduler)
    simulator = FallbackPriceSimulator()

    try:
        await feed.connect()
    except FeedError as e:
        console.print(f"[yellow]Live feed unavailable: {e}[/yellow]")

    engine = TradeLifecycleEngine(
        feed=feed,
        simulator=simulator,
        rules=rules,
        policy=policy,
        scheduler=scheduler,
    )

    tracker = PerformanceTracker()
    tracker.load(journal)
    engine.add_outcome_listener(tracker.record_outcome)

    if metrics_port:
        MetricsExporter(engine, tracker).start_server(metrics_port)

    done: asyncio.Future = asyncio.get_running_loop().create_future()

    def _finished(outcome: TradeOutcome) -> None:
        if not done.done():
            done.set_result(outcome)

    engine.add_outcome_listener(_finished)

    try:
        try:
            trade = engine.open(market, stake)
        except RejectedByValidator as e:
            console.print("[red]✗ Entry rejected:[/red]")
            for reason in e.reasons:
                console.print(f"  - {reason}")
            return 1
        except LifecycleError as e:
            console.print(f"[red]✗ Cannot open trade: {e}[/red]")
            return 1

        console.print(
            f"[cyan]Opened {trade.trade_id}: ${trade.stake:.2f} → {trade.shares} shares @ {trade.entry_price} "
            f"({trade.price_source.value} prices)[/cyan]"
        )
        engine.start()

        while not done.done():
            try:
                await asyncio.wait_for(asyncio.shield(done), timeout=1.0)
            except asyncio.TimeoutError:
                snap = engine.snapshot()
                if snap.state is not None:
                    console.print(
                        f"  {snap.time_remaining:>3}s  price {snap.current_price}  "
                        f"net ${snap.net_pnl:+.2f}  {snap.momentum_label}"
                    )

        console.print(_outcome_panel(done.result()))
        return 0

    finally:
        engine.shutdown()
        simulator.shutdown()
        await feed.disconnect()
        tracker.save(journal)


@app.command()
def trade(
    market_id: str = typer.Argument(..., help="Market identifier"),
    yes_price: float = typer.Option(..., "--yes-price", "-p", help="Current YES price (0-1)"),
    confidence: float = typer.Option(..., "--confidence", "-c", help="Predictor confidence (0-100)"),
    question: str = typer.Option("", "--question", "-q", help="Market question"),
    tier: str = typer.Option("medium", "--tier", "-t", help="Volatility tier (low, medium, high) or volatility percent"),
    stake: Optional[float] = typer.Option(None, "--stake", "-s", help="Stake in USD (default: suggested for tier)"),
    timer: int = typer.Option(cfg.DEFAULT_TIMER, "--timer", help="Seconds on the clock"),
    allow_simulation: Optional[bool] = typer.Option(
        None, "--allow-simulation/--real-only", help="Override the simulated-price policy"
    ),
    journal: Path = typer.Option(Path(cfg.TRADE_LOG_FILE), "--journal", "-j", help="Outcome journal file"),
    metrics_port: Optional[int] = typer.Option(None, "--metrics-port", help="Serve Prometheus metrics"),
    log_level: str = typer.Option(cfg.LOG_LEVEL, "--log-level", help="Log level"),
):
    """
    Run one position: open, start, and hold until an exit fires.

    Example:
        python run_bot.py trade 0xabc --yes-price 0.52 --confidence 82 --tier high
    """
    setup_logging(log_level)

    if timer not in cfg.TIMER_OPTIONS:
        raise typer.BadParameter(f"timer must be one of {cfg.TIMER_OPTIONS}")

    try:
        market = Market(
            id=market_id,
            question=question or market_id,
            yes_price=Decimal(str(yes_price)),
            volatility_tier=_resolve_tier(tier),
            confidence=confidence,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))

    if allow_simulation is None:
        policy = resolve_price_policy(get_redis_client())
    else:
        policy = PricePolicy.simulated(allow_simulation)

    rules = TradingRules(timer_seconds=timer)
    stake_value = Decimal(str(stake)) if stake is not None else None

    exit_code = asyncio.run(_run_trade(market, stake_value, rules, policy, journal, metrics_port))
    raise typer.Exit(exit_code)


@app.command("journal")
def show_journal(
    path: Path = typer.Option(Path(cfg.TRADE_LOG_FILE), "--journal", "-j", help="Outcome journal file"),
    last: int = typer.Option(10, "--last", "-n", help="Recent trades to list"),
):
    """Summarize the saved trade outcomes."""
    setup_logging("WARNING")

    tracker = PerformanceTracker()
    tracker.load(path)

    if not len(tracker):
        console.print("[yellow]No trades recorded yet.[/yellow]")
        raise typer.Exit(0)

    m = tracker.calculate_metrics()

    summary = Table(title="Trade Journal")
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", justify="right")
    summary.add_row("Trades", str(m.total_trades))
    summary.add_row("Win rate", f"{m.win_rate:.1%}")
    summary.add_row("Net P&L", f"${m.total_net_pnl:+.2f}")
    summary.add_row("Fees", f"${m.total_fees:.2f}")
    summary.add_row("Avg win / loss", f"${m.avg_win:+.2f} / ${m.avg_loss:+.2f}")
    summary.add_row("Profit factor", _fmt_ratio(m.profit_factor))
    summary.add_row("Max drawdown", f"{m.max_drawdown:.1%}")
    summary.add_row("Sharpe", f"{m.sharpe_ratio:.2f}")
    summary.add_row("Streak", f"{m.consecutive_wins}W / {m.consecutive_losses}L")
    console.print(summary)

    recent = Table(title=f"Last {last} trades")
    for column in ("Closed", "Market", "Exit", "Source", "Net P&L"):
        recent.add_column(column)
    for outcome in tracker.get_trade_history(last):
        color = "green" if outcome.net_pnl > 0 else "red"
        recent.add_row(
            outcome.closed_at.strftime("%Y-%m-%d %H:%M:%S"),
            outcome.market_id,
            outcome.exit_reason.value,
            outcome.price_source.value,
            f"[{color}]${outcome.net_pnl:+.2f}[/{color}]",
        )
    console.print(recent)


@app.command()
def readiness(
    path: Path = typer.Option(Path(cfg.TRADE_LOG_FILE), "--journal", "-j", help="Outcome journal file"),
):
    """Audit the journal against the live-trading minimums. Exit code 0 when ready."""
    setup_logging("WARNING")

    tracker = PerformanceTracker()
    tracker.load(path)

    auditor = TradeReadinessAuditor()
    report = auditor.audit(tracker.get_trade_history(limit=len(tracker)))
    c = auditor.criteria

    table = Table(title="Live Readiness")
    table.add_column("Check", style="cyan")
    table.add_column("Actual", justify="right")
    table.add_column("Required", justify="right")
    table.add_column("Status")

    rows = [
        ("min_trades", str(report.total_trades), f">= {c.min_trades}"),
        ("win_rate", f"{report.win_rate:.1%}", f">= {c.min_win_rate:.0%}"),
        ("profit_factor", _fmt_ratio(report.profit_factor), f">= {c.min_profit_factor}"),
        ("consecutive_wins", str(report.longest_win_streak), f">= {c.min_consecutive_wins}"),
        ("max_drawdown", f"{report.max_drawdown:.1%}", f"<= {c.max_drawdown:.0%}"),
    ]
    for name, actual, required in rows:
        status = "[green]✓ PASS[/green]" if report.checks[name] else "[red]✗ FAIL[/red]"
        table.add_row(name, actual, required, status)

    console.print(table)

    if report.ready:
        console.print("[green]✓ Ready for live trading[/green]")
        raise typer.Exit(0)
    console.print("[red]✗ Not ready for live trading[/red]")
    raise typer.Exit(1)


if __name__ == "__main__":
    app()
