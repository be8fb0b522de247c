"""
Metrics Exporter
Exposes trade lifecycle metrics in Prometheus format
"""
from typing import Optional

from loguru import logger
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

from execution.trade_engine import TradeLifecycleEngine
from models import TradeOutcome
from monitoring.performance_tracker import PerformanceTracker


class MetricsExporter:
    """
    Prometheus metrics for the engine and the trade journal.

    Metrics live in their own registry so several exporters (tests, CLI
    runs) can coexist in one process.
    """

    def __init__(
        self,
        engine: TradeLifecycleEngine,
        tracker: Optional[PerformanceTracker] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        """
        Initialize metrics exporter.

        Args:
            engine: Engine to observe (outcome listener is registered here)
            tracker: Journal providing win rate and drawdown
            registry: Prometheus registry (a fresh one by default)
        """
        self.engine = engine
        self.tracker = tracker
        self.registry = registry or CollectorRegistry()
        self._server_port: Optional[int] = None

        self._setup_metrics()
        self._bind_engine_gauges()
        self.update_metrics()
        engine.add_outcome_listener(self.record_outcome)

        logger.info("Initialized Metrics Exporter")

    def _setup_metrics(self) -> None:
        """Setup Prometheus metrics."""

        # Trade counters
        self.trades_closed = Counter(
            'trading_trades_closed',
            'Closed trades by exit reason',
            ['reason'],
            registry=self.registry,
        )

        self.trade_results = Counter(
            'trading_trade_results',
            'Closed trades by result',
            ['result'],
            registry=self.registry,
        )

        # Session state
        self.bankroll = Gauge(
            'trading_bankroll',
            'Available bankroll in USD',
            registry=self.registry,
        )

        self.session_pnl = Gauge(
            'trading_session_pnl',
            'Cumulative session net P&L in USD',
            registry=self.registry,
        )

        self.fees_paid = Gauge(
            'trading_fees_paid',
            'Fees paid this session in USD',
            registry=self.registry,
        )

        self.session_locked = Gauge(
            'trading_session_locked',
            '1 when the red-zone lock is active',
            registry=self.registry,
        )

        self.open_position = Gauge(
            'trading_open_position',
            '1 while a trade is pending or started',
            registry=self.registry,
        )

        self.net_pnl = Gauge(
            'trading_open_net_pnl',
            'Net P&L of the open trade in USD',
            registry=self.registry,
        )

        # Journal analytics
        self.win_rate = Gauge(
            'trading_win_rate',
            'Percentage of winning trades',
            registry=self.registry,
        )

        self.max_drawdown = Gauge(
            'trading_max_drawdown',
            'Maximum drawdown as percentage of peak equity',
            registry=self.registry,
        )

        # Trade timing
        self.hold_duration = Histogram(
            'trading_hold_duration_seconds',
            'Time from start to close',
            buckets=[5, 10, 15, 20, 30, 60, 120],
            registry=self.registry,
        )

    def _bind_engine_gauges(self) -> None:
        """Engine gauges read the live snapshot on every collection."""
        snap = self.engine.snapshot
        self.bankroll.set_function(lambda: float(snap().bankroll))
        self.session_pnl.set_function(lambda: float(snap().session_pnl))
        self.fees_paid.set_function(lambda: float(snap().fees_paid))
        self.session_locked.set_function(lambda: 1 if snap().session_locked else 0)
        self.open_position.set_function(lambda: 1 if snap().state is not None else 0)
        self.net_pnl.set_function(lambda: float(snap().net_pnl))

    def record_outcome(self, outcome: TradeOutcome) -> None:
        self.trades_closed.labels(reason=outcome.exit_reason.value).inc()
        self.trade_results.labels(result="win" if outcome.net_pnl > 0 else "loss").inc()
        self.hold_duration.observe(outcome.hold_seconds)
        self.update_metrics()

    def update_metrics(self) -> None:
        """Refresh the journal gauges. They change only when a trade closes."""
        if self.tracker is not None:
            metrics = self.tracker.calculate_metrics()
            self.win_rate.set(metrics.win_rate * 100)
            self.max_drawdown.set(metrics.max_drawdown * 100)

    def start_server(self, port: int) -> None:
        """Serve /metrics over HTTP from a daemon thread."""
        if self._server_port is not None:
            logger.warning(f"Metrics server already running on port {self._server_port}")
            return
        start_http_server(port, registry=self.registry)
        self._server_port = port
        logger.info(f"✓ Metrics server started on port {port}")
        logger.info(f"  Metrics available at: http://localhost:{port}/metrics")

    def render(self) -> bytes:
        """Current metrics in Prometheus text format."""
        self.update_metrics()
        return generate_latest(self.registry)
