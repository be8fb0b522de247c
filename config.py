"""
Centralized Configuration
All tuning constants loaded from environment variables with sensible defaults.
Every tunable can be overridden from the .env file.
"""
import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Price Source Policy
# =============================================================================
REQUIRE_REAL_PRICES = _env_bool("REQUIRE_REAL_PRICES", "true")     # Block trading without live feed
ALLOW_SIMULATION = _env_bool("ALLOW_SIMULATION", "false")          # Never trade on fake data by default

# =============================================================================
# Live Price Feed
# =============================================================================
FEED_URL = os.getenv("FEED_URL", "wss://ws-subscriptions-clob.polymarket.com/ws/market")
FEED_CONNECT_TIMEOUT = float(os.getenv("FEED_CONNECT_TIMEOUT", "10"))        # Seconds to wait for open
MAX_RECONNECT_ATTEMPTS = int(os.getenv("MAX_RECONNECT_ATTEMPTS", "5"))
RECONNECT_BACKOFF_BASE = float(os.getenv("RECONNECT_BACKOFF_BASE", "1.0"))   # Seconds
RECONNECT_BACKOFF_CAP = float(os.getenv("RECONNECT_BACKOFF_CAP", "30.0"))    # Seconds
PRICE_HISTORY_LENGTH = int(os.getenv("PRICE_HISTORY_LENGTH", "60"))          # Ticks kept per market
REFRESH_INTERVAL = float(os.getenv("REFRESH_INTERVAL", "1.0"))               # Price-tick timer (s)

# =============================================================================
# Fees (Polymarket)
# =============================================================================
INCLUDE_FEES = _env_bool("INCLUDE_FEES", "true")
TAKER_FEE = Decimal(os.getenv("TAKER_FEE", "0.02"))          # 2% on winnings
SLIPPAGE_RATES = {
    "low": Decimal(os.getenv("SLIPPAGE_LOW", "0.005")),
    "medium": Decimal(os.getenv("SLIPPAGE_MEDIUM", "0.01")),
    "high": Decimal(os.getenv("SLIPPAGE_HIGH", "0.02")),
}
TYPICAL_SPREAD = Decimal(os.getenv("TYPICAL_SPREAD", "0.01"))
GAS_PER_TX_USD = Decimal(os.getenv("GAS_PER_TX_USD", "0.01"))  # Polygon, per transaction

# =============================================================================
# Entry Gate
# =============================================================================
MIN_EXPECTED_PROFIT = Decimal(os.getenv("MIN_EXPECTED_PROFIT", "0.05"))   # Fraction of stake
MIN_EDGE_OVER_FEES = Decimal(os.getenv("MIN_EDGE_OVER_FEES", "0.03"))     # Fraction of stake
CONFIDENCE_THRESHOLD = float(os.getenv("CONFIDENCE_THRESHOLD", "75"))     # 0-100

# =============================================================================
# Exit Policy
# =============================================================================
TAKE_PROFIT_LEVELS = {
    "conservative": Decimal(os.getenv("TAKE_PROFIT_CONSERVATIVE", "0.08")),
    "standard": Decimal(os.getenv("TAKE_PROFIT_STANDARD", "0.15")),
    "aggressive": Decimal(os.getenv("TAKE_PROFIT_AGGRESSIVE", "0.25")),
}
ACTIVE_TAKE_PROFIT_LEVEL = os.getenv("ACTIVE_TAKE_PROFIT_LEVEL", "standard")
STOP_LOSS = Decimal(os.getenv("STOP_LOSS", "0.12"))
AUTO_TAKE_PROFIT = _env_bool("AUTO_TAKE_PROFIT", "true")
AUTO_STOP_LOSS = _env_bool("AUTO_STOP_LOSS", "true")

# =============================================================================
# Position Sizing
# =============================================================================
CONFIDENCE_BASELINE = Decimal(os.getenv("CONFIDENCE_BASELINE", "75"))
SHARE_LEVERAGE = Decimal(os.getenv("SHARE_LEVERAGE", "1.5"))
STAKE_MIN = Decimal(os.getenv("STAKE_MIN", "2"))
STAKE_MAX = Decimal(os.getenv("STAKE_MAX", "25"))

# =============================================================================
# Session / Risk
# =============================================================================
STARTING_BANKROLL = Decimal(os.getenv("STARTING_BANKROLL", "1000"))
RED_ZONE_THRESHOLD = Decimal(os.getenv("RED_ZONE_THRESHOLD", "-100"))   # Cumulative P&L lock
TIMER_OPTIONS = tuple(int(v) for v in os.getenv("TIMER_OPTIONS", "10,15,20,30").split(","))
DEFAULT_TIMER = int(os.getenv("DEFAULT_TIMER", "20"))                   # Seconds per trade

# =============================================================================
# Fallback Simulation
# =============================================================================
SIMULATION_STEP = {
    "low": Decimal(os.getenv("SIMULATION_STEP_LOW", "0.003")),
    "medium": Decimal(os.getenv("SIMULATION_STEP_MEDIUM", "0.006")),
    "high": Decimal(os.getenv("SIMULATION_STEP_HIGH", "0.01")),
}
SIMULATION_PRICE_FLOOR = Decimal("0.01")
SIMULATION_PRICE_CEILING = Decimal("0.99")

# =============================================================================
# Volatility Classification (percent)
# =============================================================================
VOLATILITY_LOW = float(os.getenv("VOLATILITY_LOW", "5"))
VOLATILITY_MEDIUM = float(os.getenv("VOLATILITY_MEDIUM", "15"))

# =============================================================================
# Live Readiness Requirements
# =============================================================================
READINESS_MIN_TRADES = int(os.getenv("READINESS_MIN_TRADES", "50"))
READINESS_MIN_WIN_RATE = float(os.getenv("READINESS_MIN_WIN_RATE", "0.55"))
READINESS_MIN_PROFIT_FACTOR = float(os.getenv("READINESS_MIN_PROFIT_FACTOR", "1.2"))
READINESS_MIN_CONSECUTIVE_WINS = int(os.getenv("READINESS_MIN_CONSECUTIVE_WINS", "3"))
READINESS_MAX_DRAWDOWN = float(os.getenv("READINESS_MAX_DRAWDOWN", "0.20"))

# =============================================================================
# Trade Journal
# =============================================================================
TRADE_LOG_FILE = os.getenv("TRADE_LOG_FILE", "trade_outcomes.json")
TRADE_LOG_MAX_ENTRIES = int(os.getenv("TRADE_LOG_MAX_ENTRIES", "1000"))

# =============================================================================
# Redis
# =============================================================================
REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REDIS_DB", "2"))
REDIS_SIMULATION_KEY = os.getenv("REDIS_SIMULATION_KEY", "polymarket_trading:allow_simulation")

# =============================================================================
# Monitoring / Logging
# =============================================================================
METRICS_PORT = int(os.getenv("METRICS_PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "./logs")
