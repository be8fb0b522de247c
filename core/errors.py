"""
Error taxonomy for the price feed and the trade lifecycle.

Feed errors describe transport trouble; lifecycle errors are recoverable
refusals (the caller simply does not get a position).
"""
from typing import List, Optional


class TradingError(Exception):
    """Base class for every error raised by the engine."""


# =============================================================================
# Feed
# =============================================================================

class FeedError(TradingError):
    """Price feed failure."""


class ConnectionTimeout(FeedError):
    """Transport did not signal open within the deadline."""

    def __init__(self, timeout: float):
        super().__init__(f"Price feed did not open within {timeout:.1f}s")
        self.timeout = timeout


class FeedConnectionError(FeedError):
    """Transport failed while connecting."""


class ReconnectExhausted(FeedError):
    """Reconnect attempts used up; reported to the owner, never raised."""

    def __init__(self, attempts: int):
        super().__init__(f"Gave up reconnecting after {attempts} attempts")
        self.attempts = attempts


class NotConnected(FeedError):
    """Subscription attempted while the feed is not connected."""


# =============================================================================
# Lifecycle
# =============================================================================

class LifecycleError(TradingError):
    """Trade lifecycle refusal."""


class AlreadyOpen(LifecycleError):
    """A position is already pending or started."""


class InsufficientFunds(LifecycleError):
    """Stake exceeds the available bankroll."""


class RejectedByValidator(LifecycleError):
    """Entry gate found the trade not worth taking after fees."""

    def __init__(self, reasons: List[str], validation: Optional[object] = None):
        super().__init__("; ".join(reasons) or "Entry rejected")
        self.reasons = list(reasons)
        self.validation = validation


class NoOpenTrade(LifecycleError):
    """Operation requires a trade in a state that does not exist."""


class SessionLocked(LifecycleError):
    """Session hit the red zone and must be reset before trading again."""


class PriceSourceUnavailable(LifecycleError):
    """Live prices are down and simulated prices are not permitted."""
