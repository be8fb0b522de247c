"""
Price Feed Connection Manager
One live connection to the streaming price source, multiplexing per-market subscriptions
"""
import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Deque, Dict, Optional, Sequence

from loguru import logger

import config as cfg
from core.errors import ConnectionTimeout, FeedConnectionError, NotConnected, ReconnectExhausted
from core.timing.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from data_sources.polymarket.websocket import PolymarketWebSocket, build_subscription, parse_price_message
from models import PriceStats, PriceUpdate


class FeedState(Enum):
    """Feed connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class FeedSettings:
    """Connection and buffering limits."""
    url: str = cfg.FEED_URL
    connect_timeout: float = cfg.FEED_CONNECT_TIMEOUT
    max_reconnect_attempts: int = cfg.MAX_RECONNECT_ATTEMPTS
    backoff_base: float = cfg.RECONNECT_BACKOFF_BASE
    backoff_cap: float = cfg.RECONNECT_BACKOFF_CAP
    history_length: int = cfg.PRICE_HISTORY_LENGTH


PriceCallback = Callable[[PriceUpdate], None]
TransportFactory = Callable[[str], Awaitable]


def calculate_momentum(history: Sequence) -> int:
    """
    Short-window direction count over the most recent ticks.

    Walks back over at most four consecutive pairs: +1 per rise, -1 per
    fall, 0 when flat. Fewer than three samples gives 0.
    """
    prices = [Decimal(str(p)) for p in history]
    if len(prices) < 3:
        return 0

    momentum = 0
    for i in range(len(prices) - 1, max(0, len(prices) - 5), -1):
        if prices[i] > prices[i - 1]:
            momentum += 1
        elif prices[i] < prices[i - 1]:
            momentum -= 1
    return momentum


def momentum_label(momentum: int) -> str:
    """Human label for a momentum value."""
    if momentum >= 3:
        return "Strong Bullish"
    if momentum >= 1:
        return "Bullish"
    if momentum <= -3:
        return "Strong Bearish"
    if momentum <= -1:
        return "Bearish"
    return "Neutral"


class PriceFeedConnection:
    """
    Manages the live price stream with:
    - Connect deadline
    - Per-market subscription routing
    - Bounded price history per market
    - Exponential-backoff reconnection, cancellable by disconnect()
    """

    def __init__(
        self,
        settings: Optional[FeedSettings] = None,
        scheduler: Optional[Scheduler] = None,
        transport_factory: Optional[TransportFactory] = None,
        name: str = "Polymarket",
    ):
        """
        Initialize the feed.

        Args:
            settings: Connection limits (defaults from config)
            scheduler: Timer source for reconnect backoff
            transport_factory: Async callable url -> transport (send/close/async-iterable)
            name: Connection name for logging
        """
        self.settings = settings or FeedSettings()
        self.scheduler = scheduler or AsyncioScheduler()
        self.transport_factory = transport_factory or PolymarketWebSocket.open
        self.name = name

        # State
        self.state = FeedState.DISCONNECTED
        self.reconnect_attempts = 0
        self.reconnect_exhausted = False
        self.last_message_time: Optional[datetime] = None
        self.last_error: Optional[str] = None

        # Subscriptions and prices
        self._callbacks: Dict[str, PriceCallback] = {}
        self._prices: Dict[str, Decimal] = {}
        self._history: Dict[str, Deque[Decimal]] = {}

        # Transport and tasks
        self._transport = None
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[TimerHandle] = None
        self._reconnect_tasks = set()
        self._close_tasks = set()
        self._generation = 0  # Bumped by disconnect() to void pending reconnects
        self._closing = False

        # Owner callbacks
        self.on_state_change: Optional[Callable[[FeedState], None]] = None
        self.on_reconnect_exhausted: Optional[Callable[[ReconnectExhausted], None]] = None

        logger.info(f"Initialized price feed: {name} ({self.settings.url})")

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Open the stream.

        Returns:
            True once the transport signals open, False if disconnect()
            was called before it did

        Raises:
            ConnectionTimeout: open not signalled within the deadline
            FeedConnectionError: transport failure
        """
        if self.state == FeedState.CONNECTED:
            return True

        self._closing = False
        generation = self._generation
        self._set_state(FeedState.CONNECTING)
        logger.info(f"{self.name}: Connecting...")

        try:
            transport = await asyncio.wait_for(
                self.transport_factory(self.settings.url),
                timeout=self.settings.connect_timeout,
            )
        except asyncio.TimeoutError:
            self.last_error = "connect timeout"
            self._set_state(FeedState.DISCONNECTED)
            logger.error(f"{self.name}: Connection timed out after {self.settings.connect_timeout:.0f}s")
            raise ConnectionTimeout(self.settings.connect_timeout)
        except Exception as e:
            self.last_error = str(e)
            self._set_state(FeedState.DISCONNECTED)
            logger.error(f"{self.name}: Connection error: {e}")
            raise FeedConnectionError(str(e)) from e

        # disconnect() ran while the transport was opening
        if generation != self._generation:
            logger.info(f"{self.name}: Disconnected during connect, discarding transport")
            await self._close_transport(transport)
            return False

        self._transport = transport
        self.reconnect_attempts = 0
        self.reconnect_exhausted = False
        self.last_message_time = datetime.now(timezone.utc)
        self._set_state(FeedState.CONNECTED)
        logger.info(f"{self.name}: Connected successfully")

        # Re-issue subscriptions that survived a reconnect
        for market_id in self._callbacks:
            transport.send(build_subscription("subscribe", market_id))

        self._reader_task = asyncio.create_task(self._read_loop(transport))
        return True

    async def disconnect(self) -> None:
        """Close the transport and drop every subscription. Idempotent."""
        self._closing = True
        self._generation += 1

        if self._reconnect_timer:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

        for task in list(self._reconnect_tasks):
            task.cancel()

        if self._reader_task and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        self._reader_task = None

        transport, self._transport = self._transport, None
        if transport is not None:
            await self._close_transport(transport)

        if self._close_tasks:
            await asyncio.gather(*self._close_tasks)

        self._callbacks.clear()

        if self.state != FeedState.DISCONNECTED:
            self._set_state(FeedState.DISCONNECTED)
            logger.info(f"{self.name}: Disconnected")

    async def _read_loop(self, transport) -> None:
        try:
            async for raw in transport:
                self.handle_message(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.last_error = str(e)
            logger.warning(f"{self.name}: Stream error: {e}")

        self._handle_close(transport)

    def _handle_close(self, transport) -> None:
        if self._closing or transport is not self._transport:
            return

        logger.warning(f"{self.name}: Connection closed unexpectedly")
        self._transport = None
        self._reader_task = None

        task = asyncio.ensure_future(self._close_transport(transport))
        self._close_tasks.add(task)
        task.add_done_callback(self._close_tasks.discard)

        self._set_state(FeedState.DISCONNECTED)
        self.attempt_reconnect()

    async def _close_transport(self, transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"{self.name}: Error closing transport: {e}")

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff in seconds before the given attempt."""
        return min(self.settings.backoff_base * (2 ** attempt), self.settings.backoff_cap)

    def attempt_reconnect(self) -> Optional[TimerHandle]:
        """
        Schedule the next reconnect with exponential backoff.

        Returns:
            The scheduled timer, or None once attempts are exhausted
        """
        if self._closing:
            return None

        self.reconnect_attempts += 1

        if self.reconnect_attempts > self.settings.max_reconnect_attempts:
            self.reconnect_exhausted = True
            error = ReconnectExhausted(self.settings.max_reconnect_attempts)
            logger.error(
                f"{self.name}: Max reconnect attempts ({self.settings.max_reconnect_attempts}) reached"
            )
            if self.on_reconnect_exhausted:
                try:
                    self.on_reconnect_exhausted(error)
                except Exception:
                    logger.exception(f"{self.name}: reconnect-exhausted handler failed")
            return None

        delay = self.reconnect_delay(self.reconnect_attempts)
        logger.warning(
            f"{self.name}: Reconnect attempt {self.reconnect_attempts}/{self.settings.max_reconnect_attempts} "
            f"in {delay:.1f}s..."
        )

        if self._reconnect_timer:
            self._reconnect_timer.cancel()

        generation = self._generation
        self._reconnect_timer = self.scheduler.call_later(
            delay, lambda: self._on_reconnect_timer(generation), name=f"{self.name}-reconnect"
        )
        return self._reconnect_timer

    def _on_reconnect_timer(self, generation: int) -> None:
        if generation != self._generation or self._closing:
            return
        self._reconnect_timer = None
        task = asyncio.ensure_future(self._reconnect(generation))
        self._reconnect_tasks.add(task)
        task.add_done_callback(self._reconnect_tasks.discard)

    async def _reconnect(self, generation: int) -> None:
        if generation != self._generation or self._closing:
            return
        try:
            await self.connect()
        except (ConnectionTimeout, FeedConnectionError):
            if generation == self._generation:
                self.attempt_reconnect()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, market_id: str, on_update: PriceCallback) -> bool:
        """
        Route price updates for a market to a callback.

        Re-subscribing replaces the previous callback.

        Raises:
            NotConnected: feed is not connected
        """
        if self.state != FeedState.CONNECTED or self._transport is None:
            raise NotConnected(f"{self.name}: cannot subscribe to {market_id} while {self.state.value}")

        self._callbacks[market_id] = on_update
        self._transport.send(build_subscription("subscribe", market_id))
        logger.info(f"{self.name}: Subscribed to market {market_id}")
        return True

    def unsubscribe(self, market_id: str) -> None:
        """Stop routing a market. No-op if it was not subscribed."""
        if market_id not in self._callbacks:
            return

        del self._callbacks[market_id]
        if self._transport is not None and self.state == FeedState.CONNECTED:
            self._transport.send(build_subscription("unsubscribe", market_id))
        logger.info(f"{self.name}: Unsubscribed from market {market_id}")

    def is_subscribed(self, market_id: str) -> bool:
        return market_id in self._callbacks

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def handle_message(self, raw) -> None:
        """Apply every well-formed price tick in a frame; drop the rest."""
        self.last_message_time = datetime.now(timezone.utc)
        for market_id, price in parse_price_message(raw):
            self._update_price(market_id, price)

    def _update_price(self, market_id: str, price: Decimal) -> None:
        old_price = self._prices.get(market_id)
        self._prices[market_id] = price

        history = self._history.get(market_id)
        if history is None:
            history = deque(maxlen=self.settings.history_length)
            self._history[market_id] = history
        history.append(price)

        callback = self._callbacks.get(market_id)
        if callback is None:
            return

        update = PriceUpdate(
            market_id=market_id,
            price=price,
            change=price - old_price if old_price is not None else Decimal("0"),
            history=tuple(history),
            momentum=calculate_momentum(history),
            is_real=True,
            timestamp=self.last_message_time,
        )
        try:
            callback(update)
        except Exception:
            logger.exception(f"{self.name}: subscriber for {market_id} failed")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_price(self, market_id: str) -> Optional[Decimal]:
        return self._prices.get(market_id)

    def get_history(self, market_id: str) -> tuple:
        return tuple(self._history.get(market_id, ()))

    def get_price_stats(self, market_id: str) -> Optional[PriceStats]:
        """Summary over the bounded history."""
        current = self._prices.get(market_id)
        history = self._history.get(market_id)
        if current is None or not history:
            return None

        start = history[0]
        return PriceStats(
            current=current,
            start=start,
            high=max(history),
            low=min(history),
            change=current - start,
            change_percent=float((current - start) / start * 100) if start else 0.0,
            momentum=calculate_momentum(history),
            trend=1 if current > start else -1,
            is_real=True,
            sample_count=len(history),
        )

    @property
    def is_connected(self) -> bool:
        return self.state == FeedState.CONNECTED

    def get_stats(self) -> dict:
        """Connection statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "reconnect_attempts": self.reconnect_attempts,
            "reconnect_exhausted": self.reconnect_exhausted,
            "subscriptions": sorted(self._callbacks),
            "last_message_time": self.last_message_time.isoformat() if self.last_message_time else None,
            "last_error": self.last_error,
        }

    def _set_state(self, state: FeedState) -> None:
        if state == self.state:
            return
        self.state = state
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception:
                logger.exception(f"{self.name}: state-change handler failed")
