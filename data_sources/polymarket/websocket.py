"""
Polymarket WebSocket Data Source
Wire format and transport for the real-time market price stream
"""
import asyncio
import json
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator, List, Optional, Tuple, Union

import websockets
from loguru import logger


PRICE_MESSAGE_TYPES = ("price_update", "trade")


def build_subscription(action: str, market_id: str) -> str:
    """
    Build a control message.

    Args:
        action: "subscribe" or "unsubscribe"
        market_id: Market identifier

    Returns:
        JSON text ready to send
    """
    if action not in ("subscribe", "unsubscribe"):
        raise ValueError(f"Unknown subscription action: {action}")
    return json.dumps({"type": action, "channel": "market", "market": market_id})


def _parse_price(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return price if price.is_finite() else None


def _parse_event(event) -> Optional[Tuple[str, Decimal]]:
    if not isinstance(event, dict) or event.get("type") not in PRICE_MESSAGE_TYPES:
        return None

    market_id = event.get("market") or event.get("asset_id")
    if not market_id:
        return None

    raw_price = event.get("price")
    if raw_price in (None, ""):
        raw_price = event.get("yes_price")

    price = _parse_price(raw_price)
    if price is None:
        return None

    return str(market_id), price


def parse_price_message(raw: Union[str, bytes]) -> List[Tuple[str, Decimal]]:
    """
    Extract (market_id, price) pairs from an inbound frame.

    Frames may carry one event or a list of events. Anything malformed
    (bad JSON, missing id, non-numeric price) is skipped.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug(f"Dropping non-JSON frame: {raw!r:.80}")
        return []

    events = data if isinstance(data, list) else [data]
    ticks = []
    for event in events:
        tick = _parse_event(event)
        if tick is None:
            logger.debug(f"Dropping malformed price message: {event!r:.120}")
            continue
        ticks.append(tick)
    return ticks


class PolymarketWebSocket:
    """
    Transport over a websockets client connection.

    send() is synchronous: outbound frames are queued and flushed by a
    writer task, so control messages can be issued from timer callbacks.
    """

    def __init__(self, connection):
        self._connection = connection
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._drain())

    @classmethod
    async def open(cls, url: str) -> "PolymarketWebSocket":
        """Connect to the market channel."""
        connection = await websockets.connect(url, ping_interval=20, ping_timeout=20)
        logger.info(f"✓ Connected to Polymarket WebSocket: {url}")
        return cls(connection)

    def send(self, message: str) -> None:
        self._outbox.put_nowait(message)

    async def _drain(self) -> None:
        while True:
            message = await self._outbox.get()
            try:
                await self._connection.send(message)
            except websockets.exceptions.ConnectionClosed:
                logger.warning("Polymarket WebSocket closed while sending")
                return

    def __aiter__(self) -> AsyncIterator[Union[str, bytes]]:
        return self._connection.__aiter__()

    async def close(self) -> None:
        self._writer_task.cancel()
        try:
            await self._writer_task
        except asyncio.CancelledError:
            pass
        await self._connection.close()
        logger.info("Disconnected from Polymarket WebSocket")
