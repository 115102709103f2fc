"""
Live kline stream.

Connects to a Binance-style combined websocket stream and yields
``KlineEvent`` objects for the current subscription set. Handles:
- Reconnection with exponential backoff
- Resubscription when the subscription set changes
"""

import asyncio
import json
import logging
import random
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable, Optional, Set, Tuple

import websockets
from websockets.exceptions import ConnectionClosed

from .candles import Candle
from ..utils.helpers import calculate_backoff_delay

logger = logging.getLogger(__name__)

Subscription = Tuple[str, str]


@dataclass(frozen=True)
class KlineEvent:
    """One kline update. ``is_final`` is set once the bar has closed."""
    symbol: str
    interval: str
    candle: Candle
    is_final: bool


@dataclass
class ReconnectConfig:
    """Configuration for reconnection behavior."""
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True


def build_stream_url(endpoint: str, subscriptions: Iterable[Subscription]) -> str:
    """Combined-stream URL, e.g. ``.../stream?streams=btcusdt@kline_1m``."""
    names = sorted(f"{symbol.lower()}@kline_{interval}" for symbol, interval in subscriptions)
    return f"{endpoint.rstrip('/')}/stream?streams={'/'.join(names)}"


def parse_kline_message(raw) -> Optional[KlineEvent]:
    """
    Parse one combined-stream message.

    Returns None for anything that is not a kline payload.
    """
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-JSON stream message")
        return None

    data = message.get('data', message) if isinstance(message, dict) else None
    if not isinstance(data, dict) or data.get('e') != 'kline':
        return None

    k = data.get('k') or {}
    try:
        candle = Candle(
            timestamp=int(k['t']),
            open=float(k['o']),
            high=float(k['h']),
            low=float(k['l']),
            close=float(k['c']),
            volume=float(k.get('v', 0.0)),
        )
        return KlineEvent(
            symbol=str(data.get('s') or k['s']).upper(),
            interval=str(k['i']),
            candle=candle,
            is_final=bool(k.get('x', False)),
        )
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Malformed kline message: {e}")
        return None


class KlineStream:
    """
    Async iterator over live klines for a changing subscription set.

    Example:
        ```python
        stream = KlineStream(endpoint, subscriptions=registry.subscriptions)
        async for event in stream.events():
            await engine.dispatch(event)
        ```
    """

    CONNECTION_TIMEOUT = 10.0

    def __init__(
        self,
        endpoint: str,
        subscriptions: Callable[[], Set[Subscription]],
        reconnect_config: Optional[ReconnectConfig] = None
    ):
        self.endpoint = endpoint
        self._subscriptions = subscriptions
        self.reconnect_config = reconnect_config or ReconnectConfig()
        self._ws = None
        self._current: Set[Subscription] = set()
        self._stopped = False
        self._reconnect_attempts = 0

    def _backoff(self) -> float:
        delay = calculate_backoff_delay(
            self._reconnect_attempts,
            self.reconnect_config.base_delay,
            self.reconnect_config.max_delay,
            self.reconnect_config.exponential_base
        )
        if self.reconnect_config.jitter:
            delay *= random.uniform(0.5, 1.0)
        return delay

    async def refresh(self) -> None:
        """Reconnect if the subscription set changed since the last connect."""
        if set(self._subscriptions()) != self._current and self._ws is not None:
            logger.info("Subscription set changed, reconnecting stream")
            await self._ws.close()

    async def stop(self) -> None:
        self._stopped = True
        if self._ws is not None:
            await self._ws.close()

    async def events(self) -> AsyncIterator[KlineEvent]:
        """Yield kline events until ``stop()`` is called."""
        while not self._stopped:
            subscriptions = set(self._subscriptions())
            if not subscriptions:
                await asyncio.sleep(1.0)
                continue

            url = build_stream_url(self.endpoint, subscriptions)
            try:
                logger.info(f"Connecting kline stream ({len(subscriptions)} subscriptions)")
                self._ws = await asyncio.wait_for(
                    websockets.connect(url),
                    timeout=self.CONNECTION_TIMEOUT
                )
                self._current = subscriptions
                self._reconnect_attempts = 0

                async for raw in self._ws:
                    event = parse_kline_message(raw)
                    if event is not None:
                        yield event

            except ConnectionClosed as e:
                logger.warning(f"Kline stream closed: {e}")
            except (OSError, asyncio.TimeoutError) as e:
                logger.error(f"Kline stream connection failed: {e}")
            finally:
                if self._ws is not None:
                    await self._ws.close()
                    self._ws = None

            if self._stopped:
                break
            if set(self._subscriptions()) != self._current:
                continue

            delay = self._backoff()
            self._reconnect_attempts += 1
            logger.info(f"Reconnecting in {delay:.1f}s (attempt {self._reconnect_attempts})")
            await asyncio.sleep(delay)
