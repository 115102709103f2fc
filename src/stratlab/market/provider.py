"""
Market data providers.

This module provides:
- The ``MarketDataProvider`` protocol the optimizer and session manager use
- A ccxt-backed REST provider with error mapping and pagination
- An in-memory provider for offline runs and tests
"""

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

import ccxt.async_support as ccxt
from ccxt.base.errors import (
    BadSymbol as CCXTBadSymbol,
    RateLimitExceeded as CCXTRateLimitExceeded,
    DDoSProtection as CCXTDDoSProtection,
    NetworkError as CCXTNetworkError,
    ExchangeError as CCXTExchangeError,
)

from ..exceptions import DataFetchError, SymbolNotFoundError, RateLimitError
from ..utils.helpers import now_ms
from .candles import Candle, INTERVAL_MS, interval_to_ms

logger = logging.getLogger(__name__)


@runtime_checkable
class MarketDataProvider(Protocol):
    """Supplies ordered OHLCV candles for a symbol and interval."""

    async def fetch(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """
        Return up to ``limit`` most recent candles, oldest first.

        Raises:
            SymbolNotFoundError: Unknown symbol or interval.
            RateLimitError: The provider throttled the request.
        """
        ...


class CcxtMarketDataProvider:
    """
    REST candle provider backed by a ccxt exchange.

    Symbols may be given as exchange ids (``BTCUSDT``) or unified
    symbols (``BTC/USDT``). Requests above the exchange's page size are
    paginated forward from ``now - limit * interval``.
    """

    PAGE_SIZE = 1000

    def __init__(
        self,
        exchange_id: str = "binance",
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        timeout_ms: int = 30000
    ):
        self.exchange_id = exchange_id
        self._api_key = api_key
        self._api_secret = api_secret
        self._timeout_ms = timeout_ms
        self._exchange: Optional[ccxt.Exchange] = None
        self._connect_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> 'CcxtMarketDataProvider':
        return cls(
            exchange_id=settings.exchange_id,
            api_key=settings.api_key,
            api_secret=settings.api_secret,
            timeout_ms=settings.timeout_ms,
        )

    async def connect(self) -> None:
        """Create the exchange instance and load markets."""
        async with self._connect_lock:
            if self._exchange is not None:
                return

            logger.info(f"Connecting to {self.exchange_id} market data...")
            try:
                exchange_class = getattr(ccxt, self.exchange_id)
            except AttributeError:
                raise DataFetchError(
                    message=f"Unknown ccxt exchange: {self.exchange_id}",
                    details={'exchange_id': self.exchange_id}
                ) from None

            exchange = exchange_class({
                'apiKey': self._api_key,
                'secret': self._api_secret,
                'timeout': self._timeout_ms,
                'enableRateLimit': False,  # paced by FetchGate
            })
            try:
                await exchange.load_markets()
            except Exception as e:
                await exchange.close()
                raise DataFetchError(
                    message=f"Failed to load markets: {e}",
                    details={'original_error': str(e)}
                ) from e

            self._exchange = exchange
            logger.info(f"Loaded {len(exchange.markets)} markets")

    async def close(self) -> None:
        if self._exchange:
            await self._exchange.close()
            self._exchange = None
            logger.info("Market data connection closed")

    def _resolve_symbol(self, symbol: str, interval: str) -> str:
        try:
            return self._exchange.market(symbol)['symbol']
        except CCXTBadSymbol as e:
            raise SymbolNotFoundError(
                message=f"Unknown symbol: {symbol}",
                symbol=symbol,
                interval=interval,
                details={'original_error': str(e)}
            ) from e

    async def fetch(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        await self.connect()

        if interval not in INTERVAL_MS or interval not in (self._exchange.timeframes or {}):
            raise SymbolNotFoundError(
                message=f"Unsupported interval: {interval}",
                symbol=symbol,
                interval=interval
            )
        unified = self._resolve_symbol(symbol, interval)

        step = interval_to_ms(interval)
        since = now_ms() - limit * step
        candles: Dict[int, Candle] = {}

        while len(candles) < limit:
            page = min(self.PAGE_SIZE, limit - len(candles))
            rows = await self._fetch_page(unified, symbol, interval, since, page)
            if not rows:
                break
            for row in rows:
                candle = Candle.from_ohlcv(row)
                candles[candle.timestamp] = candle
            last_ts = int(rows[-1][0])
            if len(rows) < page or last_ts + step <= since:
                break
            since = last_ts + step

        ordered = [candles[ts] for ts in sorted(candles)]
        logger.debug(f"Fetched {len(ordered)} {interval} candles for {symbol}")
        return ordered[-limit:]

    async def _fetch_page(self, unified: str, symbol: str, interval: str, since: int, limit: int):
        try:
            return await self._exchange.fetch_ohlcv(unified, interval, since, limit)
        except (CCXTRateLimitExceeded, CCXTDDoSProtection) as e:
            raise RateLimitError(
                message=f"Rate limit exceeded: {e}",
                symbol=symbol,
                interval=interval,
                retry_after=getattr(e, 'retry_after', None),
            ) from e
        except CCXTBadSymbol as e:
            raise SymbolNotFoundError(
                message=f"Unknown symbol: {symbol}",
                symbol=symbol,
                interval=interval,
                details={'original_error': str(e)}
            ) from e
        except (CCXTNetworkError, CCXTExchangeError) as e:
            raise DataFetchError(
                message=f"Failed to fetch candles: {e}",
                symbol=symbol,
                interval=interval,
                details={'original_error': str(e)}
            ) from e


class InMemoryMarketDataProvider:
    """
    Provider serving candles from memory.

    ``rate_limit_failures`` makes the next N fetches of a key raise
    ``RateLimitError`` before succeeding.
    """

    def __init__(self, series: Optional[Dict[Tuple[str, str], List[Candle]]] = None):
        self._series: Dict[Tuple[str, str], List[Candle]] = dict(series or {})
        self.rate_limit_failures: Dict[Tuple[str, str], int] = {}
        self.calls: List[Tuple[str, str, int]] = []

    def add_series(self, symbol: str, interval: str, candles: List[Candle]) -> None:
        self._series[(symbol, interval)] = sorted(candles, key=lambda c: c.timestamp)

    async def fetch(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        self.calls.append((symbol, interval, limit))
        key = (symbol, interval)

        pending = self.rate_limit_failures.get(key, 0)
        if pending > 0:
            self.rate_limit_failures[key] = pending - 1
            raise RateLimitError(
                message=f"Rate limited fetching {symbol} {interval}",
                symbol=symbol,
                interval=interval,
                retry_after=0.0
            )

        if key not in self._series:
            raise SymbolNotFoundError(
                message=f"Unknown symbol or interval: {symbol} {interval}",
                symbol=symbol,
                interval=interval
            )
        return list(self._series[key][-limit:])
