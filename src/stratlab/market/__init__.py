"""
Market data package: candle types, providers, request pacing and live stream.
"""

from .candles import Candle, CandleWindow, INTERVAL_MS, interval_to_ms
from .provider import MarketDataProvider, CcxtMarketDataProvider, InMemoryMarketDataProvider
from .rate_limiter import FetchGate, FetchGateConfig
from .stream import KlineEvent, KlineStream, ReconnectConfig, build_stream_url, parse_kline_message

__all__ = [
    'Candle',
    'CandleWindow',
    'INTERVAL_MS',
    'interval_to_ms',
    'MarketDataProvider',
    'CcxtMarketDataProvider',
    'InMemoryMarketDataProvider',
    'FetchGate',
    'FetchGateConfig',
    'KlineEvent',
    'KlineStream',
    'ReconnectConfig',
    'build_stream_url',
    'parse_kline_message',
]
