"""
Technical Indicators Module

Causal indicator functions over numpy arrays. Every function returns an
array the same length as its input, with NaN where the indicator is not
yet defined, and value ``i`` depends only on inputs ``0..i``. The latter
property lets the backtester compute a series once for a whole history
and read the same values a live session would compute on a prefix.
"""

from typing import Tuple

import numpy as np


def calculate_sma(values: np.ndarray, period: int) -> np.ndarray:
    """
    Simple moving average.

    Args:
        values: Input series
        period: Window length

    Returns:
        SMA series (NaN for the first period-1 values)
    """
    values = np.asarray(values, dtype=float)
    out = np.full(len(values), np.nan)
    if period <= 0 or len(values) < period:
        return out
    csum = np.cumsum(np.insert(values, 0, 0.0))
    out[period - 1:] = (csum[period:] - csum[:-period]) / period
    return out


def calculate_ema(prices: np.ndarray, period: int) -> np.ndarray:
    """
    Exponential moving average seeded with the SMA of the first ``period`` values.

    Formula: EMA = price * k + previous EMA * (1 - k), k = 2 / (period + 1)

    Args:
        prices: Array of price values
        period: EMA period

    Returns:
        EMA series (NaN for the first period-1 values)
    """
    prices = np.asarray(prices, dtype=float)
    ema = np.full(len(prices), np.nan)
    if period <= 0 or len(prices) < period:
        return ema

    k = 2.0 / (period + 1.0)
    ema[period - 1] = prices[:period].mean()
    for i in range(period, len(prices)):
        ema[i] = prices[i] * k + ema[i - 1] * (1.0 - k)
    return ema


def _ema_skip_nan(values: np.ndarray, period: int) -> np.ndarray:
    """EMA of a series that starts with a NaN prefix."""
    out = np.full(len(values), np.nan)
    valid = np.flatnonzero(~np.isnan(values))
    if len(valid) == 0:
        return out
    start = valid[0]
    out[start:] = calculate_ema(values[start:], period)
    return out


def calculate_kama(
    prices: np.ndarray,
    period: int = 10,
    fast_period: int = 2,
    slow_period: int = 30
) -> np.ndarray:
    """
    Kaufman adaptive moving average.

    The smoothing constant moves between the fast and slow EMA constants
    with the efficiency ratio (net move over the summed bar-to-bar moves
    across ``period`` bars): close to the fast EMA in a clean trend, close
    to flat in chop.

    Args:
        prices: Array of price values
        period: Efficiency-ratio lookback
        fast_period: EMA period used at efficiency 1
        slow_period: EMA period used at efficiency 0

    Returns:
        KAMA series (NaN for the first ``period`` values)
    """
    prices = np.asarray(prices, dtype=float)
    kama = np.full(len(prices), np.nan)
    if period <= 0 or len(prices) <= period:
        return kama

    fast_sc = 2.0 / (fast_period + 1.0)
    slow_sc = 2.0 / (slow_period + 1.0)
    moves = np.abs(np.diff(prices))

    kama[period] = prices[period]
    for i in range(period + 1, len(prices)):
        noise = moves[i - period:i].sum()
        er = abs(prices[i] - prices[i - period]) / noise if noise > 0 else 0.0
        sc = (er * (fast_sc - slow_sc) + slow_sc) ** 2
        kama[i] = kama[i - 1] + sc * (prices[i] - kama[i - 1])
    return kama


def calculate_rsi(prices: np.ndarray, period: int = 14) -> np.ndarray:
    """
    Relative Strength Index with Wilder smoothing.

    Formula: RSI = 100 - 100 / (1 + avg_gain / avg_loss)

    Args:
        prices: Array of closing prices
        period: RSI period (default 14)

    Returns:
        RSI series in [0, 100] (NaN for the first ``period`` values)
    """
    prices = np.asarray(prices, dtype=float)
    rsi = np.full(len(prices), np.nan)
    if len(prices) <= period:
        return rsi

    deltas = np.diff(prices)
    gains = np.clip(deltas, 0, None)
    losses = np.clip(-deltas, 0, None)

    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()

    for i in range(period, len(prices)):
        if i > period:
            avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        if avg_loss == 0:
            rsi[i] = 100.0 if avg_gain > 0 else 50.0
        else:
            rsi[i] = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    return rsi


def calculate_true_range(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray) -> np.ndarray:
    """TR = max(high - low, |high - prev_close|, |low - prev_close|); first bar is high - low."""
    highs = np.asarray(highs, dtype=float)
    lows = np.asarray(lows, dtype=float)
    closes = np.asarray(closes, dtype=float)
    tr = highs - lows
    if len(tr) > 1:
        prev_close = closes[:-1]
        tr[1:] = np.maximum.reduce([
            highs[1:] - lows[1:],
            np.abs(highs[1:] - prev_close),
            np.abs(lows[1:] - prev_close),
        ])
    return tr


def calculate_atr(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, period: int = 14) -> np.ndarray:
    """
    Average True Range with Wilder smoothing.

    Args:
        highs: Array of high prices
        lows: Array of low prices
        closes: Array of closing prices
        period: ATR period (default 14)

    Returns:
        ATR series (NaN for the first period-1 values)
    """
    tr = calculate_true_range(highs, lows, closes)
    atr = np.full(len(tr), np.nan)
    if len(tr) < period or period <= 0:
        return atr

    atr[period - 1] = tr[:period].mean()
    for i in range(period, len(tr)):
        atr[i] = (atr[i - 1] * (period - 1) + tr[i]) / period
    return atr


def calculate_bollinger_bands(
    closes: np.ndarray,
    period: int = 20,
    num_std: float = 2.0
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Bollinger Bands using the population standard deviation of the window.

    Returns:
        Tuple of (upper, middle, lower)
    """
    closes = np.asarray(closes, dtype=float)
    middle = calculate_sma(closes, period)
    std = np.full(len(closes), np.nan)
    if period > 0 and len(closes) >= period:
        windows = np.lib.stride_tricks.sliding_window_view(closes, period)
        std[period - 1:] = windows.std(axis=1)
    return middle + num_std * std, middle, middle - num_std * std


def calculate_macd(
    closes: np.ndarray,
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    MACD line, signal line and histogram.

    Returns:
        Tuple of (macd, signal, histogram)
    """
    macd = calculate_ema(closes, fast_period) - calculate_ema(closes, slow_period)
    signal = _ema_skip_nan(macd, signal_period)
    return macd, signal, macd - signal


def calculate_obv(closes: np.ndarray, volumes: np.ndarray) -> np.ndarray:
    """On-balance volume, starting at 0."""
    closes = np.asarray(closes, dtype=float)
    volumes = np.asarray(volumes, dtype=float)
    if len(closes) == 0:
        return np.array([], dtype=float)
    direction = np.sign(np.diff(closes))
    obv = np.zeros(len(closes))
    obv[1:] = np.cumsum(direction * volumes[1:])
    return obv


def calculate_rate_of_change(closes: np.ndarray, period: int) -> np.ndarray:
    """Percent change over ``period`` bars."""
    closes = np.asarray(closes, dtype=float)
    roc = np.full(len(closes), np.nan)
    if period <= 0 or len(closes) <= period:
        return roc
    prev = closes[:-period]
    with np.errstate(divide='ignore', invalid='ignore'):
        roc[period:] = np.where(prev != 0, (closes[period:] - prev) / prev * 100.0, np.nan)
    return roc


def rolling_max(values: np.ndarray, period: int) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    out = np.full(len(values), np.nan)
    if period > 0 and len(values) >= period:
        out[period - 1:] = np.lib.stride_tricks.sliding_window_view(values, period).max(axis=1)
    return out


def rolling_min(values: np.ndarray, period: int) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    out = np.full(len(values), np.nan)
    if period > 0 and len(values) >= period:
        out[period - 1:] = np.lib.stride_tricks.sliding_window_view(values, period).min(axis=1)
    return out


def shift(values: np.ndarray, periods: int = 1) -> np.ndarray:
    """Lag a series by ``periods`` bars, padding with NaN."""
    values = np.asarray(values, dtype=float)
    out = np.full(len(values), np.nan)
    if periods < len(values):
        out[periods:] = values[:len(values) - periods]
    return out


def crossed_above(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """True where ``a`` moved from at-or-below ``b`` to above it on this bar."""
    a_prev, b_prev = shift(a), shift(b)
    with np.errstate(invalid='ignore'):
        return (a_prev <= b_prev) & (a > b)


def crossed_below(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """True where ``a`` moved from at-or-above ``b`` to below it on this bar."""
    a_prev, b_prev = shift(a), shift(b)
    with np.errstate(invalid='ignore'):
        return (a_prev >= b_prev) & (a < b)
