import random

import numpy as np
import pytest

from stratlab.market.candles import CandleWindow
from stratlab.strategies import (
    AdaptiveMaCrossover,
    DynamicTrend,
    MaCrossover,
    Signal,
    build_strategy,
    sample_strategies,
    strategy_types,
)

from conftest import make_candles, wave_closes


def test_all_families_registered():
    assert set(strategy_types()) == {
        "MaCrossover", "MacdTrend", "PriceMomentum", "ObvTrend", "AdaptiveMaCrossover", "DynamicTrend",
        "AtrBreakout", "VolatilitySqueeze", "RsiMeanReversion", "BollingerReversion",
    }


@pytest.mark.parametrize("strategy_type", strategy_types())
def test_evaluate_matches_last_signal(strategy_type):
    window = CandleWindow.from_candles(make_candles(wave_closes(300)))
    strategy = build_strategy(strategy_type)
    codes = strategy.signals(window)
    assert len(codes) == len(window)

    for end in (strategy.min_window, 150, 300):
        prefix = window.head(end)
        decision = strategy.evaluate(prefix)
        expected = Signal.from_code(int(strategy.signals(prefix)[-1]))
        assert decision.signal is expected
        # signals are causal: the prefix agrees with the full history
        assert int(codes[end - 1]) == int(strategy.signals(prefix)[-1])


def test_warming_up_holds():
    window = CandleWindow.from_candles(make_candles(wave_closes(10)))
    decision = MaCrossover(fast_period=5, slow_period=20).evaluate(window)
    assert decision.signal is Signal.HOLD
    assert decision.reason == "warming up"


def test_invalid_parameters_rejected():
    with pytest.raises(ValueError):
        MaCrossover(fast_period=20, slow_period=10)
    with pytest.raises(ValueError):
        build_strategy("NoSuchStrategy")


def test_build_ignores_unknown_parameters():
    strategy = build_strategy("MaCrossover", {"fast_period": 4, "slow_period": 12, "legacy": 1})
    assert strategy.parameters() == {"fast_period": 4, "slow_period": 12}


def test_sampling_is_seeded_and_distinct():
    first = sample_strategies("MaCrossover", 20, random.Random(7))
    second = sample_strategies("MaCrossover", 20, random.Random(7))
    assert first == second
    assert len(set(first)) == len(first)
    for strategy in first:
        assert strategy.fast_period < strategy.slow_period


def test_uptrend_crossover_is_long():
    window = CandleWindow.from_candles(make_candles(list(np.linspace(100, 200, 60))))
    assert MaCrossover(fast_period=5, slow_period=20).evaluate(window).signal is Signal.BUY


def test_adaptive_crossover_follows_trend():
    up = CandleWindow.from_candles(make_candles(list(np.linspace(100, 200, 80))))
    down = CandleWindow.from_candles(make_candles(list(np.linspace(200, 100, 80))))
    strategy = AdaptiveMaCrossover(er_period=10, slow_period=40)
    assert strategy.evaluate(up).signal is Signal.BUY
    assert strategy.evaluate(down).signal is Signal.SELL
    assert strategy.evaluate(up).reason == "KAMA(10) above EMA(40)"


def test_dynamic_trend_holds_when_volatility_collapses():
    # Wide swings around a rising line, then a quiet, still-rising tail
    noisy = [100.0 + 0.5 * i + (4.0 if i % 2 else -4.0) for i in range(80)]
    quiet = [noisy[-1] + 0.01 * i for i in range(1, 41)]
    strategy = DynamicTrend(trend_period=20, atr_period=5, regime_period=40, regime_ratio=0.8)

    active = CandleWindow.from_candles(make_candles(noisy + [noisy[-1] + 6.0]))
    assert strategy.evaluate(active).signal is Signal.BUY

    calm = CandleWindow.from_candles(make_candles(noisy + quiet))
    assert strategy.evaluate(calm).signal is Signal.HOLD


def test_new_families_reject_invalid_parameters():
    with pytest.raises(ValueError):
        AdaptiveMaCrossover(er_period=20, slow_period=15)
    with pytest.raises(ValueError):
        DynamicTrend(atr_period=30, regime_period=20)
