"""
Strategy optimizer.

Random search over each strategy family's parameter space, scored by the
backtester and ranked per (symbol, interval). The best ``top_n`` results
of every combination are persisted as strategy records.

Backtests are pure functions of (candles, parameters) and run either
on a worker thread or on a process pool, never on the event-loop thread.
"""

import asyncio
import logging
import random
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..backtest.engine import Backtester, BacktestConfig, BacktestResult
from ..config.config_manager import OptimizerSettings
from ..database.db_manager import DatabaseManager
from ..database.models import StrategyRecord
from ..exceptions import (
    BatchItemError,
    InsufficientDataError,
    StratLabError,
    ValidationError,
)
from ..market.candles import Candle, CandleWindow
from ..market.provider import MarketDataProvider
from ..market.rate_limiter import FetchGate
from ..strategies.registry import get_strategy_class, sample_strategies, strategy_types
from ..utils.logger import get_logger

logger = logging.getLogger(__name__)
event_logger = get_logger('stratlab.optimizer.events')


@dataclass
class GenerationResult:
    """Outcome of one ``generate`` call."""
    strategies: List[StrategyRecord] = field(default_factory=list)
    errors: List[BatchItemError] = field(default_factory=list)
    candidates_evaluated: int = 0
    run_id: Optional[str] = None

    @property
    def strategies_created(self) -> int:
        return len(self.strategies)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'strategies_created': self.strategies_created,
            'candidates_evaluated': self.candidates_evaluated,
            'errors': [e.to_dict() for e in self.errors],
            'strategies': [s.strategy_id for s in self.strategies],
        }


@dataclass
class ScoredCandidate:
    """One backtested parameterization."""
    strategy: Any
    result: BacktestResult

    @property
    def rank_key(self) -> Tuple[float, float, int]:
        m = self.result.metrics
        return (-m.sharpe, m.max_drawdown_pct, -m.trade_count)


def downsample_curve(curve: Sequence[float], points: int = 50) -> List[float]:
    """
    Thin an equity curve to roughly ``points`` samples.

    Every ``len(curve) // points``-th sample is kept and the final sample
    is always present.
    """
    if not curve:
        return []
    step = max(1, len(curve) // points)
    sampled = list(curve[::step])
    if (len(curve) - 1) % step != 0:
        sampled.append(curve[-1])
    return sampled


def rank_candidates(candidates: List[ScoredCandidate], top_n: int) -> List[ScoredCandidate]:
    """Best ``top_n`` by Sharpe desc, then max drawdown asc, then trade count desc."""
    return sorted(candidates, key=lambda c: c.rank_key)[:top_n]


def score_candidates(
    candles: Sequence[Candle],
    strategies: Sequence[Any],
    config: BacktestConfig
) -> Tuple[List[ScoredCandidate], int]:
    """
    Backtest every strategy over the same candles.

    Module-level so it can run on a process pool.

    Returns:
        (scored candidates, number of candidates with too little history)
    """
    window = CandleWindow.from_candles(candles)
    backtester = Backtester(config)
    scored = []
    insufficient = 0
    for strategy in strategies:
        try:
            scored.append(ScoredCandidate(strategy, backtester.run(strategy, window)))
        except InsufficientDataError:
            insufficient += 1
    return scored, insufficient


class StrategyOptimizer:
    """
    Generates, scores and persists strategies.

    Example:
        ```python
        optimizer = StrategyOptimizer(provider, db)
        result = await optimizer.generate(["BTCUSDT"], ["1h"], top_n=5)
        print(result.strategies_created, result.errors)
        ```
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        db: DatabaseManager,
        gate: Optional[FetchGate] = None,
        backtest_config: Optional[BacktestConfig] = None,
        settings=None
    ):
        """
        Args:
            provider: Candle source
            db: Strategy repository
            gate: Shared request-pacing gate for fetches
            backtest_config: Backtest simulation settings
            settings: ``OptimizerSettings`` (defaults when None)
        """
        self.provider = provider
        self.db = db
        self.gate = gate or FetchGate()
        self.backtest_config = backtest_config or BacktestConfig()

        self.settings = settings or OptimizerSettings()

    def _validate(self, symbols, intervals, top_n, limit, iterations, types) -> None:
        if not symbols:
            raise ValidationError("At least one symbol is required", field_name="symbols")
        if not intervals:
            raise ValidationError("At least one interval is required", field_name="intervals")
        if any(not str(s).strip() for s in symbols):
            raise ValidationError("Symbols must be non-empty strings", field_name="symbols")
        for name, value in (("top_n", top_n), ("limit", limit), ("iterations", iterations)):
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValidationError(f"{name} must be a positive integer", field_name=name)
        for strategy_type in types:
            try:
                get_strategy_class(strategy_type)
            except ValueError as e:
                raise ValidationError(str(e), field_name="strategy_types") from None

    def _passes_filters(self, candidate: ScoredCandidate) -> bool:
        metrics = candidate.result.metrics
        if metrics.trade_count <= self.settings.min_trades:
            return False
        if self.settings.require_positive_return and metrics.total_return_pct <= 0:
            return False
        return True

    # ==================== GENERATION ====================

    async def generate(
        self,
        symbols: Sequence[str],
        intervals: Sequence[str],
        top_n: Optional[int] = None,
        limit: Optional[int] = None,
        iterations: Optional[int] = None,
        types: Optional[Sequence[str]] = None,
        seed: Optional[int] = None
    ) -> GenerationResult:
        """
        Search, rank and persist strategies for every (symbol, interval).

        Args:
            symbols: Ticker symbols, e.g. ``["BTCUSDT"]``
            intervals: Candle intervals, e.g. ``["1h", "4h"]``
            top_n: Strategies kept per combination
            limit: Candles fetched per combination
            iterations: Parameter sets tried per strategy type
            types: Strategy types to search (all when None)
            seed: Random seed for reproducible searches

        Returns:
            GenerationResult with the persisted strategies and per-item errors

        Raises:
            ValidationError: Rejected before any fetch or backtest.
        """
        top_n = self.settings.top_n if top_n is None else top_n
        limit = self.settings.limit if limit is None else limit
        iterations = self.settings.iterations if iterations is None else iterations
        types = list(types or self.settings.strategy_types or strategy_types())
        seed = self.settings.seed if seed is None else seed

        self._validate(symbols, intervals, top_n, limit, iterations, types)

        combinations = [(s.strip().upper(), i) for s in symbols for i in intervals]
        with event_logger.correlation_context() as run_id:
            event_logger.info(
                f"Generating strategies for {len(combinations)} combination(s), "
                f"{len(types)} type(s) x {iterations} iteration(s), top {top_n}"
            )
            started = time.monotonic()

            result = GenerationResult(run_id=run_id)
            executor = ProcessPoolExecutor(max_workers=self.settings.workers) if self.settings.workers > 0 else None
            try:
                outcomes = await asyncio.gather(*(
                    self._generate_combination(symbol, interval, top_n, limit, iterations, types, seed, executor)
                    for symbol, interval in combinations
                ))
            finally:
                if executor is not None:
                    executor.shutdown(wait=True)

            for records, errors, evaluated in outcomes:
                result.strategies.extend(records)
                result.errors.extend(errors)
                result.candidates_evaluated += evaluated

            event_logger.log_optimizer_event(
                {
                    'strategies_created': result.strategies_created,
                    'errors': len(result.errors),
                    'candidates': result.candidates_evaluated,
                    'elapsed_s': round(time.monotonic() - started, 2),
                },
                msg=f"Generation finished: {result.strategies_created} strategies, {len(result.errors)} error(s)"
            )
        return result

    async def _generate_combination(
        self,
        symbol: str,
        interval: str,
        top_n: int,
        limit: int,
        iterations: int,
        types: List[str],
        seed: Optional[int],
        executor: Optional[ProcessPoolExecutor]
    ) -> Tuple[List[StrategyRecord], List[BatchItemError], int]:
        item = f"{symbol} {interval}"
        errors: List[BatchItemError] = []

        try:
            candles = await self.gate.run(self.provider.fetch, symbol, interval, limit)
        except StratLabError as e:
            logger.warning(f"Skipping {item}: {e}")
            return [], [BatchItemError.from_exception(item, e)], 0

        rng = random.Random(f"{seed}:{symbol}:{interval}") if seed is not None else random.Random()
        candidates_by_type = {t: sample_strategies(t, iterations, rng) for t in types}

        loop = asyncio.get_running_loop()
        scored: List[ScoredCandidate] = []
        evaluated = 0
        for strategy_type, strategies in candidates_by_type.items():
            # None selects the loop's default thread pool
            type_scored, insufficient = await loop.run_in_executor(
                executor, partial(score_candidates, candles, strategies, self.backtest_config)
            )

            evaluated += len(type_scored)
            if not type_scored and insufficient:
                cls = get_strategy_class(strategy_type)
                errors.append(BatchItemError.from_exception(
                    f"{item} {strategy_type}",
                    InsufficientDataError(
                        f"{len(candles)} candles is too few for any {cls.strategy_type} candidate",
                        available=len(candles)
                    )
                ))
                continue
            scored.extend(c for c in type_scored if self._passes_filters(c))

        best = rank_candidates(scored, top_n)
        records = [self._to_record(symbol, interval, c) for c in best]

        if records:
            try:
                await self.db.save_strategies(records)
            except StratLabError as e:
                logger.error(f"Failed to persist strategies for {item}: {e}")
                return [], errors + [BatchItemError.from_exception(item, e)], evaluated

        logger.info(f"{item}: {len(scored)} candidate(s) passed filters, kept {len(records)}")
        return records, errors, evaluated

    def _to_record(self, symbol: str, interval: str, candidate: ScoredCandidate) -> StrategyRecord:
        strategy = candidate.strategy
        return StrategyRecord(
            strategy_type=strategy.strategy_type,
            symbol=symbol,
            interval=interval,
            parameters=strategy.parameters(),
            performance_metrics=candidate.result.metrics,
            kelly_fraction=candidate.result.kelly_fraction,
            backtest_curve=downsample_curve(candidate.result.equity_curve, self.settings.curve_points),
        )
