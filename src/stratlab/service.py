"""
Trading service.

Wires the datastore, market data, optimizer, session manager, portfolio
rollup and risk engine together and exposes the operations the
presentation layer consumes.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .backtest.engine import BacktestConfig
from .config.config_manager import StratLabConfig
from .database.db_manager import DatabaseManager
from .database.models import EquitySnapshot, PortfolioPoint, SessionRecord, StrategyRecord, TradeRecord
from .exceptions import BatchResult, NotFoundError
from .market.candles import Candle
from .market.provider import CcxtMarketDataProvider, MarketDataProvider
from .market.rate_limiter import FetchGate, FetchGateConfig
from .market.stream import KlineStream, ReconnectConfig
from .optimizer.optimizer import GenerationResult, StrategyOptimizer
from .paper.engine import TradingEngine
from .portfolio.rollup import PortfolioRollup
from .portfolio.session_manager import SessionManager
from .risk.risk_engine import RiskEngine, RiskReport
from .utils.helpers import now_ms

logger = logging.getLogger(__name__)


class TradingService:
    """
    Facade over the optimizer and paper-trading engine.

    Example:
        ```python
        async with TradingService(load_config("config.yaml")) as service:
            result = await service.generate(["BTCUSDT"], ["1h"], top_n=5)
            batch = await service.start_bulk([s.strategy_id for s in result.strategies], 10000)
        ```
    """

    def __init__(
        self,
        config: Optional[StratLabConfig] = None,
        provider: Optional[MarketDataProvider] = None,
        db: Optional[DatabaseManager] = None,
        clock=now_ms
    ):
        """
        Args:
            config: Configuration (defaults when None)
            provider: Candle source; a ccxt provider from config when None
            db: Datastore; one from config when None
            clock: Epoch-millisecond clock shared by sessions and the rollup
        """
        self.config = config or StratLabConfig()
        self._owns_provider = provider is None
        self.provider = provider or CcxtMarketDataProvider.from_settings(self.config.market_data)
        self.db = db or DatabaseManager.from_settings(self.config.database)
        self.gate = FetchGate(FetchGateConfig.from_settings(self.config.market_data))

        self.optimizer = StrategyOptimizer(
            self.provider,
            self.db,
            gate=self.gate,
            backtest_config=BacktestConfig.from_settings(self.config.backtest),
            settings=self.config.optimizer,
        )
        self.sessions = SessionManager(
            self.db,
            self.provider,
            gate=self.gate,
            settings=self.config.paper_trading,
            clock=clock,
        )
        self.rollup = PortfolioRollup(self.db, clock=clock)
        self.risk = RiskEngine.from_settings(self.config.portfolio)
        self.engine: Optional[TradingEngine] = None

    async def start(self) -> None:
        await self.db.connect()

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.stop()
        await self.rollup.stop()
        if self._owns_provider:
            await self.provider.close()
        await self.db.close()

    async def __aenter__(self) -> 'TradingService':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ==================== STRATEGIES ====================

    async def generate(
        self,
        symbols: Sequence[str],
        intervals: Sequence[str],
        top_n: Optional[int] = None,
        limit: Optional[int] = None,
        iterations: Optional[int] = None,
        **kwargs
    ) -> GenerationResult:
        return await self.optimizer.generate(
            symbols, intervals, top_n=top_n, limit=limit, iterations=iterations, **kwargs
        )

    async def list_strategies(
        self,
        symbol: Optional[str] = None,
        interval: Optional[str] = None
    ) -> List[StrategyRecord]:
        return await self.db.list_strategies(symbol=symbol, interval=interval)

    async def get_strategy(self, strategy_id: str) -> StrategyRecord:
        strategy = await self.db.get_strategy(strategy_id)
        if strategy is None:
            raise NotFoundError(f"Strategy {strategy_id} not found", entity="strategy", entity_id=strategy_id)
        return strategy

    async def delete_strategy(self, strategy_id: str) -> int:
        """
        Delete a strategy, stopping its active sessions first.

        Session history and trades are kept.

        Returns:
            Number of sessions stopped
        """
        await self.get_strategy(strategy_id)
        stopped = await self.sessions.stop_sessions_for_strategy(strategy_id)
        await self.db.delete_strategy(strategy_id)
        logger.info(f"Deleted strategy {strategy_id} ({stopped} session(s) stopped)")
        return stopped

    async def delete_all_strategies(self) -> int:
        """Delete every strategy after stopping all sessions. Returns strategies deleted."""
        await self.sessions.reset_all()
        deleted = await self.db.delete_all_strategies()
        logger.info(f"Deleted {deleted} strateg(ies)")
        return deleted

    # ==================== SESSIONS ====================

    async def start_session(
        self,
        strategy_id: str,
        initial_capital: Optional[float] = None,
        execution_mode: Optional[str] = None
    ) -> SessionRecord:
        return await self.sessions.start_session(strategy_id, initial_capital, execution_mode)

    async def start_bulk(
        self,
        strategy_ids: Sequence[str],
        total_capital: float,
        execution_mode: Optional[str] = None
    ) -> BatchResult:
        return await self.sessions.start_bulk(strategy_ids, total_capital, execution_mode)

    async def stop_session(self, session_id: str) -> SessionRecord:
        return await self.sessions.stop_session(session_id)

    async def list_sessions(self, status: Optional[str] = None) -> List[SessionRecord]:
        return await self.sessions.list_sessions(status=status)

    async def get_session(self, session_id: str) -> SessionRecord:
        return await self.sessions.get_session(session_id)

    async def reset_sessions(self) -> int:
        return await self.sessions.reset_all()

    # ==================== READS ====================

    async def get_trades(self, session_id: str, limit: Optional[int] = None) -> List[TradeRecord]:
        """Trades of a session, newest first."""
        await self.sessions.get_session(session_id)
        return await self.db.get_trades(session_id, limit=limit)

    async def get_equity_curve(self, session_id: str) -> List[EquitySnapshot]:
        await self.sessions.get_session(session_id)
        return await self.db.get_equity_curve(session_id)

    async def get_session_candles(self, session_id: str) -> List[Candle]:
        """The live window a running session is tracking."""
        return self.sessions.get_live_session(session_id).candles

    async def get_portfolio_history(
        self,
        range_days: Optional[int] = None,
        interval: Optional[str] = None
    ) -> List[PortfolioPoint]:
        settings = self.config.portfolio
        return await self.rollup.history(
            range_days or settings.history_range_days,
            interval or settings.history_interval,
        )

    async def get_risk_report(
        self,
        range_days: Optional[int] = None,
        interval: Optional[str] = None,
        confidence: Optional[float] = None
    ) -> RiskReport:
        history = await self.get_portfolio_history(range_days, interval)
        sessions = await self.sessions.list_sessions()
        return self.risk.report(history, sessions, confidence)

    # ==================== LIVE ====================

    async def run_live(self) -> None:
        """Stream live candles to the sessions and keep the rollup current until cancelled."""
        paper = self.config.paper_trading
        stream = KlineStream(
            self.config.market_data.ws_endpoint,
            subscriptions=self.sessions.subscriptions,
            reconnect_config=ReconnectConfig(base_delay=paper.stream_reconnect_delay),
        )
        await self.sessions.restore_sessions()
        self.engine = TradingEngine(self.sessions.registry, stream)
        self.rollup.start(self.config.portfolio.rollup_interval_seconds)
        try:
            await self.engine.run()
        finally:
            await self.rollup.stop()

    def status(self) -> Dict[str, Any]:
        return {
            'live_sessions': len(self.sessions.registry),
            'subscriptions': sorted(f"{s} {i}" for s, i in self.sessions.subscriptions()),
            'resetting': self.sessions.resetting,
            'fetch_gate': self.gate.get_stats(),
            'engine_running': bool(self.engine and self.engine.running),
        }
