"""
Trading engine.

Routes live kline events to the paper-trading sessions subscribed to
each (symbol, interval) and keeps the stream's subscriptions in step
with the session registry.
"""

import asyncio
import logging
from typing import List, Optional

from ..database.models import TradeRecord
from ..market.stream import KlineEvent

logger = logging.getLogger(__name__)


class TradingEngine:
    """
    Live candle dispatcher.

    Sessions for the same stream are ticked concurrently; a failure in
    one session is logged and does not affect the others or the loop.
    """

    def __init__(self, registry, stream=None, refresh_interval: float = 5.0):
        """
        Args:
            registry: ``SessionRegistry`` holding the live sessions
            stream: Event source exposing ``events()``, ``refresh()`` and ``stop()``
            refresh_interval: Seconds between subscription checks
        """
        self.registry = registry
        self.stream = stream
        self.refresh_interval = refresh_interval
        self.running = False
        self._watch_task: Optional[asyncio.Task] = None

    async def dispatch(self, event: KlineEvent) -> List[TradeRecord]:
        """
        Feed one event to every matching active session.

        Returns:
            Trades executed across the sessions
        """
        sessions = self.registry.for_stream(event.symbol, event.interval)
        if not sessions:
            return []

        results = await asyncio.gather(
            *(s.on_candle(event.candle, event.is_final) for s in sessions),
            return_exceptions=True
        )

        trades: List[TradeRecord] = []
        for session, result in zip(sessions, results):
            if not session.is_active:
                self.registry.remove(session.session_id)
            if isinstance(result, BaseException):
                logger.error(
                    f"Session {session.session_id} failed on {event.symbol} {event.interval} tick: {result}",
                    exc_info=result
                )
                continue
            trades.extend(result)
        return trades

    async def _watch_subscriptions(self) -> None:
        while self.running:
            await asyncio.sleep(self.refresh_interval)
            try:
                await self.stream.refresh()
            except OSError as e:
                logger.warning(f"Stream refresh failed: {e}")

    async def run(self) -> None:
        """Dispatch stream events until ``stop()`` is called."""
        if self.stream is None:
            raise RuntimeError("TradingEngine.run requires a stream")

        self.running = True
        self._watch_task = asyncio.create_task(self._watch_subscriptions())
        logger.info("Trading engine started")
        try:
            async for event in self.stream.events():
                await self.dispatch(event)
                if not self.running:
                    break
        finally:
            self.running = False
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            logger.info("Trading engine stopped")

    async def stop(self) -> None:
        self.running = False
        if self.stream is not None:
            await self.stream.stop()
