"""
Portfolio risk engine.

Computes portfolio-level risk from the materialized equity history:
running-peak drawdown, return volatility and historical Value-at-Risk,
plus the capital exposure of the active sessions.
"""

import logging
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, Optional, Sequence

from .metrics import historical_var, max_drawdown_pct, volatility_pct
from ..utils.logger import get_logger

logger = logging.getLogger(__name__)
risk_logger = get_logger('stratlab.risk.events')


@dataclass
class ExposureSummary:
    """Capital deployed in open positions across active sessions."""
    total_initial: float = 0.0
    total_exposure: float = 0.0
    exposure_pct: float = 0.0
    cash_pct: float = 0.0
    active_sessions: int = 0
    open_positions: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RiskReport:
    """Portfolio risk figures over one history window."""
    max_drawdown_pct: float = 0.0
    volatility: float = 0.0
    var: float = 0.0
    confidence: float = 0.95
    sample_count: int = 0
    exposure: ExposureSummary = field(default_factory=ExposureSummary)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['exposure'] = self.exposure.to_dict()
        return data


class RiskEngine:
    """
    Portfolio risk calculator.

    This class handles:
    - Drawdown of the portfolio equity series
    - Volatility of period-over-period returns (percent, not annualized)
    - Historical-simulation VaR on equity deltas
    - Exposure of active sessions
    """

    def __init__(self, confidence: float = 0.95, drawdown_alert_pct: Optional[float] = None):
        """
        Args:
            confidence: Default VaR confidence level, in (0, 1)
            drawdown_alert_pct: Log a risk event when drawdown reaches this level
        """
        if not 0 < confidence < 1:
            raise ValueError("confidence must be between 0 and 1")
        self.confidence = confidence
        self.drawdown_alert_pct = drawdown_alert_pct

    @classmethod
    def from_settings(cls, settings) -> 'RiskEngine':
        """Create from ``PortfolioSettings``."""
        return cls(
            confidence=settings.var_confidence,
            drawdown_alert_pct=settings.drawdown_alert_pct
        )

    @staticmethod
    def _equity(history: Sequence) -> list:
        return [
            float(getattr(p, 'total_equity', p))
            for p in history
        ]

    def max_drawdown(self, history: Sequence) -> float:
        return max_drawdown_pct(self._equity(history))

    def volatility(self, history: Sequence) -> float:
        return volatility_pct(self._equity(history))

    def value_at_risk(self, history: Sequence, confidence: Optional[float] = None) -> float:
        """
        Historical VaR of the equity history.

        Args:
            history: ``PortfolioPoint`` objects or plain equity values, oldest first
            confidence: Confidence level; defaults to the engine's

        Returns:
            The equity change at the loss quantile (negative for a loss)
        """
        return historical_var(self._equity(history), confidence or self.confidence)

    @staticmethod
    def exposure(sessions: Iterable) -> ExposureSummary:
        """
        Exposure of the active sessions.

        A session's current equity counts as exposed while it holds a position.
        """
        active = [s for s in sessions if s.is_active]
        total_initial = sum(s.initial_capital for s in active)
        open_sessions = [s for s in active if s.current_position != 0]
        total_exposure = sum(s.current_equity for s in open_sessions)

        if total_initial > 0:
            exposure_pct = total_exposure / total_initial * 100.0
            cash_pct = (total_initial - total_exposure) / total_initial * 100.0
        else:
            exposure_pct = cash_pct = 0.0

        return ExposureSummary(
            total_initial=total_initial,
            total_exposure=total_exposure,
            exposure_pct=exposure_pct,
            cash_pct=cash_pct,
            active_sessions=len(active),
            open_positions=len(open_sessions),
        )

    def report(
        self,
        history: Sequence,
        sessions: Iterable = (),
        confidence: Optional[float] = None
    ) -> RiskReport:
        """Build a full ``RiskReport`` for the given history and sessions."""
        confidence = confidence or self.confidence
        equity = self._equity(history)
        report = RiskReport(
            max_drawdown_pct=max_drawdown_pct(equity),
            volatility=volatility_pct(equity),
            var=historical_var(equity, confidence),
            confidence=confidence,
            sample_count=len(equity),
            exposure=self.exposure(sessions),
        )

        if self.drawdown_alert_pct is not None and report.max_drawdown_pct >= self.drawdown_alert_pct:
            risk_logger.log_risk_event(
                {'max_drawdown_pct': report.max_drawdown_pct, 'threshold': self.drawdown_alert_pct},
                msg="Portfolio drawdown above threshold"
            )
        logger.debug(
            f"Risk report: dd={report.max_drawdown_pct:.2f}% vol={report.volatility:.4f}% "
            f"var={report.var:.2f} n={report.sample_count}"
        )
        return report
