"""
Signal Aggregator - promotes agreeing independent signals to a combined alert.

combined confidence = min(cap, mean(confidences) * boost)

Tickers seen by several signals keep the strongest correlation and the mean
predicted change; the merged list is sorted by correlation strength and
truncated to the ticker cap.
"""

from typing import Dict, List, Optional, Sequence

from loguru import logger

from crossmarket.config import settings
from crossmarket.domain.signals import DOWN, UP, CombinedAlertDraft, Signal, TickerImpact


def severity_for(confidence: float) -> str:
    if confidence >= 0.85:
        return "critical"
    if confidence >= 0.75:
        return "high"
    return "medium"


class SignalAggregator:
    """Detector-count-agnostic combiner over the common `Signal` shape."""

    def __init__(
        self,
        boost: Optional[float] = None,
        cap: Optional[float] = None,
        ticker_cap: Optional[int] = None,
    ):
        self.boost = settings.combined_confidence_boost if boost is None else boost
        self.cap = settings.combined_confidence_cap if cap is None else cap
        self.ticker_cap = settings.combined_ticker_cap if ticker_cap is None else ticker_cap

    def combine(self, a: Optional[Signal], b: Optional[Signal]) -> Optional[CombinedAlertDraft]:
        """Combined alert for two signals, or None unless both exist and lean the same way."""
        if a is None or b is None:
            return None
        if a.direction == 0 or a.direction != b.direction:
            return None
        return self._merge([a, b])

    def combine_all(self, signals: Sequence[Optional[Signal]]) -> List[CombinedAlertDraft]:
        """
        One combined alert per direction backed by at least two detector kinds.

        Signals of the same kind are not independent of each other, so a
        direction needs agreement across kinds before it is promoted.
        """
        present = [s for s in signals if s is not None and s.direction != 0]
        alerts = []
        for direction in (DOWN, UP):
            group = [s for s in present if s.direction == direction]
            if len({s.kind for s in group}) < 2:
                continue
            alerts.append(self._merge(group))
        return alerts

    def _merge(self, group: List[Signal]) -> CombinedAlertDraft:
        avg_confidence = sum(s.confidence for s in group) / len(group)
        confidence = min(self.cap, avg_confidence * self.boost)

        merged: Dict[str, List[TickerImpact]] = {}
        for signal in group:
            for impact in signal.affected_tickers:
                merged.setdefault(impact.ticker, []).append(impact)

        tickers = []
        for ticker, impacts in merged.items():
            if len(impacts) == 1:
                tickers.append(impacts[0])
                continue
            tickers.append(TickerImpact(
                ticker=ticker,
                predicted_change=sum(i.predicted_change for i in impacts) / len(impacts),
                correlation_strength=max(i.correlation_strength for i in impacts),
                recommendation=next((i.recommendation for i in impacts if i.recommendation), None),
            ))
        tickers.sort(key=lambda t: t.correlation_strength, reverse=True)

        alert = CombinedAlertDraft(
            component_signal_ids=[s.id for s in group],
            direction=group[0].direction,
            severity=severity_for(confidence),
            confidence=confidence,
            merged_ticker_forecasts=tickers[: self.ticker_cap],
        )
        logger.info(
            f"Combined {len(group)} signals ({', '.join(s.kind for s in group)}) "
            f"direction={alert.direction} confidence={confidence:.4f} severity={alert.severity}"
        )
        return alert
