"""
Detectors that emit the common `Signal` shape consumed by the aggregator.

- Correlation detector: a pending prediction viewed as a directional signal.
- Event detector: keyword sentiment over recent news/announcement items.
"""

from datetime import datetime
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, Field
from loguru import logger

from crossmarket.config import settings
from crossmarket.domain.signals import DOWN, UP, Signal, TickerImpact
from crossmarket.services.prediction_generator import direction_sign
from crossmarket.services.signal_aggregator import severity_for
from crossmarket.utils.datetime import utc_now

CORRELATION_KIND = "crypto_correlation"
EVENT_KIND = "event_sentiment"

MAX_SIGNAL_TICKERS = 10


def prediction_to_signal(prediction: Any, min_confidence: Optional[float] = None) -> Optional[Signal]:
    """
    Signal view of a prediction (ORM row or PredictionView).

    Only confident, non-neutral predictions become signals; the top forecasts
    by correlation are carried as affected tickers.
    """
    threshold = settings.signal_min_confidence if min_confidence is None else min_confidence
    direction = direction_sign(prediction.predicted_direction)
    if direction == 0 or prediction.confidence < threshold:
        return None

    forecasts = [
        f if isinstance(f, dict) else f.model_dump()
        for f in (prediction.per_ticker_forecasts or [])
    ]
    tickers = [
        TickerImpact(
            ticker=f["ticker"],
            predicted_change=f["predicted_change_pct"],
            correlation_strength=f["correlation_score"],
            recommendation=f.get("recommendation"),
        )
        for f in forecasts[:MAX_SIGNAL_TICKERS]
    ]

    return Signal(
        id=f"{CORRELATION_KIND}:{prediction.id}",
        kind=CORRELATION_KIND,
        direction=direction,
        confidence=prediction.confidence,
        severity=severity_for(prediction.confidence),
        title=(
            f"{prediction.driver_symbol} moved {prediction.driver_move_pct:+.1f}% off-session: "
            f"{prediction.predicted_direction.replace('_', ' ')}"
        ),
        affected_tickers=tickers,
        created_at=prediction.created_at or utc_now(),
    )


class NewsItem(BaseModel):
    """A news or announcement item fed to the event detector."""

    id: Optional[str] = None
    title: str
    summary: str = ""
    tickers: List[str] = Field(default_factory=list)
    published_at: Optional[datetime] = None


BULLISH_KEYWORDS = (
    "listing", "launch", "partnership", "upgrade", "adoption",
    "bullish", "surge", "rally", "breakthrough", "approved",
)
BEARISH_KEYWORDS = (
    "delisting", "hack", "breach", "suspended", "investigation",
    "bearish", "crash", "vulnerability", "banned", "regulation",
)


def item_sentiment(item: NewsItem) -> int:
    """+1 bullish, -1 bearish, 0 when neither or tied."""
    text = f"{item.title} {item.summary}".lower()
    bullish = sum(1 for word in BULLISH_KEYWORDS if word in text and not _is_negated_listing(word, text))
    bearish = sum(1 for word in BEARISH_KEYWORDS if word in text)
    return (bullish > bearish) - (bullish < bearish)


def _is_negated_listing(word: str, text: str) -> bool:
    # "delisting" contains "listing"
    return word == "listing" and text.count("listing") == text.count("delisting")


class EventSignalDetector:
    """Independent event-driven detector over recent news items."""

    kind = EVENT_KIND

    def __init__(self, min_items: int = 3, max_confidence: float = 0.9):
        self.min_items = min_items
        self.max_confidence = max_confidence

    def detect(self, items: Sequence[NewsItem]) -> Optional[Signal]:
        """
        Majority keyword sentiment across items.

        Needs at least `min_items` items with a non-neutral sentiment;
        confidence grows 0.05 per matching item from 0.5, capped.
        """
        scored = [(item, item_sentiment(item)) for item in items]
        matching = [(item, s) for item, s in scored if s != 0]
        if len(matching) < self.min_items:
            return None

        up = sum(1 for _, s in matching if s > 0)
        down = len(matching) - up
        if up == down:
            return None
        direction = UP if up > down else DOWN
        agreeing = [item for item, s in matching if s == direction]

        confidence = min(self.max_confidence, 0.5 + 0.05 * len(matching))
        tickers = []
        seen = set()
        for item in agreeing:
            for ticker in item.tickers:
                symbol = ticker.upper()
                if symbol in seen:
                    continue
                seen.add(symbol)
                tickers.append(TickerImpact(ticker=symbol, predicted_change=0.0, correlation_strength=0.0))

        ids = sorted(item.id or item.title for item in agreeing)
        signal = Signal(
            id=f"{EVENT_KIND}:{ids[0]}:{len(ids)}",
            kind=EVENT_KIND,
            direction=direction,
            confidence=confidence,
            severity=severity_for(confidence),
            title=f"{len(agreeing)} of {len(matching)} recent items lean {'bullish' if direction == UP else 'bearish'}",
            affected_tickers=tickers,
        )
        logger.debug(f"Event detector: {signal.title} (confidence={confidence:.2f})")
        return signal
