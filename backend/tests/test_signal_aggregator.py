"""
Tests for combining agreeing signals into combined alerts.
"""

import pytest

from crossmarket.domain.signals import DOWN, FLAT, UP, Signal, TickerImpact
from crossmarket.services.signal_aggregator import SignalAggregator, severity_for


def signal(sid, direction=DOWN, confidence=0.7, kind="crypto_correlation", tickers=()):
    return Signal(
        id=sid,
        kind=kind,
        direction=direction,
        confidence=confidence,
        affected_tickers=[
            TickerImpact(ticker=t, predicted_change=c, correlation_strength=s) for t, c, s in tickers
        ],
    )


@pytest.fixture
def aggregator():
    return SignalAggregator(boost=1.15, cap=0.95, ticker_cap=15)


class TestCombine:
    """Tests for pairwise combine."""

    def test_missing_signal(self, aggregator):
        assert aggregator.combine(signal("a"), None) is None
        assert aggregator.combine(None, signal("b")) is None

    def test_disagreeing_directions(self, aggregator):
        assert aggregator.combine(signal("a", DOWN), signal("b", UP, kind="event_sentiment")) is None

    def test_flat_signals_never_combine(self, aggregator):
        assert aggregator.combine(signal("a", FLAT), signal("b", FLAT, kind="event_sentiment")) is None

    def test_boosted_confidence(self, aggregator):
        alert = aggregator.combine(signal("a", confidence=0.70), signal("b", confidence=0.80, kind="event_sentiment"))

        assert alert.confidence == pytest.approx(0.8625)
        assert alert.severity == "critical"
        assert alert.direction == DOWN
        assert alert.component_signal_ids == ["a", "b"]

    def test_confidence_capped(self, aggregator):
        alert = aggregator.combine(signal("a", UP, 0.9), signal("b", UP, 0.95, kind="event_sentiment"))
        assert alert.confidence == pytest.approx(0.95)

    def test_combined_confidence_not_below_mean(self, aggregator):
        alert = aggregator.combine(signal("a", confidence=0.5), signal("b", confidence=0.6, kind="event_sentiment"))
        assert alert.confidence >= 0.55
        assert alert.severity == "medium"

    def test_merges_shared_tickers(self, aggregator):
        a = signal("a", tickers=[("COIN", -5.0, 0.9), ("MSTR", -4.0, 0.8)])
        b = signal("b", kind="event_sentiment", tickers=[("COIN", -3.0, 0.6), ("RIOT", 0.0, 0.0)])

        alert = aggregator.combine(a, b)

        tickers = {t.ticker: t for t in alert.merged_ticker_forecasts}
        assert set(tickers) == {"COIN", "MSTR", "RIOT"}
        assert tickers["COIN"].predicted_change == pytest.approx(-4.0)
        assert tickers["COIN"].correlation_strength == pytest.approx(0.9)
        strengths = [t.correlation_strength for t in alert.merged_ticker_forecasts]
        assert strengths == sorted(strengths, reverse=True)

    def test_ticker_cap(self):
        many = [(f"T{i:02d}", -1.0, i / 100.0) for i in range(30)]
        alert = SignalAggregator(ticker_cap=15).combine(
            signal("a", tickers=many), signal("b", kind="event_sentiment")
        )
        assert len(alert.merged_ticker_forecasts) == 15
        assert alert.merged_ticker_forecasts[0].ticker == "T29"


class TestCombineAll:
    """Tests for combine_all across any number of detectors."""

    def test_requires_two_kinds(self, aggregator):
        same_kind = [signal("a"), signal("b")]
        assert aggregator.combine_all(same_kind) == []

    def test_one_alert_per_direction(self, aggregator):
        signals = [
            signal("a", DOWN, 0.8),
            signal("b", DOWN, 0.7, kind="event_sentiment"),
            signal("c", UP, 0.9),
            signal("d", UP, 0.9, kind="onchain_flow"),
            signal("e", FLAT, 0.9, kind="event_sentiment"),
            None,
        ]

        alerts = aggregator.combine_all(signals)

        assert [a.direction for a in alerts] == [DOWN, UP]
        assert alerts[0].component_signal_ids == ["a", "b"]
        assert alerts[1].confidence == pytest.approx(0.95)

    def test_three_signals_average(self, aggregator):
        signals = [
            signal("a", UP, 0.6),
            signal("b", UP, 0.7, kind="event_sentiment"),
            signal("c", UP, 0.8, kind="onchain_flow"),
        ]
        alert = aggregator.combine_all(signals)[0]
        assert alert.confidence == pytest.approx(0.7 * 1.15)


class TestSeverity:
    @pytest.mark.parametrize("confidence,expected", [
        (0.95, "critical"), (0.85, "critical"), (0.84, "high"), (0.75, "high"), (0.74, "medium"),
    ])
    def test_thresholds(self, confidence, expected):
        assert severity_for(confidence) == expected
