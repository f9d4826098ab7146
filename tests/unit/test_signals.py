"""
Unit tests for edge detection and signal generation.
"""

import pytest

from quantedge.core.config import TradingConfig
from quantedge.models.domain import Outcome, ProbabilityDistribution
from quantedge.strategies.signals import SignalGenerator, quote_edges


EVEN_BOOK = {Outcome.HOME: 2.0, Outcome.DRAW: 4.0, Outcome.AWAY: 4.0}


@pytest.fixture
def generator():
    return SignalGenerator(TradingConfig(min_edge=0.03, min_confidence=0.6))


class TestQuoteEdges:

    def test_edges_against_devigged_prices(self, make_prediction, make_quote):
        edges = {c.outcome: c.edge for c in quote_edges(make_prediction(), make_quote(EVEN_BOOK))}
        assert edges[Outcome.HOME] == pytest.approx(0.05)
        assert edges[Outcome.DRAW] == pytest.approx(0.0)
        assert edges[Outcome.AWAY] == pytest.approx(-0.05)

    def test_margin_removed_before_comparison(self, make_prediction, make_quote):
        quote = make_quote({Outcome.HOME: 1.9, Outcome.DRAW: 3.8, Outcome.AWAY: 3.8})
        edges = {c.outcome: c.edge for c in quote_edges(make_prediction(), quote)}
        assert edges[Outcome.HOME] == pytest.approx(0.05)

    def test_unpriced_draw_skipped_for_two_way_prediction(self, make_prediction, make_quote):
        prediction = make_prediction(
            distribution=ProbabilityDistribution(home=0.6, away=0.4),
        )
        outcomes = {c.outcome for c in quote_edges(prediction, make_quote(EVEN_BOOK))}
        assert outcomes == {Outcome.HOME, Outcome.AWAY}


class TestEvaluate:
    """Tests for SignalGenerator.evaluate."""

    def test_signal_for_best_edge(self, generator, make_prediction, make_quote):
        prediction = make_prediction()
        quote = make_quote(EVEN_BOOK)
        signal = generator.evaluate(prediction, [quote])

        assert signal is not None
        assert signal.outcome is Outcome.HOME
        assert signal.odds == 2.0
        assert signal.edge == pytest.approx(0.05)
        assert signal.implied_probability == pytest.approx(0.5)
        assert signal.strength == pytest.approx(0.5)
        assert signal.strategy == "value"
        assert signal.bookmaker == "bet365"
        assert signal.quote_id == quote.id
        assert signal.prediction_id == prediction.id

    def test_low_confidence_gives_no_signal(self, generator, make_prediction, make_quote):
        prediction = make_prediction(confidence=0.5)
        assert generator.evaluate(prediction, [make_quote(EVEN_BOOK)]) is None

    def test_small_edge_gives_no_signal(self, generator, make_prediction, make_quote):
        prediction = make_prediction(home=0.52, draw=0.25, away=0.23)
        assert generator.evaluate(prediction, [make_quote(EVEN_BOOK)]) is None

    def test_edge_equal_to_threshold_gives_signal(self, make_prediction, make_quote):
        # 0.57 - 0.5 evaluates to 0.06999999999999995 in binary floating point
        generator = SignalGenerator(TradingConfig(min_edge=0.07, min_confidence=0.6))
        prediction = make_prediction(home=0.57, draw=None, away=0.43)
        quote = make_quote({Outcome.HOME: 2.0, Outcome.AWAY: 2.0})

        signal = generator.evaluate(prediction, [quote])

        assert signal is not None
        assert signal.outcome is Outcome.HOME
        assert signal.edge == pytest.approx(0.07)

    def test_no_quotes_gives_no_signal(self, generator, make_prediction):
        assert generator.evaluate(make_prediction(), []) is None

    def test_inactive_and_foreign_quotes_ignored(self, generator, make_prediction, make_quote):
        quotes = [
            make_quote(EVEN_BOOK, is_active=False),
            make_quote(EVEN_BOOK, match_id="other"),
        ]
        assert generator.evaluate(make_prediction(), quotes) is None

    def test_best_edge_across_bookmakers(self, generator, make_prediction, make_quote):
        quotes = [
            make_quote(EVEN_BOOK, bookmaker="a"),
            make_quote({Outcome.HOME: 2.4, Outcome.DRAW: 3.6, Outcome.AWAY: 3.6}, bookmaker="b"),
        ]
        signal = generator.evaluate(make_prediction(), quotes)
        assert signal.bookmaker == "b"
        assert signal.outcome is Outcome.HOME

    def test_equal_edges_prefer_higher_probability(self, generator, make_prediction, make_quote):
        prediction = make_prediction(home=0.55, draw=0.30, away=0.15)
        signal = generator.evaluate(prediction, [make_quote(EVEN_BOOK)])
        assert signal.outcome is Outcome.HOME

    def test_equal_edges_and_probability_prefer_higher_odds(self, generator, make_prediction, make_quote):
        quotes = [
            make_quote(EVEN_BOOK, bookmaker="short"),
            make_quote({Outcome.HOME: 2.2, Outcome.DRAW: 4.4, Outcome.AWAY: 4.4}, bookmaker="long"),
        ]
        signal = generator.evaluate(make_prediction(), quotes)
        assert signal.bookmaker == "long"
        assert signal.odds == 2.2

    def test_odds_band(self, make_prediction, make_quote):
        prediction = make_prediction(home=0.40, draw=0.25, away=0.35)
        quote = make_quote(EVEN_BOOK)

        unbounded = SignalGenerator(TradingConfig())
        assert unbounded.evaluate(prediction, [quote]).outcome is Outcome.AWAY

        capped = SignalGenerator(TradingConfig(max_odds=3.0))
        assert capped.evaluate(prediction, [quote]) is None


class TestEdgeTable:

    def test_by_bookmaker_and_outcome(self, generator, make_prediction, make_quote):
        table = generator.edge_table(make_prediction(), [
            make_quote(EVEN_BOOK, bookmaker="a"),
            make_quote(EVEN_BOOK, bookmaker="b"),
        ])
        assert set(table) == {"a", "b"}
        assert table["a"]["home"] == pytest.approx(0.05)
