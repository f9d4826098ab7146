"""
Unit tests for the domain records.

Covers the invariants enforced at construction: probability ranges and
sums, positive stakes and odds, read-only mappings.
"""

from decimal import Decimal
import math

import pytest

from quantedge.core.errors import ValidationError
from quantedge.models.domain import (
    Bet,
    BetStatus,
    EventType,
    FeatureVector,
    MatchEvent,
    OddsQuote,
    Outcome,
    PortfolioSnapshot,
    Prediction,
    ProbabilityDistribution,
    to_money,
    money_floor,
)


class TestProbabilityDistribution:
    """Tests for ProbabilityDistribution."""

    def test_three_way(self):
        dist = ProbabilityDistribution(home=0.5, draw=0.3, away=0.2)
        assert dist.has_draw
        assert dist.outcomes == (Outcome.HOME, Outcome.DRAW, Outcome.AWAY)
        assert dist.total == pytest.approx(1.0)

    def test_two_way_has_no_draw(self):
        dist = ProbabilityDistribution(home=0.6, away=0.4)
        assert not dist.has_draw
        assert dist.get(Outcome.DRAW) == 0.0
        assert Outcome.DRAW not in dist.as_dict()

    def test_sum_within_epsilon_allowed(self):
        dist = ProbabilityDistribution(home=0.5, draw=0.3, away=0.2005)
        assert dist.total <= 1.001

    def test_sum_above_epsilon_rejected(self):
        with pytest.raises(ValidationError):
            ProbabilityDistribution(home=0.5, draw=0.3, away=0.21)

    @pytest.mark.parametrize("value", [-0.1, 1.5, float("nan")])
    def test_term_out_of_range_rejected(self, value):
        with pytest.raises(ValidationError):
            ProbabilityDistribution(home=value, away=0.0)

    def test_normalized(self):
        dist = ProbabilityDistribution(home=0.3, draw=0.1, away=0.1).normalized()
        assert dist.total == pytest.approx(1.0)
        assert dist.home == pytest.approx(0.6)

    def test_normalized_all_zero_rejected(self):
        with pytest.raises(ValidationError):
            ProbabilityDistribution(home=0.0, away=0.0).normalized()

    def test_most_likely_prefers_home_on_tie(self):
        dist = ProbabilityDistribution(home=0.4, draw=0.2, away=0.4)
        assert dist.most_likely() == (Outcome.HOME, 0.4)

    def test_entropy_uniform_is_maximal(self):
        uniform = ProbabilityDistribution(home=1 / 3, draw=1 / 3, away=1 / 3)
        skewed = ProbabilityDistribution(home=0.8, draw=0.1, away=0.1)
        assert uniform.entropy() == pytest.approx(math.log(3))
        assert skewed.entropy() < uniform.entropy()

    def test_from_scores_normalises(self):
        dist = ProbabilityDistribution.from_scores({
            Outcome.HOME: 2.0, Outcome.DRAW: 1.0, Outcome.AWAY: 1.0,
        })
        assert dist.home == pytest.approx(0.5)
        assert dist.draw == pytest.approx(0.25)

    def test_from_scores_zero_sum_rejected(self):
        with pytest.raises(ValidationError):
            ProbabilityDistribution.from_scores({Outcome.HOME: 0.0, Outcome.AWAY: 0.0})


class TestFeatureVector:
    """Tests for FeatureVector."""

    def test_values_are_read_only(self):
        fv = FeatureVector(match_id="m1", values={"a": 1.0})
        with pytest.raises(TypeError):
            fv.values["a"] = 2.0

    def test_missing_and_defaults(self):
        fv = FeatureVector(match_id="m1", values={"a": 1.0})
        assert fv.missing(["a", "b", "c"]) == ("b", "c")

        filled = fv.with_defaults({"a": 9.0, "b": 2.0})
        assert filled["a"] == 1.0
        assert filled["b"] == 2.0
        assert "b" not in fv


class TestMatchEvent:

    def test_requires_match_id(self):
        with pytest.raises(ValidationError):
            MatchEvent(match_id="", event_type=EventType.GOAL)

    def test_rejects_negative_minute(self):
        with pytest.raises(ValidationError):
            MatchEvent(match_id="m1", event_type=EventType.GOAL, minute=-1)

    def test_metadata_is_frozen(self):
        event = MatchEvent(match_id="m1", event_type=EventType.GOAL, metadata={"x": 1})
        with pytest.raises(TypeError):
            event.metadata["x"] = 2


class TestPrediction:

    def test_confidence_bounds(self):
        dist = ProbabilityDistribution(home=0.5, away=0.5)
        with pytest.raises(ValidationError):
            Prediction(match_id="m1", model_name="x", model_version="v1",
                       distribution=dist, confidence=1.2)


class TestOddsQuote:

    def test_rejects_odds_at_one(self):
        with pytest.raises(ValidationError):
            OddsQuote(match_id="m1", bookmaker="b", market_type="match_winner",
                      odds={Outcome.HOME: 1.0, Outcome.AWAY: 3.0})

    def test_price_lookup(self):
        quote = OddsQuote(match_id="m1", bookmaker="b", market_type="match_winner",
                          odds={Outcome.HOME: 1.8, Outcome.AWAY: 2.1})
        assert quote.price(Outcome.HOME) == 1.8
        assert quote.price(Outcome.DRAW) is None


class TestBet:

    def _bet(self, **overrides):
        fields = dict(
            match_id="m1", outcome=Outcome.HOME, stake=Decimal("500.00"), odds=2.0,
            expected_value=0.1, kelly_fraction=0.05, raw_kelly_fraction=0.1,
            confidence=0.8, edge=0.05, strategy="value",
        )
        fields.update(overrides)
        return Bet(**fields)

    def test_potential_payout(self):
        assert self._bet().potential_payout == Decimal("1000.00")

    def test_rejects_zero_stake(self):
        with pytest.raises(ValidationError):
            self._bet(stake=Decimal("0"))

    def test_rejects_odds_at_one(self):
        with pytest.raises(ValidationError):
            self._bet(odds=1.0)

    def test_new_bet_is_open(self):
        bet = self._bet()
        assert bet.status is BetStatus.PENDING
        assert bet.is_open
        assert bet.period_return is None


class TestMoney:

    def test_to_money_rounds_half_up(self):
        assert to_money("1.005") == Decimal("1.01")

    def test_money_floor_rounds_down(self):
        assert money_floor(Decimal("499.999")) == Decimal("499.99")


class TestPortfolioSnapshot:

    def test_summary_properties(self):
        snap = PortfolioSnapshot(
            bankroll=Decimal("9000.00"),
            initial_bankroll=Decimal("10000.00"),
            open_bets=(),
            open_exposure=Decimal("500.00"),
            realised_pnl=Decimal("-1000.00"),
            total_staked=Decimal("2000.00"),
            settled_count=4,
            won_count=1,
            peak_bankroll=Decimal("10000.00"),
        )
        assert snap.available_bankroll == Decimal("8500.00")
        assert snap.roi == pytest.approx(-0.5)
        assert snap.win_rate == pytest.approx(0.25)
        assert snap.current_drawdown == pytest.approx(0.1)
