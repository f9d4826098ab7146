"""
Unit tests for the ensemble predictor.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest
from hypothesis import given, settings, strategies as st

from quantedge.core.config import EnsembleConfig, EngineConfig
from quantedge.core.errors import ConfigurationError, FeatureMissing
from quantedge.model.base import ModelOutput
from quantedge.model.ensemble import EnsemblePredictor, WeightFeedback
from quantedge.models.domain import FeatureVector, Outcome, ProbabilityDistribution
from quantedge.pipeline import build_ensemble


class FixedModel:
    """Submodel returning a fixed distribution; optionally requires a feature."""

    version = "test"

    def __init__(self, name, home, draw, away, confidence=1.0, requires=(), has_draw=True):
        self.name = name
        self.has_draw = has_draw
        self._output = ModelOutput(
            distribution=ProbabilityDistribution(home=home, draw=draw, away=away),
            confidence=confidence,
        )
        self._requires = tuple(requires)

    @property
    def required_features(self):
        return self._requires

    @property
    def defaults(self):
        return {name: 0.0 for name in self._requires}

    def predict(self, features):
        missing = features.missing(self._requires)
        if missing:
            raise FeatureMissing(self.name, missing)
        return self._output


def features(**values) -> FeatureVector:
    return FeatureVector(match_id="m1", values=values)


class TestConstruction:
    """Tests for ensemble construction checks."""

    def test_requires_models(self):
        with pytest.raises(ConfigurationError):
            EnsemblePredictor([], EnsembleConfig())

    def test_duplicate_names_rejected(self):
        a = FixedModel("a", 0.5, 0.3, 0.2)
        with pytest.raises(ConfigurationError):
            EnsemblePredictor([a, FixedModel("a", 0.4, 0.3, 0.3)], EnsembleConfig())

    def test_draw_mismatch_rejected(self):
        model = FixedModel("a", 0.5, 0.3, 0.2, has_draw=True)
        with pytest.raises(ConfigurationError):
            EnsemblePredictor([model], EnsembleConfig(has_draw=False))

    def test_required_feature_without_default_rejected(self):
        class NoDefaults(FixedModel):
            @property
            def defaults(self):
                return {}

        model = NoDefaults("a", 0.5, 0.3, 0.2, requires=("elo_difference",))
        with pytest.raises(ConfigurationError, match="elo_difference"):
            EnsemblePredictor([model], EnsembleConfig())

    def test_initial_weights_are_equal(self):
        ensemble = EnsemblePredictor(
            [FixedModel("a", 0.5, 0.3, 0.2), FixedModel("b", 0.4, 0.3, 0.3)],
            EnsembleConfig(),
        )
        assert ensemble.weights == {"a": 0.5, "b": 0.5}
        assert ensemble.weight_table.version == 0


class TestPredict:
    """Tests for the confidence-weighted combination."""

    def test_combination(self):
        ensemble = EnsemblePredictor(
            [FixedModel("a", 0.6, 0.2, 0.2), FixedModel("b", 0.2, 0.2, 0.6)],
            EnsembleConfig(),
        )
        result = ensemble.predict(features())
        dist = result.prediction.distribution

        assert dist.home == pytest.approx(0.4)
        assert dist.away == pytest.approx(0.4)
        assert dist.draw == pytest.approx(0.2)
        assert result.prediction.model_name == "ensemble"
        assert [c.model_name for c in result.components] == ["a", "b"]

    def test_confidence_scales_contribution(self):
        ensemble = EnsemblePredictor(
            [
                FixedModel("sure", 0.6, 0.2, 0.2, confidence=0.9),
                FixedModel("unsure", 0.2, 0.2, 0.6, confidence=0.1),
            ],
            EnsembleConfig(),
        )
        dist = ensemble.predict(features()).prediction.distribution
        # (0.45 * 0.6 + 0.05 * 0.2) / 0.5
        assert dist.home == pytest.approx(0.56)

    def test_zero_confidence_falls_back_to_weights(self):
        ensemble = EnsemblePredictor(
            [
                FixedModel("a", 0.6, 0.2, 0.2, confidence=0.0),
                FixedModel("b", 0.2, 0.2, 0.6, confidence=0.0),
            ],
            EnsembleConfig(),
        )
        result = ensemble.predict(features())
        assert result.prediction.distribution.home == pytest.approx(0.4)
        assert result.prediction.confidence == 0.0

    def test_degraded_submodel_uses_defaults(self):
        needy = FixedModel("needy", 0.6, 0.2, 0.2, confidence=0.8, requires=("rating",))
        ensemble = EnsemblePredictor(
            [needy, FixedModel("b", 0.2, 0.2, 0.6)],
            EnsembleConfig(degraded_confidence_penalty=0.5),
        )
        result = ensemble.predict(features())

        needy_prediction = result.components[0]
        assert needy_prediction.degraded
        assert needy_prediction.confidence == pytest.approx(0.4)
        assert result.prediction.degraded
        assert not result.components[1].degraded

    def test_no_degradation_when_features_present(self):
        needy = FixedModel("needy", 0.6, 0.2, 0.2, requires=("rating",))
        ensemble = EnsemblePredictor([needy], EnsembleConfig())
        assert not ensemble.predict(features(rating=1.0)).prediction.degraded

    def test_default_submodels(self):
        ensemble = build_ensemble(EngineConfig())
        result = ensemble.predict(features(
            home_advantage=1.0,
            goal_difference=0.0,
            abs_goal_difference=0.0,
            red_card_difference=0.0,
            league_competitiveness=0.9,
            minute_fraction=0.0,
        ))
        assert ensemble.model_names == ["logistic_regression", "poisson"]
        assert result.prediction.distribution.total == pytest.approx(1.0)
        assert all(c.degraded for c in result.components)


class TestUpdateWeights:
    """Tests for Brier-driven re-weighting."""

    @pytest.fixture
    def ensemble(self):
        return EnsemblePredictor(
            [FixedModel("a", 0.5, 0.3, 0.2), FixedModel("b", 0.4, 0.3, 0.3)],
            EnsembleConfig(weight_floor=0.01),
        )

    def test_better_model_gains_weight(self, ensemble):
        table = ensemble.update_weights(WeightFeedback(
            match_id="m1", outcome=Outcome.HOME, brier_scores={"a": 0.10, "b": 0.30},
        ))
        assert table.version == 1
        assert table.weights["a"] > table.weights["b"]
        assert table.weights["a"] == pytest.approx((1 / 0.11) / (1 / 0.11 + 1 / 0.31))
        assert ensemble.weight_table is table

    def test_perfect_and_worst_model_keep_positive_weight(self, ensemble):
        table = ensemble.update_weights(WeightFeedback(
            match_id="m1", outcome=Outcome.HOME, brier_scores={"a": 0.0, "b": 2.0},
        ))
        assert table.weights["b"] > 0
        assert sum(table.weights.values()) == pytest.approx(1.0)

    def test_missing_score_keeps_previous_estimate(self, ensemble):
        ensemble.update_weights(WeightFeedback("m1", Outcome.HOME, {"a": 0.1, "b": 0.3}))
        table = ensemble.update_weights(WeightFeedback("m2", Outcome.AWAY, {"a": 0.2}))
        assert table.brier["b"] == pytest.approx(0.3)
        assert table.brier["a"] == pytest.approx(0.2)

    def test_unknown_model_ignored(self, ensemble):
        table = ensemble.update_weights(WeightFeedback("m1", Outcome.HOME, {"zzz": 0.0}))
        assert set(table.weights) == {"a", "b"}

    def test_prediction_carries_table_it_used(self, ensemble):
        before = ensemble.predict(features())
        ensemble.update_weights(WeightFeedback("m1", Outcome.HOME, {"a": 0.1, "b": 0.5}))
        assert before.weights.version == 0
        assert ensemble.predict(features()).weights.version == 1

    def test_concurrent_updates_are_serialised(self, ensemble):
        def update(i):
            ensemble.update_weights(WeightFeedback(f"m{i}", Outcome.HOME, {"a": 0.1, "b": 0.2}))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(update, range(50)))

        assert ensemble.weight_table.version == 50
        assert sum(ensemble.weights.values()) == pytest.approx(1.0)

    @given(st.dictionaries(
        st.sampled_from(["a", "b"]),
        st.floats(min_value=0.0, max_value=2.0),
    ))
    @settings(max_examples=100)
    def test_weights_always_positive_and_normalised(self, scores):
        ensemble = EnsemblePredictor(
            [FixedModel("a", 0.5, 0.3, 0.2), FixedModel("b", 0.4, 0.3, 0.3)],
            EnsembleConfig(weight_floor=0.01),
        )
        table = ensemble.update_weights(WeightFeedback("m1", Outcome.DRAW, scores))
        assert all(w > 0 for w in table.weights.values())
        assert sum(table.weights.values()) == pytest.approx(1.0)
