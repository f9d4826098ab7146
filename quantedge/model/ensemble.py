"""
Ensemble Model for Match Outcome Predictions.

Combines the logistic and Poisson submodels into one distribution using
confidence-scaled weights, and re-weights the submodels from their recent
Brier scores.

Combination:

.. math::

    P(o) \\propto \\sum_i w_i c_i P_i(o)

falling back to plain weights ``w_i`` when every confidence is 0.

Weight update:

.. math::

    w_i \\propto 1 / (Brier_i + \\delta)

``delta`` (the weight floor) keeps every weight strictly positive, so a
model that has been doing badly can recover.

The weight table is immutable. Updates build a new table and publish it
with a single reference assignment; concurrent readers see either the
old or the new table, never a mix.

Example:
    >>> ensemble = EnsemblePredictor([logistic, poisson], EnsembleConfig())
    >>> result = ensemble.predict(features)
    >>> result.prediction.distribution.total
    1.0
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
import logging
import threading

import numpy as np

from ..core.config import EnsembleConfig
from ..core.errors import ConfigurationError, FeatureMissing
from ..models.domain import (
    FeatureVector,
    Outcome,
    Prediction,
    ProbabilityDistribution,
    utcnow,
)
from .base import ModelOutput, PredictionModel

logger = logging.getLogger(__name__)

ENSEMBLE_NAME = "ensemble"


@dataclass(frozen=True)
class WeightTable:
    """Published submodel weights; never mutated after construction."""
    weights: Mapping[str, float]
    brier: Mapping[str, float]
    version: int = 0
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))
        object.__setattr__(self, "brier", MappingProxyType(dict(self.brier)))


@dataclass(frozen=True)
class WeightFeedback:
    """
    Outcome of a completed match plus each submodel's trailing Brier score.

    Submodels absent from ``brier_scores`` keep their previous estimate.
    """
    match_id: str
    outcome: Outcome
    brier_scores: Mapping[str, float]


@dataclass
class EnsemblePrediction:
    """Result from ensemble prediction."""
    prediction: Prediction
    components: Tuple[Prediction, ...]
    weights: WeightTable

    @property
    def prediction_std(self) -> float:
        """Spread of submodel home probabilities (disagreement)."""
        probs = [p.distribution.home for p in self.components]
        return float(np.std(probs)) if probs else 0.0

    def __str__(self) -> str:
        dist = self.prediction.distribution
        lines = [f"Ensemble P(home): {dist.home:.1%}"]
        for component in self.components:
            weight = self.weights.weights.get(component.model_name, 0)
            lines.append(
                f"  {component.model_name}: {component.distribution.home:.1%} "
                f"(w={weight:.2f}, c={component.confidence:.2f})"
            )
        return "\n".join(lines)


class EnsemblePredictor:
    """
    Weighted ensemble over a fixed set of submodels.

    Submodels are supplied at construction and never change; only their
    weights move, through ``update_weights``.
    """

    def __init__(self, models: Sequence[PredictionModel], config: EnsembleConfig):
        if not models:
            raise ConfigurationError("Ensemble needs at least one submodel")
        names = [m.name for m in models]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate submodel names: {names}")
        for model in models:
            if model.has_draw != config.has_draw:
                raise ConfigurationError(
                    f"Submodel {model.name} has_draw={model.has_draw} "
                    f"but ensemble has_draw={config.has_draw}"
                )
            uncovered = sorted(set(model.required_features) - set(model.defaults))
            if uncovered:
                raise ConfigurationError(
                    f"Submodel {model.name} has no defaults for {uncovered}"
                )

        self._models: Tuple[PredictionModel, ...] = tuple(models)
        self._config = config
        self._write_lock = threading.Lock()
        n = len(self._models)
        self._table = WeightTable(
            weights={name: 1.0 / n for name in names},
            brier={name: config.prior_brier for name in names},
        )
        logger.info(f"Ensemble initialised with models: {names}")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return ENSEMBLE_NAME

    @property
    def version(self) -> str:
        return self._config.model_version

    @property
    def weight_table(self) -> WeightTable:
        return self._table

    @property
    def weights(self) -> Dict[str, float]:
        """Get current ensemble weights."""
        return dict(self._table.weights)

    @property
    def model_names(self) -> List[str]:
        return [m.name for m in self._models]

    @property
    def models(self) -> Tuple[PredictionModel, ...]:
        return self._models

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def _run_model(self, model: PredictionModel, features: FeatureVector) -> Tuple[ModelOutput, bool]:
        try:
            return model.predict(features), False
        except FeatureMissing as e:
            logger.warning(
                f"ModelInferenceDegraded: {model.name} on {features.match_id} "
                f"using defaults for {list(e.missing)}"
            )
            output = model.predict(features.with_defaults(model.defaults))
            penalised = output.confidence * self._config.degraded_confidence_penalty
            return ModelOutput(
                distribution=output.distribution,
                confidence=penalised,
                expected_goals=output.expected_goals,
                features_used=output.features_used,
            ), True

    def predict(
        self,
        features: FeatureVector,
        match_at: Optional[datetime] = None
    ) -> EnsemblePrediction:
        """
        Predict the outcome distribution for one match.

        Never raises for missing features; degraded submodels contribute
        with penalised confidence.
        """
        table = self._table
        predicted_at = utcnow()
        outcomes = (
            (Outcome.HOME, Outcome.DRAW, Outcome.AWAY)
            if self._config.has_draw else (Outcome.HOME, Outcome.AWAY)
        )

        components: List[Prediction] = []
        outputs: List[ModelOutput] = []
        for model in self._models:
            output, degraded = self._run_model(model, features)
            outputs.append(output)
            components.append(Prediction(
                match_id=features.match_id,
                model_name=model.name,
                model_version=model.version,
                distribution=output.distribution,
                confidence=output.confidence,
                predicted_at=predicted_at,
                match_at=match_at,
                expected_goals=output.expected_goals,
                features_used=output.features_used,
                degraded=degraded,
            ))

        weights = np.array([table.weights[m.name] for m in self._models])
        confidences = np.array([o.confidence for o in outputs])
        probs = np.array([[o.distribution.get(oc) for oc in outcomes] for o in outputs])

        mix = weights * confidences
        if mix.sum() <= 0:
            mix = weights
        combined = mix @ probs
        distribution = ProbabilityDistribution.from_scores(dict(zip(outcomes, combined)))

        confidence = float(np.clip(weights @ confidences, 0.0, 1.0))

        xg_pairs = [(w, o.expected_goals) for w, o in zip(weights, outputs) if o.expected_goals]
        expected_goals = None
        if xg_pairs:
            total_w = sum(w for w, _ in xg_pairs)
            expected_goals = (
                float(sum(w * xg[0] for w, xg in xg_pairs) / total_w),
                float(sum(w * xg[1] for w, xg in xg_pairs) / total_w),
            )

        features_used = tuple(sorted({n for o in outputs for n in o.features_used}))

        prediction = Prediction(
            match_id=features.match_id,
            model_name=ENSEMBLE_NAME,
            model_version=self.version,
            distribution=distribution,
            confidence=confidence,
            predicted_at=predicted_at,
            match_at=match_at,
            expected_goals=expected_goals,
            features_used=features_used,
            degraded=any(c.degraded for c in components),
        )
        return EnsemblePrediction(
            prediction=prediction,
            components=tuple(components),
            weights=table,
        )

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def update_weights(self, feedback: WeightFeedback) -> WeightTable:
        """
        Re-weight submodels from trailing Brier scores.

        Builds a new table and publishes it atomically.
        """
        delta = self._config.weight_floor
        with self._write_lock:
            current = self._table
            brier = dict(current.brier)
            for name, score in feedback.brier_scores.items():
                if name in brier and score is not None and score >= 0:
                    brier[name] = float(score)

            raw = {name: 1.0 / (brier[name] + delta) for name in self.model_names}
            total = sum(raw.values())
            table = WeightTable(
                weights={name: value / total for name, value in raw.items()},
                brier=brier,
                version=current.version + 1,
            )
            self._table = table

        logger.info(
            f"Ensemble weights v{table.version} after {feedback.match_id}: "
            + ", ".join(f"{k}={v:.3f}" for k, v in table.weights.items())
        )
        return table
