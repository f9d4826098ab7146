"""
Poisson Goal Model.

Expected goals from team ratings:

.. math::

    \\lambda_{home} = base_{home} \\cdot attack_{home} / defense_{away} \\cdot advantage

    \\lambda_{away} = base_{away} \\cdot attack_{away} / defense_{home}

Both rates are clamped to ``[lambda_min, lambda_max]``. In play, the rates
are scaled by the fraction of the match left and the current goal
difference ``d`` shifts the result, so

    P(home) = sum over i - j + d > 0 of P(X=i) P(Y=j)

with ``i, j`` in ``[0, max_goals]``. PMFs are computed in log space so
large rates stay finite. Sports without draws split the draw mass evenly.

Confidence decays with the distance of the pre-match rates from the
training-set centroid: ``exp(-||lambda - centroid|| / scale)``.
"""

from typing import Mapping, Tuple
import logging
import math

import numpy as np
from scipy.special import gammaln

from ..core.config import POISSON_FEATURES, PoissonParams
from ..core.errors import FeatureMissing
from ..models.domain import FeatureVector, Outcome, ProbabilityDistribution
from .base import ModelOutput

logger = logging.getLogger(__name__)

REQUIRED_FEATURES = POISSON_FEATURES


def poisson_pmf(lam: float, max_goals: int) -> np.ndarray:
    """P(X = k) for k in [0, max_goals], computed in log space."""
    k = np.arange(max_goals + 1)
    if lam <= 0:
        pmf = np.zeros(max_goals + 1)
        pmf[0] = 1.0
        return pmf
    return np.exp(k * math.log(lam) - lam - gammaln(k + 1))


class PoissonModel:
    """Independent-Poisson scoreline model."""

    name = "poisson"

    def __init__(self, params: PoissonParams, has_draw: bool = True, version: str = "v1.0"):
        self.params = params
        self.has_draw = has_draw
        self.version = version

    @property
    def required_features(self) -> Tuple[str, ...]:
        return REQUIRED_FEATURES

    @property
    def defaults(self) -> Mapping[str, float]:
        return self.params.defaults

    def expected_goals(self, features: FeatureVector) -> Tuple[float, float]:
        """Full-match (pre-match) scoring rates, clamped."""
        p = self.params

        def ratio(num: str, den: str) -> float:
            denominator = features[den]
            if not denominator > 0:
                return p.lambda_max
            return features[num] / denominator

        lam_home = p.base_home_goals * ratio("home_attack", "away_defense") * features["home_advantage"]
        lam_away = p.base_away_goals * ratio("away_attack", "home_defense")
        return self._clamp(lam_home), self._clamp(lam_away)

    def _clamp(self, lam: float) -> float:
        if math.isnan(lam):
            return self.params.lambda_min
        return min(max(lam, self.params.lambda_min), self.params.lambda_max)

    def predict(self, features: FeatureVector) -> ModelOutput:
        """
        Predict the outcome distribution for one match.

        Raises:
            FeatureMissing: If any rating feature is absent
        """
        missing = features.missing(REQUIRED_FEATURES)
        if missing:
            raise FeatureMissing(self.name, missing)

        p = self.params
        lam_home, lam_away = self.expected_goals(features)

        goal_diff = 0
        remaining = 1.0
        minute = features.get("minute")
        if minute is not None and math.isfinite(minute):
            remaining = min(max(1.0 - minute / p.match_minutes, 0.0), 1.0)
            diff = features.get("goal_difference", 0.0)
            if math.isfinite(diff):
                bound = 2 * p.max_goals + 1
                goal_diff = int(min(max(round(diff), -bound), bound))

        home_pmf = poisson_pmf(lam_home * remaining, p.max_goals)
        away_pmf = poisson_pmf(lam_away * remaining, p.max_goals)
        joint = np.outer(home_pmf, away_pmf)
        joint /= joint.sum()

        idx = np.arange(p.max_goals + 1)
        margin = idx[:, None] - idx[None, :] + goal_diff
        p_home = float(joint[margin > 0].sum())
        p_draw = float(joint[margin == 0].sum())
        p_away = float(joint[margin < 0].sum())

        if self.has_draw:
            distribution = ProbabilityDistribution.from_scores({
                Outcome.HOME: p_home,
                Outcome.DRAW: p_draw,
                Outcome.AWAY: p_away,
            })
        else:
            distribution = ProbabilityDistribution.from_scores({
                Outcome.HOME: p_home + p_draw / 2.0,
                Outcome.AWAY: p_away + p_draw / 2.0,
            })

        distance = math.hypot(lam_home - p.centroid["home"], lam_away - p.centroid["away"])
        confidence = math.exp(-distance / p.confidence_scale)

        return ModelOutput(
            distribution=distribution,
            confidence=min(max(confidence, 0.0), 1.0),
            expected_goals=(lam_home * remaining, lam_away * remaining),
            features_used=REQUIRED_FEATURES,
        )
