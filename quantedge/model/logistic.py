"""
Logistic Regression Outcome Model.

Pre-fit linear model over standardised features:

.. math::

    z_k = clip((x_k - \\mu_k) / \\sigma_k, -z_{max}, z_{max})

    s = w \\cdot z + b

Two-way sports use ``P(home) = sigmoid(s)``. With draws, the home and
away scores are ``sigmoid(s)`` and ``sigmoid(-s)``, the draw score comes
from a secondary head ``sigmoid(w_d . z + b_d)`` and the three are
renormalised to sum to 1.

Confidence grows with the logistic margin:
``c0 + (1 - c0) * |2 * sigmoid(s) - 1|``.

Example:
    >>> model = LogisticModel(LogisticParams(), has_draw=True)
    >>> out = model.predict(features)
    >>> round(out.distribution.total, 6)
    1.0
"""

from typing import Mapping, Tuple
import logging

import numpy as np
from scipy.special import expit

from ..core.config import LogisticParams
from ..core.errors import FeatureMissing
from ..models.domain import FeatureVector, Outcome, ProbabilityDistribution
from .base import ModelOutput

logger = logging.getLogger(__name__)


class LogisticModel:
    """Deterministic logistic model; identical inputs give identical outputs."""

    name = "logistic_regression"

    def __init__(self, params: LogisticParams, has_draw: bool = True, version: str = "v1.0"):
        self.params = params
        self.has_draw = has_draw
        self.version = version

        self._home_names = tuple(params.weights)
        self._home_w = np.array([params.weights[n] for n in self._home_names])
        self._draw_names = tuple(params.draw_weights) if has_draw else ()
        self._draw_w = np.array([params.draw_weights[n] for n in self._draw_names])

    @property
    def required_features(self) -> Tuple[str, ...]:
        return tuple(dict.fromkeys(self._home_names + self._draw_names))

    @property
    def defaults(self) -> Mapping[str, float]:
        return self.params.defaults

    def _standardise(self, features: FeatureVector, names: Tuple[str, ...]) -> np.ndarray:
        x = np.array([features[n] for n in names], dtype=float)
        mean = np.array([self.params.means.get(n, 0.0) for n in names])
        scale = np.array([self.params.scales.get(n, 1.0) or 1.0 for n in names])
        z = (x - mean) / scale
        # non-finite inputs are clamped like any other out-of-range value
        z = np.nan_to_num(z, nan=0.0, posinf=self.params.z_max, neginf=-self.params.z_max)
        return np.clip(z, -self.params.z_max, self.params.z_max)

    def predict(self, features: FeatureVector) -> ModelOutput:
        """
        Predict the outcome distribution for one match.

        Raises:
            FeatureMissing: If any required feature is absent
        """
        missing = features.missing(self.required_features)
        if missing:
            raise FeatureMissing(self.name, missing)

        s = float(self._home_w @ self._standardise(features, self._home_names)) + self.params.bias
        p_home = float(expit(s))

        if self.has_draw:
            s_draw = float(self._draw_w @ self._standardise(features, self._draw_names))
            s_draw += self.params.draw_bias
            distribution = ProbabilityDistribution.from_scores({
                Outcome.HOME: p_home,
                Outcome.DRAW: float(expit(s_draw)),
                Outcome.AWAY: float(expit(-s)),
            })
        else:
            distribution = ProbabilityDistribution(home=p_home, away=1.0 - p_home)

        c0 = self.params.base_confidence
        confidence = c0 + (1.0 - c0) * abs(2.0 * p_home - 1.0)

        return ModelOutput(
            distribution=distribution,
            confidence=min(max(confidence, 0.0), 1.0),
            features_used=self.required_features,
        )
