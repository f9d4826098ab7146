"""
Prediction model protocol shared by the submodels and the ensemble.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol, Tuple, runtime_checkable

from ..models.domain import FeatureVector, ProbabilityDistribution


@dataclass(frozen=True)
class ModelOutput:
    """Result of a single ``predict`` call."""
    distribution: ProbabilityDistribution
    confidence: float
    expected_goals: Optional[Tuple[float, float]] = None
    features_used: Tuple[str, ...] = ()


@runtime_checkable
class PredictionModel(Protocol):
    """
    Capability every submodel provides.

    ``predict`` raises ``FeatureMissing`` when a required feature is
    absent; ``defaults`` supplies the substitute values.
    """

    name: str
    version: str
    has_draw: bool

    @property
    def required_features(self) -> Tuple[str, ...]:
        ...

    @property
    def defaults(self) -> Mapping[str, float]:
        ...

    def predict(self, features: FeatureVector) -> ModelOutput:
        ...
