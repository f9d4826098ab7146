"""Probabilistic outcome models and their ensemble."""

from .base import ModelOutput, PredictionModel
from .logistic import LogisticModel
from .poisson import PoissonModel, poisson_pmf
from .ensemble import EnsemblePredictor, EnsemblePrediction, WeightFeedback, WeightTable

__all__ = [
    # Protocol
    "ModelOutput",
    "PredictionModel",
    # Submodels
    "LogisticModel",
    "PoissonModel",
    "poisson_pmf",
    # Ensemble
    "EnsemblePredictor",
    "EnsemblePrediction",
    "WeightFeedback",
    "WeightTable",
]
