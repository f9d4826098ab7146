"""Feature extraction from match event streams."""

from .extractor import FeatureExtractor, MatchState, TeamRating

__all__ = [
    "FeatureExtractor",
    "MatchState",
    "TeamRating",
]
