"""Domain records shared across QuantEdge."""

from .domain import (
    Bet,
    BetStatus,
    CardType,
    EventType,
    FeatureVector,
    MatchEvent,
    MatchStatus,
    ModelPerformanceSnapshot,
    OddsQuote,
    Outcome,
    PortfolioSnapshot,
    Prediction,
    ProbabilityDistribution,
    TeamSide,
)

__all__ = [
    "Bet",
    "BetStatus",
    "CardType",
    "EventType",
    "FeatureVector",
    "MatchEvent",
    "MatchStatus",
    "ModelPerformanceSnapshot",
    "OddsQuote",
    "Outcome",
    "PortfolioSnapshot",
    "Prediction",
    "ProbabilityDistribution",
    "TeamSide",
]
