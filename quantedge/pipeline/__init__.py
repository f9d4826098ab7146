"""Event-driven trading pipeline and its collaborator interfaces."""

from .collaborators import (
    NullPersistence,
    OddsFeed,
    PersistenceGateway,
    call_with_retry,
    call_with_timeout,
)
from .engine import EngineStats, MarketView, TradingEngine, build_ensemble, match_result

__all__ = [
    "NullPersistence",
    "OddsFeed",
    "PersistenceGateway",
    "call_with_retry",
    "call_with_timeout",
    "EngineStats",
    "MarketView",
    "TradingEngine",
    "build_ensemble",
    "match_result",
]
