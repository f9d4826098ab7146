"""Relational persistence for events, predictions, odds, bets and performance."""

from .connection import (
    DatabaseSession,
    create_engine_with_pool,
    create_session_factory,
    init_db,
)
from .models import (
    Base,
    BetRecord,
    MatchEventRecord,
    ModelPerformanceRecord,
    OddsRecord,
    PredictionRecord,
)
from .repository import SqlAlchemyPersistence

__all__ = [
    # Connection
    "DatabaseSession",
    "create_engine_with_pool",
    "create_session_factory",
    "init_db",
    # Tables
    "Base",
    "BetRecord",
    "MatchEventRecord",
    "ModelPerformanceRecord",
    "OddsRecord",
    "PredictionRecord",
    # Gateway
    "SqlAlchemyPersistence",
]
