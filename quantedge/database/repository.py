"""
SQLAlchemy Persistence Gateway.

Implements the engine's ``PersistenceGateway`` on top of the ORM models.
Saves are upserts keyed by record id (``Session.merge``), so retrying a
save after a timeout never duplicates a row. Blocking database work runs
in a worker thread; writes are serialised through one lock.

Error mapping:
    - OperationalError (connection lost, database locked):
      ``TransientCollaboratorError``, retried by the engine
    - IntegrityError on a natural key (same quote timestamp, same
      performance window): logged, the existing row is kept
"""

from typing import List, Optional
import asyncio
import logging
import threading

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from ..core.errors import TransientCollaboratorError
from ..models.domain import Bet, MatchEvent, ModelPerformanceSnapshot, OddsQuote, Prediction
from .connection import DatabaseSession
from .models import (
    BetRecord,
    MatchEventRecord,
    ModelPerformanceRecord,
    OddsRecord,
    PredictionRecord,
)

logger = logging.getLogger(__name__)


class SqlAlchemyPersistence:
    """
    Persistence gateway backed by a SQLAlchemy session factory.

    Example:
        >>> engine = create_engine_with_pool("sqlite:///:memory:")
        >>> init_db(engine)
        >>> store = SqlAlchemyPersistence(create_session_factory(engine))
        >>> await store.save_bet(bet)
    """

    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _merge(self, operation: str, row) -> bool:
        with self._lock:
            try:
                with DatabaseSession(self._factory) as session:
                    session.merge(row)
            except OperationalError as e:
                raise TransientCollaboratorError(operation, e) from e
            except IntegrityError as e:
                logger.warning(f"{operation}: {row!r} conflicts with a stored row: {e.orig}")
                return False
        return True

    async def save_event(self, event: MatchEvent) -> None:
        await asyncio.to_thread(self._merge, "save_event", MatchEventRecord.from_domain(event))

    async def save_prediction(self, prediction: Prediction) -> None:
        await asyncio.to_thread(
            self._merge, "save_prediction", PredictionRecord.from_domain(prediction)
        )

    async def save_bet(self, bet: Bet) -> None:
        await asyncio.to_thread(self._merge, "save_bet", BetRecord.from_domain(bet))

    async def save_odds(self, quote: OddsQuote) -> None:
        await asyncio.to_thread(self._merge, "save_odds", OddsRecord.from_domain(quote))

    async def save_performance(self, snapshot: ModelPerformanceSnapshot) -> None:
        await asyncio.to_thread(
            self._merge, "save_performance", ModelPerformanceRecord.from_domain(snapshot)
        )

    # ------------------------------------------------------------------
    # Reads (synchronous; for reporting and tests)
    # ------------------------------------------------------------------

    def _select(self, statement) -> list:
        with self._lock:
            try:
                with DatabaseSession(self._factory) as session:
                    return [row.to_domain() for row in session.scalars(statement)]
            except OperationalError as e:
                raise TransientCollaboratorError("select", e) from e

    def load_events(self, match_id: str) -> List[MatchEvent]:
        return self._select(
            select(MatchEventRecord)
            .where(MatchEventRecord.match_id == match_id)
            .order_by(MatchEventRecord.timestamp)
        )

    def load_predictions(
        self,
        match_id: str,
        model_name: Optional[str] = None
    ) -> List[Prediction]:
        statement = select(PredictionRecord).where(PredictionRecord.match_id == match_id)
        if model_name is not None:
            statement = statement.where(PredictionRecord.model_name == model_name)
        return self._select(statement.order_by(PredictionRecord.predicted_at))

    def load_bets(self, match_id: Optional[str] = None) -> List[Bet]:
        statement = select(BetRecord)
        if match_id is not None:
            statement = statement.where(BetRecord.match_id == match_id)
        return self._select(statement.order_by(BetRecord.placed_at))

    def load_odds(self, match_id: str) -> List[OddsQuote]:
        return self._select(
            select(OddsRecord)
            .where(OddsRecord.match_id == match_id)
            .order_by(OddsRecord.timestamp)
        )

    def load_performance(self, model_name: Optional[str] = None) -> List[ModelPerformanceSnapshot]:
        statement = select(ModelPerformanceRecord)
        if model_name is not None:
            statement = statement.where(ModelPerformanceRecord.model_name == model_name)
        return self._select(statement.order_by(ModelPerformanceRecord.window_start))
