"""
Live Trading Engine.

Wires the components into one event-driven pipeline:

    MatchEvent -> FeatureExtractor -> EnsemblePredictor -> SignalGenerator
               -> PortfolioManager -> Bet
    full time  -> settlement -> PerformanceTracker -> ensemble weights

Concurrency:
    - ``submit`` puts events on a bounded queue and waits when it is full
    - a dispatcher hands each event to its own task, at most
      ``max_concurrency`` in flight
    - events of the same match are processed one at a time, in arrival
      order, under a per-match ``asyncio.Lock``
    - delivery is at-least-once; an event whose id was already processed
      for its match is skipped
    - model inference runs in worker threads (``asyncio.to_thread``)

Collaborators (odds feed, persistence) are awaited with timeouts. An odds
timeout falls back to the last-known quotes; a persistence failure is
retried and then logged, and the pipeline carries on with in-memory state.

Example:
    >>> engine = TradingEngine(EngineConfig(), odds_feed=feed)
    >>> await engine.start()
    >>> await engine.submit(event)
    >>> await engine.drain()
    >>> engine.portfolio_snapshot().bankroll
    Decimal('10000.00')
"""

from collections import OrderedDict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Deque, Dict, List, Optional, Set, Tuple
import asyncio
import logging

from ..core.config import EngineConfig
from ..core.errors import BetRejected, TransientCollaboratorError, ValidationError
from ..features.extractor import FeatureExtractor, MatchState
from ..market.odds import MarketSimulator, OddsBook
from ..model.ensemble import EnsemblePrediction, EnsemblePredictor, WeightFeedback
from ..model.logistic import LogisticModel
from ..model.poisson import PoissonModel
from ..models.domain import (
    Bet,
    EventType,
    MatchEvent,
    MatchStatus,
    ModelPerformanceSnapshot,
    OddsQuote,
    Outcome,
    PortfolioSnapshot,
    Prediction,
    utcnow,
)
from ..monitoring.performance import PerformanceTracker
from ..monitoring.scheduler import PerformanceScheduler
from ..portfolio.manager import PortfolioManager
from ..strategies.signals import SignalGenerator, TradingSignal
from .collaborators import (
    NullPersistence,
    OddsFeed,
    PersistenceGateway,
    call_with_retry,
    call_with_timeout,
)

logger = logging.getLogger(__name__)

SETTLEMENT_EVENTS = (EventType.FULL_TIME, EventType.MATCH_END)
VOID_STATUSES = (MatchStatus.POSTPONED, MatchStatus.CANCELLED)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class EngineStats:
    """Running counters exposed on the status endpoint."""
    started_at: datetime = field(default_factory=utcnow)
    events_received: int = 0
    events_processed: int = 0
    duplicates_skipped: int = 0
    predictions_generated: int = 0
    signals_generated: int = 0
    bets_placed: int = 0
    bets_settled: int = 0
    matches_settled: int = 0
    rejections: Dict[str, int] = field(default_factory=dict)
    odds_fallbacks: int = 0
    persistence_failures: int = 0
    errors: int = 0

    def reject(self, reason: str) -> None:
        self.rejections[reason] = self.rejections.get(reason, 0) + 1

    def as_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "events_received": self.events_received,
            "events_processed": self.events_processed,
            "duplicates_skipped": self.duplicates_skipped,
            "predictions_generated": self.predictions_generated,
            "signals_generated": self.signals_generated,
            "bets_placed": self.bets_placed,
            "bets_settled": self.bets_settled,
            "matches_settled": self.matches_settled,
            "rejections": dict(self.rejections),
            "odds_fallbacks": self.odds_fallbacks,
            "persistence_failures": self.persistence_failures,
            "errors": self.errors,
        }


@dataclass
class _MatchLock:
    """Per-match lock plus the number of tasks holding or waiting on it."""
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass(frozen=True)
class MarketView:
    """Current quotes for a match and their edges against the latest prediction."""
    match_id: str
    quotes: Tuple[OddsQuote, ...]
    edges: Dict[str, Dict[str, float]]


def build_ensemble(config: EngineConfig) -> EnsemblePredictor:
    """Default two-model ensemble (logistic + Poisson) for ``config``."""
    has_draw = config.ensemble.has_draw
    version = config.ensemble.model_version
    return EnsemblePredictor(
        [
            LogisticModel(config.logistic, has_draw=has_draw, version=version),
            PoissonModel(config.poisson, has_draw=has_draw, version=version),
        ],
        config.ensemble,
    )


def match_result(state: MatchState, has_draw: bool) -> Optional[Outcome]:
    """Outcome from the final score; ``None`` (void) for a level score without draws."""
    if state.home_goals > state.away_goals:
        return Outcome.HOME
    if state.home_goals < state.away_goals:
        return Outcome.AWAY
    return Outcome.DRAW if has_draw else None


# ============================================================================
# Engine
# ============================================================================

class TradingEngine:
    """
    Event-driven prediction and trading pipeline.

    Components not supplied are built from ``config``. Without an odds feed
    and with ``market.simulation_mode`` on, quotes are synthesised around
    the engine's own predictions.
    """

    def __init__(
        self,
        config: EngineConfig,
        extractor: Optional[FeatureExtractor] = None,
        ensemble: Optional[EnsemblePredictor] = None,
        portfolio: Optional[PortfolioManager] = None,
        tracker: Optional[PerformanceTracker] = None,
        odds_feed: Optional[OddsFeed] = None,
        persistence: Optional[PersistenceGateway] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.config = config
        self.extractor = extractor or FeatureExtractor(
            match_minutes=float(config.poisson.match_minutes)
        )
        self.ensemble = ensemble or build_ensemble(config)
        self.portfolio = portfolio or PortfolioManager(config.trading)
        self.tracker = tracker or PerformanceTracker(
            config.performance, config.trading.initial_bankroll, origin=clock()
        )
        self.odds_book = OddsBook()
        self.signals = SignalGenerator(config.trading)
        self.odds_feed = odds_feed
        self.simulator = (
            MarketSimulator(config.market)
            if odds_feed is None and config.market.simulation_mode else None
        )
        self.persistence = persistence or NullPersistence()
        self.scheduler = PerformanceScheduler(
            self.tracker, config.performance,
            on_snapshots=self._persist_snapshots, clock=clock,
        )
        self.stats = EngineStats(started_at=clock())
        self._clock = clock

        pipeline = config.pipeline
        self._recent_events: Deque[MatchEvent] = deque(maxlen=pipeline.recent_events_limit)
        self._recent_predictions: Deque[Prediction] = deque(
            maxlen=pipeline.recent_predictions_limit
        )
        self._latest: Dict[str, EnsemblePrediction] = {}
        # oldest first, capped at pipeline.settled_matches_limit
        self._settled_matches: OrderedDict[str, None] = OrderedDict()
        self._match_locks: Dict[str, _MatchLock] = {}

        self._queue: Optional[asyncio.Queue] = None
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    async def start(self) -> None:
        """Start the dispatcher and the performance scheduler."""
        if self.running:
            return
        pipeline = self.config.pipeline
        self._queue = asyncio.Queue(maxsize=pipeline.queue_size)
        self._semaphore = asyncio.Semaphore(pipeline.max_concurrency)
        self._dispatcher = asyncio.create_task(self._dispatch(), name="event-dispatcher")
        self.scheduler.start()
        logger.info(
            f"Trading engine started (queue={pipeline.queue_size}, "
            f"concurrency={pipeline.max_concurrency}, "
            f"odds={'feed' if self.odds_feed else 'simulated' if self.simulator else 'none'})"
        )

    async def submit(self, event: MatchEvent) -> None:
        """Queue ``event``; waits while the queue is full."""
        if self._queue is None:
            raise RuntimeError("Engine not started")
        self.stats.events_received += 1
        await self._queue.put(event)

    async def drain(self) -> None:
        """Wait until every submitted event has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Process what is queued, then stop the dispatcher and scheduler."""
        await self.drain()
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None
        await self.scheduler.stop()
        logger.info(f"Trading engine stopped: {self.stats.as_dict()}")

    async def _dispatch(self) -> None:
        while True:
            event = await self._queue.get()
            await self._semaphore.acquire()
            # Tasks start in creation order, so per-match lock waits stay FIFO
            task = asyncio.create_task(self._handle(event))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _handle(self, event: MatchEvent) -> None:
        try:
            await self.process_event(event)
        except Exception:
            self.stats.errors += 1
            logger.exception(f"Failed to process event {event.id} for {event.match_id}")
        finally:
            self._semaphore.release()
            self._queue.task_done()

    @asynccontextmanager
    async def _match_lock(self, match_id: str) -> AsyncIterator[None]:
        """
        Hold the lock for ``match_id``.

        The entry is dropped once no task holds or waits on it, so only
        matches with work in flight keep a lock.
        """
        entry = self._match_locks.get(match_id)
        if entry is None:
            entry = self._match_locks[match_id] = _MatchLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._match_locks[match_id]

    def _mark_settled(self, match_id: str) -> None:
        self._settled_matches[match_id] = None
        self._settled_matches.move_to_end(match_id)
        while len(self._settled_matches) > self.config.pipeline.settled_matches_limit:
            self._settled_matches.popitem(last=False)

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    async def process_event(self, event: MatchEvent) -> Optional[EnsemblePrediction]:
        """
        Run one event through the pipeline.

        Returns:
            The new ensemble prediction, or None for events that settle or
            void a match, arrive after settlement or repeat an event id
            already processed
        """
        async with self._match_lock(event.match_id):
            if self.extractor.is_duplicate(event):
                self.stats.duplicates_skipped += 1
                logger.debug(f"Skipping redelivered event {event.id} for {event.match_id}")
                return None

            self.stats.events_processed += 1
            self._recent_events.append(event)
            await self._persist("save_event", self.persistence.save_event, event)

            if event.match_id in self._settled_matches:
                logger.debug(f"Ignoring {event.event_type.value} for settled match {event.match_id}")
                return None

            state = self.extractor.update(event)
            self.scheduler.notify_event()

            if event.event_type in SETTLEMENT_EVENTS:
                await self._settle(
                    event.match_id, match_result(state, self.config.ensemble.has_draw)
                )
                return None
            if event.status in VOID_STATUSES:
                logger.info(f"Match {event.match_id} {event.status.value}; voiding open bets")
                await self._settle(event.match_id, None)
                return None

            if event.event_type is EventType.ODDS_UPDATE:
                await self._ingest_event_odds(event)

            features = self.extractor.extract(event.match_id, timestamp=event.timestamp)
            result = await asyncio.to_thread(self.ensemble.predict, features, state.kickoff)
            self._latest[event.match_id] = result
            self.stats.predictions_generated += 1
            for prediction in (result.prediction,) + result.components:
                self._recent_predictions.append(prediction)
                await self._persist("save_prediction", self.persistence.save_prediction, prediction)

            quotes = await self._current_quotes(event.match_id, result.prediction)
            signal = self.signals.evaluate(result.prediction, quotes)
            if signal is not None:
                self.stats.signals_generated += 1
                await self._place(signal)
            return result

    async def _place(self, signal: TradingSignal) -> Optional[Bet]:
        try:
            bet = self.portfolio.place(signal, placed_at=self._clock())
        except BetRejected as e:
            self.stats.reject(e.reason)
            logger.info(f"Signal rejected for {signal.match_id} ({e.reason}): {e}")
            return None
        self.stats.bets_placed += 1
        await self._persist("save_bet", self.persistence.save_bet, bet)
        return bet

    # ------------------------------------------------------------------
    # Odds
    # ------------------------------------------------------------------

    async def _ingest_event_odds(self, event: MatchEvent) -> None:
        """Odds-update events may carry a price map in ``metadata['odds']``."""
        raw = event.metadata.get("odds")
        if not isinstance(raw, dict):
            return
        try:
            quote = OddsQuote(
                match_id=event.match_id,
                bookmaker=str(event.metadata.get("bookmaker", "feed")),
                market_type=str(event.metadata.get("market_type", "match_winner")),
                odds={Outcome(k): float(v) for k, v in raw.items()},
                timestamp=event.timestamp,
            )
        except (ValidationError, ValueError) as e:
            logger.warning(f"Discarding malformed odds on event {event.id}: {e}")
            return
        self.odds_book.add(quote)
        await self._persist("save_odds", self.persistence.save_odds, quote)

    async def _current_quotes(self, match_id: str, prediction: Prediction) -> List[OddsQuote]:
        """Refresh quotes for ``match_id``; on feed failure use the last-known ones."""
        fresh: List[OddsQuote] = []
        if self.odds_feed is not None:
            try:
                fresh = await call_with_timeout(
                    "fetch_quotes",
                    lambda: self.odds_feed.fetch_quotes(match_id),
                    self.config.pipeline.feed_timeout_seconds,
                )
            except TransientCollaboratorError as e:
                self.stats.odds_fallbacks += 1
                logger.warning(f"Odds feed unavailable for {match_id}, using last-known quotes: {e}")
        elif self.simulator is not None:
            fresh = [self.simulator.quote(match_id, prediction.distribution, self._clock())]

        for quote in fresh:
            self.odds_book.add(quote)
            await self._persist("save_odds", self.persistence.save_odds, quote)
        return self.odds_book.current_quotes(match_id)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def settle_match(self, match_id: str, outcome: Optional[Outcome]) -> List[Bet]:
        """
        Settle a match from outside the event stream.

        ``outcome=None`` voids open bets and scores nothing.
        """
        async with self._match_lock(match_id):
            if match_id in self._settled_matches:
                return []
            return await self._settle(match_id, outcome)

    async def _settle(self, match_id: str, outcome: Optional[Outcome]) -> List[Bet]:
        now = self._clock()
        settled = self.portfolio.settle_match(match_id, outcome, settled_at=now)
        self._mark_settled(match_id)
        self.stats.matches_settled += 1
        self.stats.bets_settled += len(settled)

        for bet in settled:
            self.tracker.record_bet(bet)
            await self._persist("save_bet", self.persistence.save_bet, bet)

        latest = self._latest.pop(match_id, None)
        if outcome is not None and latest is not None:
            self.tracker.record_outcome(
                (latest.prediction,) + latest.components, outcome, scored_at=now
            )
            scores = {}
            for model in self.ensemble.models:
                trailing = self.tracker.trailing_brier(model.name, model.version)
                if trailing is not None:
                    scores[model.name] = trailing
            self.ensemble.update_weights(WeightFeedback(match_id, outcome, scores))

        self.extractor.forget(match_id)
        self.odds_book.forget(match_id)
        logger.info(
            f"Match {match_id} settled as {outcome.value if outcome else 'void'}: "
            f"{len(settled)} bet(s), bankroll={self.portfolio.snapshot().bankroll}"
        )
        return settled

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _persist(self, operation: str, save, record) -> bool:
        pipeline = self.config.pipeline
        try:
            await call_with_retry(
                operation,
                lambda: save(record),
                timeout=pipeline.persistence_timeout_seconds,
                attempts=pipeline.persistence_retries,
                backoff=pipeline.retry_backoff_seconds,
            )
        except TransientCollaboratorError as e:
            self.stats.persistence_failures += 1
            logger.warning(f"Persistence {operation} failed for {getattr(record, 'id', '?')}: {e}")
            return False
        return True

    async def _persist_snapshots(self, snapshots: List[ModelPerformanceSnapshot]) -> None:
        for snapshot in snapshots:
            await self._persist("save_performance", self.persistence.save_performance, snapshot)

    # ------------------------------------------------------------------
    # Read accessors (used by the API)
    # ------------------------------------------------------------------

    def recent_events(self, limit: Optional[int] = None) -> List[MatchEvent]:
        """Most recent events first."""
        events = list(reversed(self._recent_events))
        return events[:limit] if limit is not None else events

    def recent_predictions(
        self,
        limit: Optional[int] = None,
        match_id: Optional[str] = None
    ) -> List[Prediction]:
        predictions = list(reversed(self._recent_predictions))
        if match_id is not None:
            predictions = [p for p in predictions if p.match_id == match_id]
        return predictions[:limit] if limit is not None else predictions

    def latest_prediction(self, match_id: str) -> Optional[EnsemblePrediction]:
        return self._latest.get(match_id)

    def portfolio_snapshot(self) -> PortfolioSnapshot:
        return self.portfolio.snapshot()

    def markets(self) -> List[MarketView]:
        views = []
        for match_id, quotes in sorted(self.odds_book.all_current().items()):
            if not quotes:
                continue
            latest = self._latest.get(match_id)
            edges = (
                self.signals.edge_table(latest.prediction, quotes) if latest is not None else {}
            )
            views.append(MarketView(match_id=match_id, quotes=tuple(quotes), edges=edges))
        return views

    def performance(self, model_name: Optional[str] = None) -> List[ModelPerformanceSnapshot]:
        return self.tracker.snapshots(model_name)

    def status(self) -> Dict[str, Any]:
        table = self.ensemble.weight_table
        return {
            "running": self.running,
            "queue_depth": self._queue.qsize() if self._queue is not None else 0,
            "in_flight": len(self._inflight),
            "live_matches": len(self._latest),
            "ensemble_weights": dict(table.weights),
            "weights_version": table.version,
            "scheduler_runs": self.scheduler.runs,
            "stats": self.stats.as_dict(),
        }
