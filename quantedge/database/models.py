"""
SQLAlchemy ORM Models for QuantEdge.

One table per persisted record type. Boundary checks that the domain
objects already enforce are repeated as CHECK constraints so rows written
by other tools obey the same rules:

    - prediction probabilities sum to at most 1.001
    - stakes are positive and odds exceed 1.0
    - one odds row per (bookmaker, market, match, timestamp)
    - one performance row per (model, version, window start)

Each row class converts to and from its domain dataclass.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String, Integer, Boolean, Float, Numeric, DateTime,
    CheckConstraint, UniqueConstraint, Index, Enum, JSON
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..models.domain import (
    Bet,
    BetStatus,
    CardType,
    EventType,
    MatchEvent,
    MatchStatus,
    ModelPerformanceSnapshot,
    OddsQuote,
    Outcome,
    Prediction,
    ProbabilityDistribution,
    TeamSide,
)


# ============================================================================
# Base Model
# ============================================================================

class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored times are UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ============================================================================
# Match Events
# ============================================================================

class MatchEventRecord(Base):
    """Raw match events as received by the engine."""
    __tablename__ = "match_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    match_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[EventType] = mapped_column(Enum(EventType), nullable=False)
    minute: Mapped[Optional[int]] = mapped_column(Integer)
    team: Mapped[Optional[TeamSide]] = mapped_column(Enum(TeamSide))
    player: Mapped[Optional[str]] = mapped_column(String(100))
    home_team: Mapped[str] = mapped_column(String(100), default="")
    away_team: Mapped[str] = mapped_column(String(100), default="")
    league: Mapped[str] = mapped_column(String(100), default="")
    season: Mapped[str] = mapped_column(String(20), default="")
    status: Mapped[MatchStatus] = mapped_column(Enum(MatchStatus), nullable=False)
    card_type: Mapped[Optional[CardType]] = mapped_column(Enum(CardType))
    event_metadata: Mapped[dict] = mapped_column(JSON, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("minute IS NULL OR minute >= 0", name="valid_minute"),
        Index("idx_events_match", "match_id", "timestamp"),
    )

    @classmethod
    def from_domain(cls, event: MatchEvent) -> "MatchEventRecord":
        return cls(
            id=event.id,
            match_id=event.match_id,
            event_type=event.event_type,
            minute=event.minute,
            team=event.team,
            player=event.player,
            home_team=event.home_team,
            away_team=event.away_team,
            league=event.league,
            season=event.season,
            status=event.status,
            card_type=event.card_type,
            event_metadata=dict(event.metadata),
            timestamp=event.timestamp,
        )

    def to_domain(self) -> MatchEvent:
        return MatchEvent(
            match_id=self.match_id,
            event_type=self.event_type,
            timestamp=_aware(self.timestamp),
            minute=self.minute,
            team=self.team,
            player=self.player,
            home_team=self.home_team,
            away_team=self.away_team,
            league=self.league,
            season=self.season,
            status=self.status,
            card_type=self.card_type,
            metadata=self.event_metadata or {},
            id=self.id,
        )

    def __repr__(self) -> str:
        return f"<MatchEventRecord(match={self.match_id}, type={self.event_type})>"


# ============================================================================
# Predictions
# ============================================================================

class PredictionRecord(Base):
    """Ensemble and submodel predictions."""
    __tablename__ = "predictions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    match_id: Mapped[str] = mapped_column(String(64), nullable=False)
    model_name: Mapped[str] = mapped_column(String(50), nullable=False)
    model_version: Mapped[str] = mapped_column(String(20), nullable=False)
    home_prob: Mapped[float] = mapped_column(Float, nullable=False)
    draw_prob: Mapped[Optional[float]] = mapped_column(Float)
    away_prob: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    expected_home_goals: Mapped[Optional[float]] = mapped_column(Float)
    expected_away_goals: Mapped[Optional[float]] = mapped_column(Float)
    features_used: Mapped[list] = mapped_column(JSON, default=list)
    degraded: Mapped[bool] = mapped_column(Boolean, default=False)
    predicted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    match_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "home_prob + COALESCE(draw_prob, 0) + away_prob <= 1.001",
            name="valid_probability_sum"
        ),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="valid_confidence"),
        Index("idx_predictions_match", "match_id", "model_name"),
    )

    @classmethod
    def from_domain(cls, prediction: Prediction) -> "PredictionRecord":
        dist = prediction.distribution
        xg = prediction.expected_goals
        return cls(
            id=prediction.id,
            match_id=prediction.match_id,
            model_name=prediction.model_name,
            model_version=prediction.model_version,
            home_prob=dist.home,
            draw_prob=dist.draw,
            away_prob=dist.away,
            confidence=prediction.confidence,
            expected_home_goals=xg[0] if xg else None,
            expected_away_goals=xg[1] if xg else None,
            features_used=list(prediction.features_used),
            degraded=prediction.degraded,
            predicted_at=prediction.predicted_at,
            match_at=prediction.match_at,
        )

    def to_domain(self) -> Prediction:
        xg = None
        if self.expected_home_goals is not None and self.expected_away_goals is not None:
            xg = (self.expected_home_goals, self.expected_away_goals)
        return Prediction(
            match_id=self.match_id,
            model_name=self.model_name,
            model_version=self.model_version,
            distribution=ProbabilityDistribution(
                home=self.home_prob, away=self.away_prob, draw=self.draw_prob
            ),
            confidence=self.confidence,
            predicted_at=_aware(self.predicted_at),
            match_at=_aware(self.match_at),
            expected_goals=xg,
            features_used=tuple(self.features_used or ()),
            degraded=self.degraded,
            id=self.id,
        )


# ============================================================================
# Odds
# ============================================================================

class OddsRecord(Base):
    """Bookmaker quotes; one row per quote."""
    __tablename__ = "odds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    match_id: Mapped[str] = mapped_column(String(64), nullable=False)
    bookmaker: Mapped[str] = mapped_column(String(50), nullable=False)
    market_type: Mapped[str] = mapped_column(String(30), nullable=False)
    home_odds: Mapped[Optional[float]] = mapped_column(Float)
    draw_odds: Mapped[Optional[float]] = mapped_column(Float)
    away_odds: Mapped[Optional[float]] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "bookmaker", "market_type", "match_id", "timestamp", name="unique_quote"
        ),
        CheckConstraint("home_odds IS NULL OR home_odds > 1.0", name="valid_home_odds"),
        CheckConstraint("draw_odds IS NULL OR draw_odds > 1.0", name="valid_draw_odds"),
        CheckConstraint("away_odds IS NULL OR away_odds > 1.0", name="valid_away_odds"),
        Index("idx_odds_match", "match_id", "bookmaker"),
    )

    @classmethod
    def from_domain(cls, quote: OddsQuote) -> "OddsRecord":
        return cls(
            id=quote.id,
            match_id=quote.match_id,
            bookmaker=quote.bookmaker,
            market_type=quote.market_type,
            home_odds=quote.price(Outcome.HOME),
            draw_odds=quote.price(Outcome.DRAW),
            away_odds=quote.price(Outcome.AWAY),
            is_active=quote.is_active,
            timestamp=quote.timestamp,
        )

    def to_domain(self) -> OddsQuote:
        prices = {
            Outcome.HOME: self.home_odds,
            Outcome.DRAW: self.draw_odds,
            Outcome.AWAY: self.away_odds,
        }
        return OddsQuote(
            match_id=self.match_id,
            bookmaker=self.bookmaker,
            market_type=self.market_type,
            odds={o: p for o, p in prices.items() if p is not None},
            timestamp=_aware(self.timestamp),
            is_active=self.is_active,
            id=self.id,
        )


# ============================================================================
# Bets
# ============================================================================

class BetRecord(Base):
    """
    Bets placed by the portfolio manager.

    Rows are rewritten on settlement, never deleted.
    """
    __tablename__ = "bets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    match_id: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[Outcome] = mapped_column(Enum(Outcome), nullable=False)
    stake: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    odds: Mapped[float] = mapped_column(Float, nullable=False)
    expected_value: Mapped[float] = mapped_column(Float, nullable=False)
    kelly_fraction: Mapped[float] = mapped_column(Float, nullable=False)
    raw_kelly_fraction: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    edge: Mapped[float] = mapped_column(Float, nullable=False)
    strategy: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[BetStatus] = mapped_column(Enum(BetStatus), nullable=False)
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    payout: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    profit_loss: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    model_name: Mapped[str] = mapped_column(String(50), default="")
    model_version: Mapped[str] = mapped_column(String(20), default="")

    __table_args__ = (
        CheckConstraint("stake > 0", name="positive_stake"),
        CheckConstraint("odds > 1.0", name="valid_bet_odds"),
        Index("idx_bets_match", "match_id", "strategy"),
        Index("idx_bets_status", "status"),
    )

    @classmethod
    def from_domain(cls, bet: Bet) -> "BetRecord":
        return cls(
            id=bet.id,
            match_id=bet.match_id,
            outcome=bet.outcome,
            stake=bet.stake,
            odds=bet.odds,
            expected_value=bet.expected_value,
            kelly_fraction=bet.kelly_fraction,
            raw_kelly_fraction=bet.raw_kelly_fraction,
            confidence=bet.confidence,
            edge=bet.edge,
            strategy=bet.strategy,
            status=bet.status,
            placed_at=bet.placed_at,
            settled_at=bet.settled_at,
            payout=bet.payout,
            profit_loss=bet.profit_loss,
            model_name=bet.model_name,
            model_version=bet.model_version,
        )

    def to_domain(self) -> Bet:
        return Bet(
            match_id=self.match_id,
            outcome=self.outcome,
            stake=Decimal(self.stake),
            odds=self.odds,
            expected_value=self.expected_value,
            kelly_fraction=self.kelly_fraction,
            raw_kelly_fraction=self.raw_kelly_fraction,
            confidence=self.confidence,
            edge=self.edge,
            strategy=self.strategy,
            status=self.status,
            placed_at=_aware(self.placed_at),
            settled_at=_aware(self.settled_at),
            payout=Decimal(self.payout) if self.payout is not None else None,
            profit_loss=Decimal(self.profit_loss) if self.profit_loss is not None else None,
            model_name=self.model_name,
            model_version=self.model_version,
            id=self.id,
        )

    def __repr__(self) -> str:
        return f"<BetRecord(match={self.match_id}, stake={self.stake}, status={self.status})>"


# ============================================================================
# Model Performance
# ============================================================================

class ModelPerformanceRecord(Base):
    """Per-window model metrics; append-only."""
    __tablename__ = "model_performance"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    model_name: Mapped[str] = mapped_column(String(50), nullable=False)
    model_version: Mapped[str] = mapped_column(String(20), nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_predictions: Mapped[int] = mapped_column(Integer, nullable=False)
    correct_predictions: Mapped[int] = mapped_column(Integer, nullable=False)
    accuracy: Mapped[float] = mapped_column(Float, nullable=False)
    log_loss: Mapped[float] = mapped_column(Float, nullable=False)
    brier_score: Mapped[float] = mapped_column(Float, nullable=False)
    roi: Mapped[float] = mapped_column(Float, nullable=False)
    sharpe_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    max_drawdown: Mapped[float] = mapped_column(Float, nullable=False)
    calibration_slope: Mapped[float] = mapped_column(Float, nullable=False)
    calibration_intercept: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "model_name", "model_version", "window_start", name="unique_model_window"
        ),
        CheckConstraint("correct_predictions <= total_predictions", name="valid_counts"),
    )

    @classmethod
    def from_domain(cls, snapshot: ModelPerformanceSnapshot) -> "ModelPerformanceRecord":
        return cls(
            id=snapshot.id,
            model_name=snapshot.model_name,
            model_version=snapshot.model_version,
            window_start=snapshot.window_start,
            window_end=snapshot.window_end,
            total_predictions=snapshot.total_predictions,
            correct_predictions=snapshot.correct_predictions,
            accuracy=snapshot.accuracy,
            log_loss=snapshot.log_loss,
            brier_score=snapshot.brier_score,
            roi=snapshot.roi,
            sharpe_ratio=snapshot.sharpe_ratio,
            max_drawdown=snapshot.max_drawdown,
            calibration_slope=snapshot.calibration_slope,
            calibration_intercept=snapshot.calibration_intercept,
            created_at=snapshot.created_at,
        )

    def to_domain(self) -> ModelPerformanceSnapshot:
        return ModelPerformanceSnapshot(
            model_name=self.model_name,
            model_version=self.model_version,
            window_start=_aware(self.window_start),
            window_end=_aware(self.window_end),
            total_predictions=self.total_predictions,
            correct_predictions=self.correct_predictions,
            accuracy=self.accuracy,
            log_loss=self.log_loss,
            brier_score=self.brier_score,
            roi=self.roi,
            sharpe_ratio=self.sharpe_ratio,
            max_drawdown=self.max_drawdown,
            calibration_slope=self.calibration_slope,
            calibration_intercept=self.calibration_intercept,
            created_at=_aware(self.created_at),
            id=self.id,
        )
