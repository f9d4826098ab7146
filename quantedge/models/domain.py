"""
Domain Records for the QuantEdge Engine.

Plain dataclasses shared by every component. Records that represent
something that already happened (events, predictions, quotes, snapshots)
are frozen; a ``Bet`` is replaced, never edited, when it settles.

Money (bankroll, stake, payout, P&L) is ``Decimal`` quantised to cents.
Probabilities and odds are ``float``.

Example:
    >>> dist = ProbabilityDistribution(home=0.5, draw=0.3, away=0.2)
    >>> dist.most_likely()
    (<Outcome.HOME: 'home'>, 0.5)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Tuple
from uuid import uuid4
import math

from ..core.errors import ValidationError


PROBABILITY_EPSILON = 0.001  # matches the persisted CHECK (sum <= 1.001)
CENT = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def to_money(value, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Quantise a number to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=rounding)


def money_floor(value) -> Decimal:
    """Quantise down to cents (never rounds a stake up)."""
    return to_money(value, rounding=ROUND_DOWN)


# ============================================================================
# Enum Definitions
# ============================================================================

class Outcome(str, Enum):
    """Match result from the home side's perspective."""
    HOME = "home"
    DRAW = "draw"
    AWAY = "away"


class EventType(str, Enum):
    """Kinds of match event the engine ingests."""
    MATCH_START = "match_start"
    GOAL = "goal"
    CARD = "card"
    SUBSTITUTION = "substitution"
    HALF_TIME = "half_time"
    FULL_TIME = "full_time"
    MATCH_END = "match_end"
    ODDS_UPDATE = "odds_update"


class TeamSide(str, Enum):
    HOME = "home"
    AWAY = "away"


class CardType(str, Enum):
    YELLOW = "yellow"
    RED = "red"


class MatchStatus(str, Enum):
    """Possible match states."""
    SCHEDULED = "scheduled"
    LIVE = "live"
    HALF_TIME = "half_time"
    FINISHED = "finished"
    POSTPONED = "postponed"
    CANCELLED = "cancelled"


class BetStatus(str, Enum):
    """Bet lifecycle: pending -> won | lost | void."""
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    VOID = "void"

    @property
    def is_terminal(self) -> bool:
        return self is not BetStatus.PENDING


# ============================================================================
# Events and Features
# ============================================================================

@dataclass(frozen=True)
class MatchEvent:
    """
    A single event emitted by the ingestion collaborator.

    Attributes:
        match_id: Match identifier
        event_type: What happened
        timestamp: When it happened
        minute: Match minute (None before kick-off)
        team: Side the event belongs to, if any
        player: Player involved, if any
        metadata: Free-form extras supplied by the feed
    """
    match_id: str
    event_type: EventType
    timestamp: datetime = field(default_factory=utcnow)
    minute: Optional[int] = None
    team: Optional[TeamSide] = None
    player: Optional[str] = None
    home_team: str = ""
    away_team: str = ""
    league: str = ""
    season: str = ""
    status: MatchStatus = MatchStatus.SCHEDULED
    card_type: Optional[CardType] = None
    metadata: Mapping[str, object] = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if not self.match_id:
            raise ValidationError("MatchEvent requires a match_id")
        if self.minute is not None and self.minute < 0:
            raise ValidationError(f"Minute must be non-negative, got {self.minute}")
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True)
class FeatureVector:
    """Ordered, read-only mapping of feature name to value for one match."""
    match_id: str
    values: Mapping[str, float]
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        object.__setattr__(
            self, "values", MappingProxyType({k: float(v) for k, v in self.values.items()})
        )

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self.values)

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def __getitem__(self, name: str) -> float:
        return self.values[name]

    def get(self, name: str, default: Optional[float] = None) -> Optional[float]:
        return self.values.get(name, default)

    def missing(self, required: Iterable[str]) -> Tuple[str, ...]:
        """Names in ``required`` that this vector does not carry."""
        return tuple(name for name in required if name not in self.values)

    def with_defaults(self, defaults: Mapping[str, float]) -> "FeatureVector":
        """Return a new vector with absent names filled from ``defaults``."""
        merged = dict(self.values)
        for name, value in defaults.items():
            merged.setdefault(name, value)
        return FeatureVector(match_id=self.match_id, values=merged, timestamp=self.timestamp)


# ============================================================================
# Probabilities and Predictions
# ============================================================================

@dataclass(frozen=True)
class ProbabilityDistribution:
    """
    Outcome probabilities for a single match.

    ``draw`` is None for sports without draws. Each term lies in [0, 1]
    and the total never exceeds 1 + PROBABILITY_EPSILON.
    """
    home: float
    away: float
    draw: Optional[float] = None

    def __post_init__(self):
        for name in ("home", "draw", "away"):
            value = getattr(self, name)
            if value is None:
                continue
            if math.isnan(value) or value < 0.0 or value > 1.0 + 1e-12:
                raise ValidationError(f"Probability '{name}' must be in [0, 1], got {value}")
            # absorb float noise at the edges
            object.__setattr__(self, name, min(max(float(value), 0.0), 1.0))
        if self.total > 1.0 + PROBABILITY_EPSILON:
            raise ValidationError(
                f"Probabilities sum to {self.total:.6f}, exceeds 1 + {PROBABILITY_EPSILON}"
            )

    @property
    def has_draw(self) -> bool:
        return self.draw is not None

    @property
    def total(self) -> float:
        return self.home + self.away + (self.draw or 0.0)

    @property
    def outcomes(self) -> Tuple[Outcome, ...]:
        if self.has_draw:
            return (Outcome.HOME, Outcome.DRAW, Outcome.AWAY)
        return (Outcome.HOME, Outcome.AWAY)

    def get(self, outcome: Outcome) -> float:
        if outcome is Outcome.DRAW:
            return self.draw or 0.0
        return self.home if outcome is Outcome.HOME else self.away

    def as_dict(self) -> Dict[Outcome, float]:
        return {o: self.get(o) for o in self.outcomes}

    def normalized(self) -> "ProbabilityDistribution":
        total = self.total
        if total <= 0:
            raise ValidationError("Cannot normalise an all-zero distribution")
        return ProbabilityDistribution(
            home=self.home / total,
            away=self.away / total,
            draw=None if self.draw is None else self.draw / total,
        )

    def most_likely(self) -> Tuple[Outcome, float]:
        """Highest-probability outcome (home wins ties, then draw)."""
        best = max(self.outcomes, key=lambda o: self.get(o))
        return best, self.get(best)

    def entropy(self) -> float:
        """Shannon entropy in nats."""
        return -sum(p * math.log(p) for p in self.as_dict().values() if p > 0)

    @classmethod
    def from_scores(cls, scores: Mapping[Outcome, float]) -> "ProbabilityDistribution":
        """Build a normalised distribution from non-negative scores."""
        total = sum(scores.values())
        if total <= 0:
            raise ValidationError("Scores must have a positive sum")
        draw = scores.get(Outcome.DRAW)
        return cls(
            home=scores[Outcome.HOME] / total,
            away=scores[Outcome.AWAY] / total,
            draw=None if draw is None else draw / total,
        )


@dataclass(frozen=True)
class Prediction:
    """One model's output for one match at one point in time."""
    match_id: str
    model_name: str
    model_version: str
    distribution: ProbabilityDistribution
    confidence: float
    predicted_at: datetime = field(default_factory=utcnow)
    match_at: Optional[datetime] = None
    expected_goals: Optional[Tuple[float, float]] = None
    features_used: Tuple[str, ...] = ()
    degraded: bool = False
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValidationError(f"Confidence must be in [0, 1], got {self.confidence}")


# ============================================================================
# Market
# ============================================================================

@dataclass(frozen=True)
class OddsQuote:
    """Decimal odds offered by one bookmaker on one market at one time."""
    match_id: str
    bookmaker: str
    market_type: str
    odds: Mapping[Outcome, float]
    timestamp: datetime = field(default_factory=utcnow)
    is_active: bool = True
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if not self.odds:
            raise ValidationError("OddsQuote requires at least one priced outcome")
        for outcome, price in self.odds.items():
            if not price > 1.0:
                raise ValidationError(f"Odds for {Outcome(outcome).value} must be > 1.0, got {price}")
        object.__setattr__(
            self, "odds", MappingProxyType({Outcome(o): float(p) for o, p in self.odds.items()})
        )

    def price(self, outcome: Outcome) -> Optional[float]:
        return self.odds.get(outcome)


# ============================================================================
# Bets and Portfolio
# ============================================================================

@dataclass(frozen=True)
class Bet:
    """
    A placed bet.

    Created by the portfolio manager on acceptance. Settlement produces a
    new ``Bet`` with a terminal status; the pending record is never edited.
    """
    match_id: str
    outcome: Outcome
    stake: Decimal
    odds: float
    expected_value: float
    kelly_fraction: float
    raw_kelly_fraction: float
    confidence: float
    edge: float
    strategy: str
    status: BetStatus = BetStatus.PENDING
    placed_at: datetime = field(default_factory=utcnow)
    settled_at: Optional[datetime] = None
    payout: Optional[Decimal] = None
    profit_loss: Optional[Decimal] = None
    model_name: str = ""
    model_version: str = ""
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        if self.stake <= 0:
            raise ValidationError(f"Stake must be positive, got {self.stake}")
        if not self.odds > 1.0:
            raise ValidationError(f"Odds must be > 1.0, got {self.odds}")

    @property
    def is_open(self) -> bool:
        return self.status is BetStatus.PENDING

    @property
    def potential_payout(self) -> Decimal:
        return to_money(self.stake * Decimal(str(self.odds)))

    @property
    def period_return(self) -> Optional[float]:
        """Profit per unit staked, once settled."""
        if self.profit_loss is None:
            return None
        return float(self.profit_loss / self.stake)


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Immutable view of the portfolio published after every write."""
    bankroll: Decimal
    initial_bankroll: Decimal
    open_bets: Tuple[Bet, ...]
    open_exposure: Decimal
    realised_pnl: Decimal
    total_staked: Decimal
    settled_count: int
    won_count: int
    peak_bankroll: Decimal
    taken_at: datetime = field(default_factory=utcnow)

    @property
    def available_bankroll(self) -> Decimal:
        return self.bankroll - self.open_exposure

    @property
    def roi(self) -> float:
        if self.total_staked == 0:
            return 0.0
        return float(self.realised_pnl / self.total_staked)

    @property
    def win_rate(self) -> float:
        if self.settled_count == 0:
            return 0.0
        return self.won_count / self.settled_count

    @property
    def current_drawdown(self) -> float:
        if self.peak_bankroll == 0:
            return 0.0
        return float((self.peak_bankroll - self.bankroll) / self.peak_bankroll)


# ============================================================================
# Performance
# ============================================================================

@dataclass(frozen=True)
class ModelPerformanceSnapshot:
    """Metrics for one model version over one closed window."""
    model_name: str
    model_version: str
    window_start: datetime
    window_end: datetime
    total_predictions: int
    correct_predictions: int
    accuracy: float
    log_loss: float
    brier_score: float
    roi: float
    sharpe_ratio: float
    max_drawdown: float
    calibration_slope: float
    calibration_intercept: float
    created_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    @property
    def key(self) -> Tuple[str, str, datetime]:
        return (self.model_name, self.model_version, self.window_start)
