"""
Match Feature Extraction.

Turns the stream of ``MatchEvent`` records for a match into the numeric
``FeatureVector`` the prediction models consume. State is accumulated per
match (score, red cards, minute) and combined with pre-match team ratings.

Features generated:
    1. Team strength: home/away attack and defence, Elo and form differences
    2. Context: home advantage, league competitiveness
    3. In-play state: goal difference, red-card difference, minute

Rating features are only emitted for teams with a known rating; models
treat the gap as ``FeatureMissing`` and fall back to their defaults.

Example:
    >>> extractor = FeatureExtractor({"ARS": TeamRating(attack=1.3, defense=1.2, elo=1650)})
    >>> fv = extractor.process(event)
    >>> fv["goal_difference"]
    0.0
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, FrozenSet, Mapping, Optional
import logging
import threading

from ..models.domain import (
    CardType,
    EventType,
    FeatureVector,
    MatchEvent,
    MatchStatus,
    TeamSide,
    utcnow,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Constants & Configuration
# ============================================================================

# Higher means a less predictable league
LEAGUE_COMPETITIVENESS: Dict[str, float] = {
    "Premier League": 0.9,
    "La Liga": 0.8,
    "Bundesliga": 0.7,
}
DEFAULT_COMPETITIVENESS = 0.6

STATUS_BY_EVENT: Dict[EventType, MatchStatus] = {
    EventType.MATCH_START: MatchStatus.LIVE,
    EventType.HALF_TIME: MatchStatus.HALF_TIME,
    EventType.FULL_TIME: MatchStatus.FINISHED,
    EventType.MATCH_END: MatchStatus.FINISHED,
}


@dataclass(frozen=True)
class TeamRating:
    """
    Pre-match strength estimate for a team.

    Attributes:
        attack: Scoring strength relative to league average (1.0 = average)
        defense: Defensive strength relative to league average (higher = better)
        elo: Elo rating
        form: Recent form in [-1, 1]
    """
    attack: float = 1.0
    defense: float = 1.0
    elo: float = 1500.0
    form: float = 0.0


@dataclass(frozen=True)
class MatchState:
    """Accumulated state for one match; replaced on every event."""
    match_id: str
    home_team: str = ""
    away_team: str = ""
    league: str = ""
    status: MatchStatus = MatchStatus.SCHEDULED
    home_goals: int = 0
    away_goals: int = 0
    home_red_cards: int = 0
    away_red_cards: int = 0
    minute: Optional[int] = None
    kickoff: Optional[datetime] = None
    last_event_at: Optional[datetime] = None
    events_seen: int = 0
    event_ids: FrozenSet[str] = frozenset()

    @property
    def goal_difference(self) -> int:
        return self.home_goals - self.away_goals

    @property
    def is_finished(self) -> bool:
        return self.status is MatchStatus.FINISHED


class FeatureExtractor:
    """
    Accumulates per-match state and emits feature vectors.

    Safe to call from several threads; each match's state is replaced
    atomically under a single lock.
    """

    def __init__(
        self,
        ratings: Optional[Mapping[str, TeamRating]] = None,
        league_competitiveness: Optional[Mapping[str, float]] = None,
        match_minutes: float = 90.0
    ):
        self._ratings: Dict[str, TeamRating] = dict(ratings or {})
        self._competitiveness = dict(league_competitiveness or LEAGUE_COMPETITIVENESS)
        self._match_minutes = match_minutes
        self._states: Dict[str, MatchState] = {}
        self._lock = threading.Lock()

    def set_rating(self, team: str, rating: TeamRating) -> None:
        with self._lock:
            self._ratings[team] = rating

    def state(self, match_id: str) -> Optional[MatchState]:
        return self._states.get(match_id)

    def forget(self, match_id: str) -> None:
        """Drop accumulated state once a match is settled."""
        with self._lock:
            self._states.pop(match_id, None)

    # ------------------------------------------------------------------

    def is_duplicate(self, event: MatchEvent) -> bool:
        """True when an event with the same id was already folded in."""
        with self._lock:
            state = self._states.get(event.match_id)
            return state is not None and event.id in state.event_ids

    def update(self, event: MatchEvent) -> MatchState:
        """
        Fold ``event`` into the match state and return the new state.

        A redelivered event (same id) leaves the state unchanged.
        """
        with self._lock:
            previous = self._states.get(event.match_id) or MatchState(match_id=event.match_id)
            if event.id in previous.event_ids:
                logger.debug(f"Ignoring redelivered event {event.id} for {event.match_id}")
                return previous
            state = self._apply(previous, event)
            self._states[event.match_id] = state
        return state

    def extract(self, match_id: str, timestamp: Optional[datetime] = None) -> FeatureVector:
        """Build the feature vector for the current state of ``match_id``."""
        state = self._states.get(match_id) or MatchState(match_id=match_id)
        values: Dict[str, float] = {}

        home = self._ratings.get(state.home_team)
        away = self._ratings.get(state.away_team)
        if home is not None:
            values["home_attack"] = home.attack
            values["home_defense"] = home.defense
            values["home_form"] = home.form
        if away is not None:
            values["away_attack"] = away.attack
            values["away_defense"] = away.defense
            values["away_form"] = away.form
        if home is not None and away is not None:
            values["elo_difference"] = home.elo - away.elo
            values["form_difference"] = home.form - away.form

        values["home_advantage"] = 1.0
        values["league_competitiveness"] = self._competitiveness.get(
            state.league, DEFAULT_COMPETITIVENESS
        )
        values["home_goals"] = float(state.home_goals)
        values["away_goals"] = float(state.away_goals)
        values["goal_difference"] = float(state.goal_difference)
        values["abs_goal_difference"] = float(abs(state.goal_difference))
        values["red_card_difference"] = float(state.home_red_cards - state.away_red_cards)

        if state.minute is not None:
            values["minute"] = float(state.minute)
            values["minute_fraction"] = min(state.minute / self._match_minutes, 1.0)
        else:
            values["minute_fraction"] = 0.0

        return FeatureVector(
            match_id=match_id,
            values=values,
            timestamp=timestamp or state.last_event_at or utcnow(),
        )

    def process(self, event: MatchEvent) -> FeatureVector:
        """``update`` then ``extract`` in one call."""
        state = self.update(event)
        return self.extract(state.match_id, timestamp=event.timestamp)

    # ------------------------------------------------------------------

    def _apply(self, state: MatchState, event: MatchEvent) -> MatchState:
        changes = {
            "events_seen": state.events_seen + 1,
            "event_ids": state.event_ids | {event.id},
            "last_event_at": event.timestamp,
        }
        if event.home_team:
            changes["home_team"] = event.home_team
        if event.away_team:
            changes["away_team"] = event.away_team
        if event.league:
            changes["league"] = event.league
        if event.minute is not None:
            changes["minute"] = max(event.minute, state.minute or 0)

        self._apply_ratings(event)

        if event.event_type is EventType.MATCH_START and state.kickoff is None:
            changes["kickoff"] = event.timestamp
        if event.event_type in STATUS_BY_EVENT:
            changes["status"] = STATUS_BY_EVENT[event.event_type]

        if event.event_type is EventType.GOAL:
            if event.team is TeamSide.HOME:
                changes["home_goals"] = state.home_goals + 1
            elif event.team is TeamSide.AWAY:
                changes["away_goals"] = state.away_goals + 1
            else:
                logger.warning(f"Goal event without team for match {event.match_id}")
        elif event.event_type is EventType.CARD and event.card_type is CardType.RED:
            if event.team is TeamSide.HOME:
                changes["home_red_cards"] = state.home_red_cards + 1
            elif event.team is TeamSide.AWAY:
                changes["away_red_cards"] = state.away_red_cards + 1

        return replace(state, **changes)

    def _apply_ratings(self, event: MatchEvent) -> None:
        """Feeds may attach ratings as ``home_rating``/``away_rating`` metadata."""
        for side, team in (("home", event.home_team), ("away", event.away_team)):
            raw = event.metadata.get(f"{side}_rating")
            if team and isinstance(raw, Mapping):
                self._ratings[team] = TeamRating(**{
                    k: float(v) for k, v in raw.items()
                    if k in ("attack", "defense", "elo", "form")
                })
