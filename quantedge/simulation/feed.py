"""
Simulated Match and Odds Feed.

Generates a deterministic (seeded) stream of in-play football events for
demos and tests, and acts as the engine's ``OddsFeed`` by pricing each
match from its hidden "true" state through the ``MarketSimulator``.

Match progression, one simulated minute at a time:
    - minute 0: match start, carrying both teams' ratings as metadata
    - each minute: goal with probability lambda/90 per side, card with
      probability 3% (20% of them red)
    - minute 45: half time; minute 90: full time

The true outcome distribution used for pricing comes from a Poisson
model over the true ratings and the live score, so the market moves with
the match and differs from the engine's ensemble.

Example:
    >>> feed = SimulatedFeed(seed=42)
    >>> engine = TradingEngine(config, odds_feed=feed)
    >>> await feed.run(engine)
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
import logging

import numpy as np

from ..core.config import MarketConfig, PoissonParams
from ..features.extractor import TeamRating
from ..market.odds import MarketSimulator
from ..model.poisson import PoissonModel
from ..models.domain import (
    CardType,
    EventType,
    FeatureVector,
    MatchEvent,
    MatchStatus,
    OddsQuote,
    ProbabilityDistribution,
    TeamSide,
    utcnow,
)

logger = logging.getLogger(__name__)

CARD_PROBABILITY = 0.03
RED_CARD_SHARE = 0.2
HALF_TIME_MINUTE = 45
FULL_TIME_MINUTE = 90
SEASON = "2024-25"


@dataclass(frozen=True)
class SimulatedMatch:
    """Fixture with the true strength of each side."""
    match_id: str
    home_team: str
    away_team: str
    league: str
    home_rating: TeamRating
    away_rating: TeamRating


SAMPLE_MATCHES: Sequence[SimulatedMatch] = (
    SimulatedMatch(
        "epl_match_001", "Arsenal", "Chelsea", "Premier League",
        TeamRating(attack=1.35, defense=1.25, elo=1720, form=0.4),
        TeamRating(attack=1.10, defense=1.05, elo=1640, form=0.1),
    ),
    SimulatedMatch(
        "epl_match_002", "Manchester City", "Liverpool", "Premier League",
        TeamRating(attack=1.50, defense=1.30, elo=1800, form=0.5),
        TeamRating(attack=1.40, defense=1.20, elo=1770, form=0.3),
    ),
    SimulatedMatch(
        "laliga_match_001", "Real Madrid", "Barcelona", "La Liga",
        TeamRating(attack=1.45, defense=1.25, elo=1790, form=0.2),
        TeamRating(attack=1.40, defense=1.10, elo=1760, form=0.6),
    ),
)


@dataclass(frozen=True)
class _LiveState:
    minute: int = 0
    home_goals: int = 0
    away_goals: int = 0
    finished: bool = False


def _rating_metadata(rating: TeamRating) -> Dict[str, float]:
    return {
        "attack": rating.attack,
        "defense": rating.defense,
        "elo": rating.elo,
        "form": rating.form,
    }


class SimulatedFeed:
    """
    Seeded event stream plus odds source for a set of fixtures.

    Args:
        matches: Fixtures to play; defaults to ``SAMPLE_MATCHES``
        seed: RNG seed for events and prices
        market: Pricing parameters (margin, noise, bookmaker)
        has_draw: Whether draws are priced
        start: Kick-off time of every match; event timestamps advance one
            minute per simulated minute
    """

    def __init__(
        self,
        matches: Optional[Sequence[SimulatedMatch]] = None,
        seed: Optional[int] = None,
        market: Optional[MarketConfig] = None,
        has_draw: bool = True,
        start: Optional[datetime] = None,
        params: Optional[PoissonParams] = None
    ):
        self.matches: List[SimulatedMatch] = list(matches or SAMPLE_MATCHES)
        self._rng = np.random.default_rng(seed)
        market = market or MarketConfig(simulation_mode=True)
        self._market = MarketSimulator(market.model_copy(update={"seed": seed}))
        self._truth = PoissonModel(params or PoissonParams(), has_draw=has_draw)
        self._start = start or utcnow()
        self._by_id = {m.match_id: m for m in self.matches}
        self._states: Dict[str, _LiveState] = {m.match_id: _LiveState() for m in self.matches}

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _event(
        self,
        match: SimulatedMatch,
        event_type: EventType,
        minute: int,
        status: MatchStatus,
        **kwargs
    ) -> MatchEvent:
        return MatchEvent(
            match_id=match.match_id,
            event_type=event_type,
            timestamp=self._start + timedelta(minutes=minute),
            minute=minute,
            home_team=match.home_team,
            away_team=match.away_team,
            league=match.league,
            season=SEASON,
            status=status,
            **kwargs
        )

    def _minute_events(self, match: SimulatedMatch, minute: int) -> List[MatchEvent]:
        state = self._states[match.match_id]
        if minute == 0:
            return [self._event(
                match, EventType.MATCH_START, 0, MatchStatus.LIVE,
                metadata={
                    "home_rating": _rating_metadata(match.home_rating),
                    "away_rating": _rating_metadata(match.away_rating),
                },
            )]

        events = []
        lam_home, lam_away = self._truth.expected_goals(self._features(match, state))
        for side, lam in ((TeamSide.HOME, lam_home), (TeamSide.AWAY, lam_away)):
            if self._rng.random() < lam / FULL_TIME_MINUTE:
                state = replace(
                    state,
                    home_goals=state.home_goals + (side is TeamSide.HOME),
                    away_goals=state.away_goals + (side is TeamSide.AWAY),
                )
                events.append(self._event(
                    match, EventType.GOAL, minute, MatchStatus.LIVE,
                    team=side, player=f"Player{int(self._rng.integers(1, 24))}",
                ))
        if self._rng.random() < CARD_PROBABILITY:
            side = TeamSide.HOME if self._rng.random() < 0.5 else TeamSide.AWAY
            card = CardType.RED if self._rng.random() < RED_CARD_SHARE else CardType.YELLOW
            events.append(self._event(
                match, EventType.CARD, minute, MatchStatus.LIVE,
                team=side, card_type=card,
                player=f"Player{int(self._rng.integers(1, 24))}",
            ))

        if minute == HALF_TIME_MINUTE:
            events.append(self._event(match, EventType.HALF_TIME, minute, MatchStatus.HALF_TIME))
        if minute == FULL_TIME_MINUTE:
            events.append(self._event(match, EventType.FULL_TIME, minute, MatchStatus.FINISHED))
            state = replace(state, finished=True)

        self._states[match.match_id] = replace(state, minute=minute)
        return events

    def stream(self) -> Iterator[MatchEvent]:
        """
        Every event of every match, interleaved minute by minute.

        Events of one match come out in match order.
        """
        for minute in range(FULL_TIME_MINUTE + 1):
            for match in self.matches:
                yield from self._minute_events(match, minute)

    async def run(self, engine, limit: Optional[int] = None) -> int:
        """
        Submit the stream to ``engine`` one simulated minute at a time.

        The engine is drained after each minute so quotes fetched while
        processing reflect the score at that minute.

        Returns:
            Number of events sent
        """
        sent = 0
        for minute in range(FULL_TIME_MINUTE + 1):
            for match in self.matches:
                for event in self._minute_events(match, minute):
                    if limit is not None and sent >= limit:
                        break
                    await engine.submit(event)
                    sent += 1
            await engine.drain()
            if limit is not None and sent >= limit:
                break
        logger.info(f"Simulated feed submitted {sent} events for {len(self.matches)} matches")
        return sent

    def score(self, match_id: str) -> Tuple[int, int]:
        state = self._states[match_id]
        return state.home_goals, state.away_goals

    # ------------------------------------------------------------------
    # Odds
    # ------------------------------------------------------------------

    def _features(self, match: SimulatedMatch, state: _LiveState) -> FeatureVector:
        home, away = match.home_rating, match.away_rating
        return FeatureVector(match_id=match.match_id, values={
            "home_attack": home.attack,
            "home_defense": home.defense,
            "away_attack": away.attack,
            "away_defense": away.defense,
            "home_advantage": 1.0,
            "minute": float(state.minute),
            "goal_difference": float(state.home_goals - state.away_goals),
        })

    def true_distribution(self, match_id: str) -> ProbabilityDistribution:
        match = self._by_id[match_id]
        return self._truth.predict(self._features(match, self._states[match_id])).distribution

    async def fetch_quotes(self, match_id: str) -> List[OddsQuote]:
        """One simulated bookmaker quote, or none for unknown or finished matches."""
        state = self._states.get(match_id)
        if state is None or state.finished:
            return []
        timestamp = self._start + timedelta(minutes=state.minute)
        return [self._market.quote(match_id, self.true_distribution(match_id), timestamp)]
