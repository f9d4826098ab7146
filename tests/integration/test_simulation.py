"""
Integration tests for the simulated feed driving the full engine.
"""

import asyncio

import pytest

from quantedge.models.domain import BetStatus, EventType, Outcome
from quantedge.portfolio.manager import ZERO
from quantedge.pipeline import TradingEngine
from quantedge.simulation import SimulatedFeed
from quantedge.simulation.feed import SAMPLE_MATCHES

pytestmark = [pytest.mark.integration, pytest.mark.slow]


def signature(events):
    return [(e.match_id, e.event_type, e.minute, e.team) for e in events]


class TestSimulatedFeed:
    """Seeded event stream."""

    def test_same_seed_same_stream(self, t0):
        first = signature(SimulatedFeed(seed=7, start=t0).stream())
        second = signature(SimulatedFeed(seed=7, start=t0).stream())
        assert first == second

    def test_every_match_starts_and_finishes(self, t0):
        events = list(SimulatedFeed(seed=7, start=t0).stream())
        for match in SAMPLE_MATCHES:
            types = [e.event_type for e in events if e.match_id == match.match_id]
            assert types[0] is EventType.MATCH_START
            assert types[-1] is EventType.FULL_TIME
            assert types.count(EventType.HALF_TIME) == 1

    def test_score_matches_goal_events(self, t0):
        feed = SimulatedFeed(seed=11, start=t0)
        events = list(feed.stream())
        for match in SAMPLE_MATCHES:
            goals = [e for e in events if e.match_id == match.match_id and e.event_type is EventType.GOAL]
            home = sum(1 for e in goals if e.team.value == "home")
            assert feed.score(match.match_id) == (home, len(goals) - home)

    def test_no_quotes_after_full_time(self, t0):
        feed = SimulatedFeed(seed=3, start=t0)
        match_id = SAMPLE_MATCHES[0].match_id

        before = asyncio.run(feed.fetch_quotes(match_id))
        assert len(before) == 1
        assert before[0].bookmaker == "simulated"

        list(feed.stream())
        assert asyncio.run(feed.fetch_quotes(match_id)) == []
        assert asyncio.run(feed.fetch_quotes("unknown")) == []


class TestEndToEnd:
    """All sample matches through the engine."""

    def test_simulated_season(self, engine_config, t0):
        feed = SimulatedFeed(seed=42, start=t0)
        engine = TradingEngine(engine_config, odds_feed=feed)

        async def scenario():
            await engine.start()
            sent = await feed.run(engine)
            await engine.stop()
            return sent

        sent = asyncio.run(scenario())

        stats = engine.stats
        assert stats.events_processed == sent
        assert stats.errors == 0
        assert stats.matches_settled == len(SAMPLE_MATCHES)

        snap = engine.portfolio_snapshot()
        assert not snap.open_bets
        assert snap.open_exposure == ZERO

        settled = engine.portfolio.settled_bets()
        for bet in settled:
            home, away = feed.score(bet.match_id)
            result = Outcome.HOME if home > away else Outcome.AWAY if away > home else Outcome.DRAW
            expected = BetStatus.WON if bet.outcome is result else BetStatus.LOST
            assert bet.status is expected

        total_profit = sum((b.profit_loss for b in settled), ZERO)
        assert snap.bankroll == snap.initial_bankroll + total_profit

    def test_limit_stops_early(self, engine_config, t0):
        feed = SimulatedFeed(seed=42, start=t0)
        engine = TradingEngine(engine_config, odds_feed=feed)

        async def scenario():
            await engine.start()
            sent = await feed.run(engine, limit=4)
            await engine.stop()
            return sent

        assert asyncio.run(scenario()) == 4
        assert engine.stats.events_processed == 4
        assert engine.stats.matches_settled == 0
